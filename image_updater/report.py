"""
Run summaries for the console and for CI.
"""
import json
from pathlib import Path
from typing import List

import aiofiles
import yaml

from .runner import RunSummary


def summary_data(summary: RunSummary) -> dict:
    data = {
        "found": summary.found,
        "applied": summary.applied,
        "failed": summary.failed,
        "cancelled": summary.cancelled,
        "updates": [c.as_dict() for c in summary.candidates],
    }
    if summary.outcomes:
        data["proposals"] = [
            {
                "service": o.candidate.service_name,
                "stage": o.stage.value,
                "branch": o.proposal.branch_name if o.proposal else None,
                "failed_stage": o.failed_stage.value if o.failed_stage else None,
                "error": str(o.error) if o.error else None,
                "web_url": o.merge_request.web_url if o.merge_request else None,
            }
            for o in summary.outcomes
        ]
    return data


def render_text(summary: RunSummary) -> str:
    lines: List[str] = []
    lines.append("Update summary")
    lines.append("================")
    lines.append(f"Updates found: {summary.found}")
    if summary.proposals_requested:
        lines.append(f"Merge requests created: {summary.applied}")
        lines.append(f"Merge requests failed: {summary.failed}")
    if summary.cancelled:
        lines.append("Cancelled before every update was processed")
    lines.append("")

    if summary.candidates:
        lines.append("Docker image updates:")
        for c in summary.candidates:
            lines.append(f"- {c.service_name}: {c.old_image} → {c.new_image}  [{c.file_path}]")
        lines.append("")

    created = [o for o in summary.outcomes if o.succeeded]
    if created:
        lines.append("Merge requests:")
        for o in created:
            lines.append(f"- {o.candidate.service_name}: {o.merge_request.web_url}")
        lines.append("")

    failures = [o for o in summary.outcomes if not o.succeeded]
    if failures:
        lines.append("Failed updates:")
        for o in failures:
            stage = o.failed_stage.value if o.failed_stage else "?"
            lines.append(f"- {o.candidate.service_name}: failed at {stage}: {o.error}")
        lines.append("")

    return "\n".join(lines)


def render(summary: RunSummary, output_format: str = "text") -> str:
    if output_format == "json":
        return json.dumps(summary_data(summary), indent=2)
    if output_format == "yaml":
        return yaml.safe_dump(summary_data(summary), sort_keys=False, allow_unicode=True)
    return render_text(summary)


async def write_report(path: Path, summary: RunSummary) -> None:
    """
    Write a human-readable summary to path. With nothing to report an old
    report is removed instead.
    """
    if not summary.candidates:
        if path.exists():
            path.unlink()
        return
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(render_text(summary))
