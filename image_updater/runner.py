"""
One batch run: clone, discover, resolve, and optionally propose.
"""
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

import aiohttp

from . import log
from .cancellation import CancelToken
from .config import Settings
from .errors import ConfigError, ProposalsCancelled
from .git import GitRepository
from .gitlab import GitLabClient
from .manifest import find_compose_files, load_images
from .registry import DockerHubClient
from .scanner import UpdateCandidate, UpdateSetBuilder
from .workflow import ChangeWorkflow, WorkflowState, WorkflowSummary


@dataclass
class RunSummary:
    files: List[Path] = field(default_factory=list)
    candidates: List[UpdateCandidate] = field(default_factory=list)
    outcomes: List[WorkflowState] = field(default_factory=list)
    proposals_requested: bool = False
    # the workflow stopped early; outcomes cover the updates finished before that
    cancelled: bool = False
    duration: float = 0.0
    # set when the checkout lives in a temporary clone
    root: Optional[Path] = None

    @property
    def found(self) -> int:
        return len(self.candidates)

    @property
    def applied(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.applied


def _session() -> aiohttp.ClientSession:
    connector = aiohttp.TCPConnector(
        limit=30,
        limit_per_host=10,
        ttl_dns_cache=300,
    )
    return aiohttp.ClientSession(connector=connector)


def resolve_files(settings: Settings, root: Optional[Path], files: Optional[Sequence[str]]) -> List[Path]:
    """Explicit files win; otherwise walk the scan directory."""
    if files:
        resolved = []
        for f in files:
            path = Path(f)
            if root is not None and not path.is_absolute():
                path = root / path
            if not path.is_file():
                raise ConfigError([f"file does not exist: {path}"])
            resolved.append(path)
        return resolved

    scan_path = settings.scan_path(root)
    if scan_path is None:
        raise ConfigError(["scan directory not specified (pass a directory or set IMG_UPGR_SCANDIR)"])
    if scan_path.is_file():
        return [scan_path]
    return find_compose_files(scan_path)


async def scan(
    settings: Settings,
    session: aiohttp.ClientSession,
    files: List[Path],
    cancel: CancelToken,
) -> List[UpdateCandidate]:
    registry = DockerHubClient(
        session,
        page_size=settings.page_size,
        timeout=settings.request_timeout,
        username=settings.dockerhub_username,
        token=settings.dockerhub_token,
    )
    if registry.authenticated:
        log.debug("Docker Hub: authenticated requests")
    else:
        log.debug("Docker Hub: anonymous requests (set DOCKERHUB_USERNAME and DOCKERHUB_TOKEN to raise limits)")

    images = {}
    for path in files:
        cancel.raise_if_cancelled()
        log.info(f"Processing compose file: {path}")
        images[path] = await load_images(path)

    builder = UpdateSetBuilder(registry, concurrency=settings.concurrency, ignore=settings.ignore)
    return await builder.build(files, images, cancel)


async def propose(
    settings: Settings,
    session: aiohttp.ClientSession,
    repo: GitRepository,
    candidates: List[UpdateCandidate],
    cancel: CancelToken,
) -> WorkflowSummary:
    proposals = GitLabClient(
        session,
        settings.gitlab_repo,
        settings.gitlab_token,
        timeout=settings.request_timeout,
    )
    workflow = ChangeWorkflow(repo, proposals, target_branch=settings.target_branch)
    return await workflow.run_all(candidates, cancel)


async def run(
    settings: Settings,
    cancel: CancelToken,
    files: Optional[Sequence[str]] = None,
) -> RunSummary:
    """
    Execute one batch.

    Raises:
        ConfigError, GitError (clone), Cancelled (before the workflow starts)
    """
    start = time.time()
    settings.validate_gitlab()
    summary = RunSummary(proposals_requested=settings.wants_proposals)

    async with _session() as session:
        if settings.gitlab_repo:
            with tempfile.TemporaryDirectory(prefix="img-upgr-") as tmp:
                checkout = Path(tmp) / "repo"
                repo = await GitRepository.clone(
                    settings.gitlab_repo,
                    checkout,
                    user=settings.gitlab_user,
                    token=settings.gitlab_token,
                )
                if settings.gitlab_user and settings.gitlab_email:
                    await repo.configure_user(settings.gitlab_user, settings.gitlab_email)
                summary.root = checkout
                await _run_in(settings, session, summary, checkout, repo, files, cancel)
        else:
            await _run_in(settings, session, summary, None, None, files, cancel)

    summary.duration = time.time() - start
    return summary


async def _run_in(
    settings: Settings,
    session: aiohttp.ClientSession,
    summary: RunSummary,
    root: Optional[Path],
    repo: Optional[GitRepository],
    files: Optional[Sequence[str]],
    cancel: CancelToken,
) -> None:
    settings.validate(root)
    scan_path = settings.scan_path(root)
    settings.load_config_file(scan_path if scan_path is not None and scan_path.is_dir() else root)

    summary.files = resolve_files(settings, root, files)
    if not summary.files:
        log.info("No docker-compose files found")
        return
    log.info(f"Found {len(summary.files)} docker-compose file(s)")

    summary.candidates = await scan(settings, session, summary.files, cancel)
    if not summary.candidates:
        log.info("No updates found across all files")
        return
    log.info(f"Found {summary.found} updates across all files")

    if settings.dry_run:
        log.info("Dry run mode: skipping merge request creation")
        return
    if not settings.create_mr or repo is None:
        return

    try:
        result = await propose(settings, session, repo, summary.candidates, cancel)
    except ProposalsCancelled as e:
        log.warn(f"Cancelled after {len(e.outcomes)} of {summary.found} updates were processed")
        summary.outcomes = e.outcomes
        summary.cancelled = True
        return
    summary.outcomes = result.outcomes
