r"""
Ignore rules from the config file.

    ignore:
      images:
        - service: legacy-db           # never touch this service
        - repository: postgres
          versionPattern: '^16\.'      # skip 16.x tags, still update otherwise
        - repository: nginx
          tagPattern: '^mainline-'     # freeze only while on a mainline tag
"""
import re
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Tuple

from . import log


@dataclass
class IgnoreRule:
    service: Optional[str] = None
    repository: Optional[str] = None
    version_pattern: Optional[Pattern] = None
    tag_pattern: Optional[Pattern] = None
    # False once the rule narrows itself with versionPattern or tagPattern,
    # even when that pattern failed to compile.
    skip_all: bool = True

    def applies_to(self, service: str, repository: str) -> bool:
        if self.service is not None and self.service != service:
            return False
        if self.repository is not None and self.repository != repository:
            return False
        return True

    @property
    def label(self) -> str:
        if self.service and self.repository:
            return f"{self.service} ({self.repository})"
        return self.service or self.repository or "?"


@dataclass
class IgnoreRules:
    rules: List[IgnoreRule] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rules)

    def should_skip(self, service: str, repository: str, tag: str) -> Tuple[bool, Optional[str]]:
        """
        Returns:
            (should_skip: bool, reason: str)
        """
        for rule in self.rules:
            if not rule.applies_to(service, repository):
                continue
            if rule.tag_pattern is not None:
                if rule.tag_pattern.match(tag):
                    return True, f"ignored by {rule.label} + tag pattern {rule.tag_pattern.pattern}"
                continue
            if rule.skip_all:
                return True, f"ignored by {rule.label}"
        return False, None

    def filter_tags(self, service: str, repository: str, tags: List[str]) -> List[str]:
        """Drop registry tags matching any applicable versionPattern."""
        patterns = [
            r.version_pattern
            for r in self.rules
            if r.version_pattern is not None and r.applies_to(service, repository)
        ]
        if not patterns:
            return tags
        kept = [t for t in tags if not any(p.match(t) for p in patterns)]
        if len(kept) != len(tags):
            log.info(f"Filtered out {len(tags) - len(kept)} tags matching versionPattern", indent=1)
        return kept


def _compile(rule: dict, key: str) -> Optional[Pattern]:
    raw = rule.get(key)
    if raw is None:
        return None
    try:
        return re.compile(str(raw))
    except re.error as e:
        log.warn(f"Invalid {key} {raw!r} in ignore rule: {e}, pattern skipped")
        return None


def build_ignore_rules(config: Optional[dict]) -> IgnoreRules:
    """Build rules from the `ignore` section of the config file."""
    if not config:
        return IgnoreRules()

    rules = []
    for raw in config.get("images") or []:
        if not isinstance(raw, dict):
            continue
        if "service" not in raw and "repository" not in raw:
            log.warn(f"Ignore rule without service or repository: {raw}, skipping")
            continue
        rules.append(
            IgnoreRule(
                service=raw.get("service"),
                repository=raw.get("repository"),
                version_pattern=_compile(raw, "versionPattern"),
                tag_pattern=_compile(raw, "tagPattern"),
                skip_all="versionPattern" not in raw and "tagPattern" not in raw,
            )
        )
    return IgnoreRules(rules)
