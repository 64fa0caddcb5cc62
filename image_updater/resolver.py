"""Pick the newest registry tag that shares the current tag's prefix."""
from dataclasses import dataclass
from typing import Iterable, List, Optional

from packaging.version import Version

from . import log
from .tags import ParsedTag, parse_version


@dataclass(frozen=True)
class CandidateTag:
    full_tag: str
    version: Version


@dataclass(frozen=True)
class Resolution:
    latest_tag: str
    latest_version: Version
    has_update: bool


def find_candidates(tags: Iterable[str], prefix: str) -> List[CandidateTag]:
    """
    Keep tags that start with prefix and whose remainder is a strict
    major.minor.patch triplet. Pre-release suffixes like '-rc1' do not parse
    and are dropped.
    """
    candidates = []
    for tag in tags:
        if not tag.startswith(prefix):
            continue
        version = parse_version(tag[len(prefix):])
        if version is None:
            continue
        candidates.append(CandidateTag(tag, version))
    return candidates


def select_latest(candidates: Iterable[CandidateTag]) -> Optional[CandidateTag]:
    """Highest version wins; on equal versions the first one seen is kept."""
    best = None
    for c in candidates:
        if best is None or c.version > best.version:
            best = c
    return best


def resolve(parsed: ParsedTag, tags: Iterable[str]) -> Optional[Resolution]:
    """
    Decide whether a newer tag than `parsed` exists in `tags`.

    Returns None when no registry tag matches the prefix at all.
    """
    candidates = find_candidates(tags, parsed.prefix)
    log.debug(f"Found {len(candidates)} matching versions for prefix '{parsed.prefix}'", indent=2)

    latest = select_latest(candidates)
    if latest is None:
        return None
    return Resolution(
        latest_tag=latest.full_tag,
        latest_version=latest.version,
        has_update=latest.version > parsed.version,
    )
