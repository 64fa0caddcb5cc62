"""
Tag grammar: split image references into repository and tag, and tags into a
literal prefix plus a trailing major.minor.patch version.
"""
import re
from dataclasses import dataclass
from typing import Optional

from packaging.version import Version

from .errors import NoTagFound, NotVersionLike

# A single colon match: "host:5000/app:1.0.0" splits at the first colon.
IMAGE_TAG_PATTERN = re.compile(r'^([^:]+):(.+)$')

# Lazy prefix, so the version is the longest trailing triplet.
SEMVER_TAG_PATTERN = re.compile(r'^(.*?)(\d+\.\d+\.\d+)$')

TRIPLET_PATTERN = re.compile(r'^\d+\.\d+\.\d+$')


@dataclass(frozen=True)
class ImageReference:
    repository: str
    tag: str

    def __str__(self) -> str:
        return f"{self.repository}:{self.tag}"

    def with_tag(self, tag: str) -> "ImageReference":
        return ImageReference(self.repository, tag)


@dataclass(frozen=True)
class ParsedTag:
    prefix: str
    version: Version
    version_text: str

    def __str__(self) -> str:
        return f"{self.prefix}{self.version_text}"


def parse_reference(image: str) -> ImageReference:
    """
    Split 'repo:tag' into an ImageReference.

    Raises:
        NoTagFound: when the string has no colon or nothing after it
    """
    m = IMAGE_TAG_PATTERN.match(image)
    if not m:
        raise NoTagFound(image)
    return ImageReference(m.group(1), m.group(2))


def parse_version(text: str) -> Optional[Version]:
    """Parse a strict major.minor.patch string, None for anything else."""
    if not TRIPLET_PATTERN.match(text):
        return None
    return Version(text)


def parse_tag(tag: str) -> ParsedTag:
    """
    Split a tag into its literal prefix and trailing version.

    Examples:
        apache-2.34.0 -> ('apache-', 2.34.0)
        v1.2.3        -> ('v', 1.2.3)
        latest        -> NotVersionLike
    """
    m = SEMVER_TAG_PATTERN.match(tag)
    if not m:
        raise NotVersionLike(tag)
    prefix, version_text = m.group(1), m.group(2)
    return ParsedTag(prefix, Version(version_text), version_text)
