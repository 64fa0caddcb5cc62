"""
Exception hierarchy shared by the scanner, the registry client and the
change workflow.

The category of an exception decides what the caller does with it:
skip the image, skip the update, or abort the whole run.
"""
from typing import Any, Dict, List, Optional, Sequence


class UpdaterError(Exception):
    """Base class for every error raised by image_updater."""


# ----------------- TAG GRAMMAR -----------------


class NoTagFound(UpdaterError):
    def __init__(self, image: str):
        super().__init__(f"no tag found in image: {image}")
        self.image = image


class NotVersionLike(UpdaterError):
    def __init__(self, tag: str):
        super().__init__(f"tag not semver-like: {tag}")
        self.tag = tag


# ----------------- REGISTRY -----------------


class RegistryError(UpdaterError):
    def __init__(self, repository: str, message: str):
        super().__init__(f"{repository}: {message}")
        self.repository = repository


class RegistryNetworkError(RegistryError):
    pass


class RegistryHTTPError(RegistryError):
    def __init__(self, repository: str, status: int):
        super().__init__(repository, f"unexpected status code: {status}")
        self.status = status


class RegistryDecodeError(RegistryError):
    pass


# ----------------- CANCELLATION -----------------


class Cancelled(UpdaterError):
    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)


class ScanCancelled(Cancelled):
    """Raised by the update set builder; keeps what was collected before the signal."""

    def __init__(self, candidates: Sequence[Any]):
        super().__init__(f"scan cancelled after {len(candidates)} update(s) were found")
        self.candidates = list(candidates)


class ProposalsCancelled(Cancelled):
    """Raised by the change workflow; keeps the outcomes of updates already processed."""

    def __init__(self, outcomes: Sequence[Any]):
        super().__init__(f"workflow cancelled after {len(outcomes)} update(s) were processed")
        self.outcomes = list(outcomes)


# ----------------- VERSION CONTROL -----------------


class GitError(UpdaterError):
    def __init__(self, operation: str, returncode: Optional[int] = None, output: str = ""):
        self.operation = operation
        self.returncode = returncode
        self.output = output.strip()
        if self.output:
            message = f"{operation} failed (exit {returncode}): {self.output}"
        else:
            message = f"{operation} failed (exit {returncode})"
        super().__init__(message)


class NothingToCommit(GitError):
    def __init__(self, output: str = ""):
        super().__init__("git commit", 1, output)

    def __str__(self) -> str:
        return "no changes to commit"


# ----------------- PROPOSAL API -----------------


class APIError(UpdaterError):
    def __init__(self, status: int, message: str = "", response: Optional[Dict[str, Any]] = None):
        self.status = status
        self.message = message
        self.response = response
        if response is not None:
            text = f"GitLab API error (status {status}): {response}"
        else:
            text = f"GitLab API error (status {status}): {message}"
        super().__init__(text)


# ----------------- CONFIGURATION -----------------


class ConfigError(UpdaterError):
    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        lines = ["invalid configuration:"]
        lines.extend(f"  - {p}" for p in self.problems)
        super().__init__("\n".join(lines))
