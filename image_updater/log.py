"""
Console output with bracketed level tags.

    [INFO] Found 3 compose files
      [WARN] Could not parse docker-compose.yml, skipping

Everything goes to stdout except errors, which go to stderr. With
machine-readable output selected every line goes to stderr.
"""
import sys
import traceback
from typing import Optional

LEVELS = {
    "DEBUG": 10,
    "INFO": 20,
    "WARN": 30,
    "WARNING": 30,
    "ERROR": 40,
    "FATAL": 50,
}

_threshold = LEVELS["INFO"]
_stderr_only = False


def parse_level(name: Optional[str]) -> int:
    if not name:
        return LEVELS["INFO"]
    return LEVELS.get(name.strip().upper(), LEVELS["INFO"])


def configure(
    level: Optional[str] = "INFO",
    verbose: bool = False,
    quiet: bool = False,
    stderr_only: bool = False,
) -> None:
    """Set the output threshold. verbose wins over level, quiet wins over both."""
    global _threshold, _stderr_only
    threshold = parse_level(level)
    if verbose:
        threshold = LEVELS["DEBUG"]
    if quiet:
        threshold = max(threshold, LEVELS["WARN"])
    _threshold = threshold
    _stderr_only = stderr_only


def enabled(level: str) -> bool:
    return LEVELS[level] >= _threshold


def _emit(level: str, tag: str, message: str, indent: int) -> None:
    if not enabled(level):
        return
    pad = "  " * indent
    stream = sys.stderr if _stderr_only or LEVELS[level] >= LEVELS["ERROR"] else sys.stdout
    print(f"{pad}[{tag}] {message}", file=stream)


def debug(message: str, indent: int = 0) -> None:
    _emit("DEBUG", "DEBUG", message, indent)


def info(message: str, indent: int = 0) -> None:
    _emit("INFO", "INFO", message, indent)


def skip(message: str, indent: int = 0) -> None:
    _emit("INFO", "SKIP", message, indent)


def warn(message: str, indent: int = 0) -> None:
    _emit("WARN", "WARN", message, indent)


def error(message: str, exc: Optional[BaseException] = None, indent: int = 0) -> None:
    if exc is not None:
        message = f"{message}: {type(exc).__name__}: {exc}" if str(exc) else f"{message}: {type(exc).__name__}"
    _emit("ERROR", "ERROR", message, indent)
    if exc is not None and exc.__traceback__ is not None and enabled("DEBUG"):
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        _emit("DEBUG", "DEBUG", f"Traceback:\n{tb}", indent)
