"""
Run settings, read from IMG_UPGR_* environment variables and an optional
YAML config file holding ignore rules.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional
from urllib.parse import urlparse

import yaml

from . import log
from .errors import ConfigError
from .ignore import IgnoreRules, build_ignore_rules
from .registry import DEFAULT_PAGE_SIZE, DEFAULT_TIMEOUT

ENV_PREFIX = "IMG_UPGR_"

DEFAULT_CONCURRENCY = 5
DEFAULT_CONFIG_FILE = ".img-upgr.yaml"
VALID_OUTPUT_FORMATS = ("text", "json", "yaml")


def _env(environ: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    value = environ.get(ENV_PREFIX + name, "").strip()
    return value or default


def _env_int(environ: Mapping[str, str], name: str, default: int, problems: List[str]) -> int:
    raw = _env(environ, name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        problems.append(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}")
        return default


@dataclass
class Settings:
    scan_dir: Optional[str] = None
    log_level: str = "INFO"
    verbose: bool = False
    quiet: bool = False
    output_format: str = "text"
    dry_run: bool = False
    create_mr: bool = False
    # None means "use the repository's default branch"
    target_branch: Optional[str] = None
    report_path: Optional[str] = None

    gitlab_user: Optional[str] = None
    gitlab_token: Optional[str] = None
    gitlab_repo: Optional[str] = None
    gitlab_email: Optional[str] = None

    dockerhub_username: Optional[str] = None
    dockerhub_token: Optional[str] = None

    concurrency: int = DEFAULT_CONCURRENCY
    request_timeout: int = DEFAULT_TIMEOUT
    page_size: int = DEFAULT_PAGE_SIZE
    config_file: Optional[str] = None

    ignore: IgnoreRules = field(default_factory=IgnoreRules)
    problems: List[str] = field(default_factory=list, repr=False)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        problems: List[str] = []
        settings = cls(
            scan_dir=_env(env, "SCANDIR"),
            log_level=_env(env, "LOG_LEVEL", "INFO"),
            output_format=_env(env, "OUTPUT_FORMAT", "text"),
            target_branch=_env(env, "TARGET_BRANCH"),
            gitlab_user=_env(env, "GL_USER"),
            gitlab_token=_env(env, "GL_TOKEN"),
            gitlab_repo=_env(env, "GL_REPO"),
            gitlab_email=_env(env, "GL_EMAIL"),
            dockerhub_username=env.get("DOCKERHUB_USERNAME", "").strip() or None,
            dockerhub_token=(
                env.get("DOCKERHUB_TOKEN", "").strip()
                or env.get("DOCKERHUB_PASSWORD", "").strip()
                or None
            ),
            concurrency=_env_int(env, "CONCURRENCY", DEFAULT_CONCURRENCY, problems),
            request_timeout=_env_int(env, "REQUEST_TIMEOUT", DEFAULT_TIMEOUT, problems),
            page_size=_env_int(env, "PAGE_SIZE", DEFAULT_PAGE_SIZE, problems),
            config_file=_env(env, "CONFIG"),
        )
        settings.problems = problems
        return settings

    @property
    def wants_proposals(self) -> bool:
        return self.create_mr and not self.dry_run

    def scan_path(self, checkout: Optional[Path] = None) -> Optional[Path]:
        """Resolve the scan directory, relative paths landing inside the checkout."""
        if checkout is None:
            return Path(self.scan_dir) if self.scan_dir else None
        if not self.scan_dir:
            return checkout
        path = Path(self.scan_dir)
        return path if path.is_absolute() else checkout / path

    def validate(self, checkout: Optional[Path] = None) -> None:
        problems = list(self.problems)

        if self.log_level.upper() not in log.LEVELS:
            problems.append(
                f"invalid log level: {self.log_level} (valid levels: {', '.join(log.LEVELS)})"
            )
        if self.output_format not in VALID_OUTPUT_FORMATS:
            problems.append(
                f"invalid output format: {self.output_format} "
                f"(valid formats: {', '.join(VALID_OUTPUT_FORMATS)})"
            )
        for name in ("concurrency", "request_timeout", "page_size"):
            if getattr(self, name) <= 0:
                problems.append(f"{name} must be positive")

        scan_path = self.scan_path(checkout)
        if scan_path is not None and not scan_path.exists():
            problems.append(f"scan path does not exist: {scan_path}")

        if self.create_mr and self.target_branch == "":
            problems.append("target branch must not be empty when creating merge requests")

        if problems:
            raise ConfigError(problems)

    def validate_gitlab(self) -> None:
        """Credentials are only required once merge requests are requested."""
        if not self.create_mr:
            return
        required = {
            ENV_PREFIX + "GL_USER": self.gitlab_user,
            ENV_PREFIX + "GL_TOKEN": self.gitlab_token,
            ENV_PREFIX + "GL_REPO": self.gitlab_repo,
            ENV_PREFIX + "GL_EMAIL": self.gitlab_email,
        }
        problems = []
        missing = [name for name, value in required.items() if not value]
        if missing:
            problems.append(f"missing required environment variables: {', '.join(missing)}")
        if self.gitlab_repo:
            parsed = urlparse(self.gitlab_repo)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                problems.append(f"invalid repository URL: {self.gitlab_repo}")
        if problems:
            raise ConfigError(problems)

    def load_config_file(self, base: Optional[Path] = None) -> None:
        """Read ignore rules from the YAML config file, if there is one."""
        if self.config_file:
            path = Path(self.config_file)
            if not path.is_absolute() and base is not None:
                path = base / path
            if not path.exists():
                raise ConfigError([f"config file not found: {path}"])
        else:
            path = (base or Path(".")) / DEFAULT_CONFIG_FILE
            if not path.exists():
                return

        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError([f"could not load config file {path}: {e}"]) from e
        if not isinstance(data, dict):
            raise ConfigError([f"config file {path} must contain a mapping"])

        self.ignore = build_ignore_rules(data.get("ignore"))
        if self.ignore:
            log.info(f"Ignore rules loaded: {len(self.ignore)} rule(s)")
