"""
Thin async wrapper around the git command line for one working tree.

Every call runs `git` as a subprocess in the checkout directory; a non-zero
exit becomes a GitError carrying the combined output.
"""
import asyncio
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import quote, urlparse, urlunparse

from . import log
from .errors import GitError, NothingToCommit

FALLBACK_DEFAULT_BRANCH = "main"


def authenticated_url(repo_url: str, user: Optional[str], token: Optional[str]) -> str:
    """Embed credentials in an http(s) clone URL."""
    if not (user and token):
        return repo_url
    parsed = urlparse(repo_url)
    if parsed.scheme not in ("http", "https"):
        return repo_url
    host = parsed.hostname or ""
    if parsed.port:
        host = f"{host}:{parsed.port}"
    netloc = f"{quote(user, safe='')}:{quote(token, safe='')}@{host}"
    return urlunparse(parsed._replace(netloc=netloc))


async def run_git(cwd: Optional[Path], *args: str) -> Tuple[int, str]:
    """Run git and return (returncode, combined stdout/stderr)."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=str(cwd) if cwd is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        raise GitError("git " + (args[0] if args else ""), None, str(e)) from e
    try:
        out, _ = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    return proc.returncode, out.decode("utf-8", errors="replace")


class GitRepository:
    """Version-control gateway bound to a single checkout directory."""

    def __init__(self, workdir: Path):
        self.workdir = Path(workdir)

    async def _git(self, *args: str) -> str:
        code, output = await run_git(self.workdir, *args)
        if code != 0:
            raise GitError("git " + " ".join(args), code, output)
        return output

    @classmethod
    async def clone(
        cls,
        repo_url: str,
        dest: Path,
        user: Optional[str] = None,
        token: Optional[str] = None,
    ) -> "GitRepository":
        log.info(f"Cloning repository {repo_url} to {dest}")
        code, output = await run_git(None, "clone", authenticated_url(repo_url, user, token), str(dest))
        if code != 0:
            # never echo the credentialed URL back
            if token:
                output = output.replace(token, "***")
            raise GitError(f"git clone {repo_url}", code, output)
        return cls(dest)

    async def configure_user(self, name: str, email: str) -> None:
        log.debug(f"Setting git user to {name} <{email}>")
        await self._git("config", "user.name", name)
        await self._git("config", "user.email", email)

    async def checkout(self, branch: str) -> None:
        await self._git("checkout", branch)

    async def pull(self, branch: str) -> None:
        await self._git("pull", "origin", branch)

    async def create_branch(self, name: str) -> None:
        await self._git("checkout", "-b", name)

    async def add_all(self) -> None:
        await self._git("add", ".")

    async def discard_changes(self) -> None:
        """Drop staged, unstaged and untracked changes. Commits and pushes are untouched."""
        await self._git("reset", "--hard")
        await self._git("clean", "-fd")

    async def commit(self, message: str) -> None:
        """
        Raises:
            NothingToCommit: when there is no staged diff
        """
        code, output = await run_git(self.workdir, "commit", "-m", message)
        if code != 0:
            if "nothing to commit" in output or "no changes added to commit" in output:
                raise NothingToCommit(output)
            raise GitError("git commit", code, output)

    async def push(self) -> None:
        await self._git("push", "origin", "HEAD")

    async def current_branch(self) -> str:
        return (await self._git("rev-parse", "--abbrev-ref", "HEAD")).strip()

    async def default_branch(self) -> str:
        """
        Remote metadata first, then the origin/HEAD symbolic ref, then
        'main'. Never raises.
        """
        output = await self._probe("remote", "show", "origin")
        if output is not None:
            for line in output.splitlines():
                line = line.strip()
                if line.startswith("HEAD branch:"):
                    branch = line[len("HEAD branch:"):].strip()
                    if branch and branch != "(unknown)":
                        log.debug(f"Found default branch from remote: {branch}")
                        return branch

        output = await self._probe("symbolic-ref", "refs/remotes/origin/HEAD", "--short")
        if output and output.strip():
            branch = output.strip()
            if branch.startswith("origin/"):
                branch = branch[len("origin/"):]
            log.debug(f"Found default branch from symbolic ref: {branch}")
            return branch

        log.warn(f"Could not determine default branch, using '{FALLBACK_DEFAULT_BRANCH}' as fallback")
        return FALLBACK_DEFAULT_BRANCH

    async def _probe(self, *args: str) -> Optional[str]:
        try:
            code, output = await run_git(self.workdir, *args)
        except GitError:
            return None
        return output if code == 0 else None

    async def status(self) -> str:
        return await self._git("status", "--porcelain")

    async def has_changes(self) -> bool:
        return bool((await self.status()).strip())
