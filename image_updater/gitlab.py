"""GitLab REST client: branches, file commits and merge requests."""
import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote, urlparse

import aiohttp

from . import log
from .errors import APIError

DEFAULT_TIMEOUT = 30


def project_path(repo_url: str) -> str:
    """
    Derive the project path from a repository URL.

        https://gitlab.example.com/group/app.git -> group/app
    """
    path = urlparse(repo_url).path
    if path.endswith(".git"):
        path = path[: -len(".git")]
    return path.lstrip("/")


@dataclass(frozen=True)
class MergeRequest:
    id: int
    iid: int
    web_url: str
    title: str = ""
    state: str = ""
    created_at: str = ""

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "MergeRequest":
        return cls(
            id=data.get("id", 0),
            iid=data.get("iid", 0),
            web_url=data.get("web_url", ""),
            title=data.get("title", ""),
            state=data.get("state", ""),
            created_at=data.get("created_at", ""),
        )


class GitLabClient:
    """Proposal gateway keyed by the project path of one repository URL."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        repo_url: str,
        token: str,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        parsed = urlparse(repo_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"invalid repository URL: {repo_url}")
        self._session = session
        self._token = token
        self.repo_url = repo_url
        self.base_url = f"{parsed.scheme}://{parsed.netloc}"
        self.timeout = timeout

        path = project_path(repo_url)
        if not path:
            raise ValueError(f"could not extract project path from repository URL: {repo_url}")
        self.project_path = path
        self.project_url = f"{self.base_url}/api/v4/projects/{quote(path, safe='')}"

    async def _request(self, method: str, url: str, body: Optional[dict] = None) -> Any:
        headers = {"PRIVATE-TOKEN": self._token}
        if body is not None:
            headers["Content-Type"] = "application/json"
        log.debug(f"Sending {method} request to {url}")
        try:
            async with self._session.request(
                method,
                url,
                json=body,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status >= 400:
                    try:
                        payload = await resp.json(content_type=None)
                    except (aiohttp.ContentTypeError, ValueError):
                        raise APIError(resp.status, "failed to decode error response")
                    if not isinstance(payload, dict):
                        raise APIError(resp.status, str(payload))
                    raise APIError(resp.status, response=payload)
                if resp.status == 204:
                    return None
                text = await resp.text()
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise APIError(0, f"error sending request: {type(e).__name__}: {e}") from e
        return text

    async def _request_json(self, method: str, url: str, body: Optional[dict] = None) -> Dict[str, Any]:
        text = await self._request(method, url, body)
        if not text:
            return {}
        try:
            data = json.loads(text)
        except ValueError as e:
            raise APIError(0, f"error parsing response: {e}") from e
        return data if isinstance(data, dict) else {}

    async def create_merge_request(
        self, source_branch: str, target_branch: str, title: str, description: str
    ) -> MergeRequest:
        log.info(f"Creating merge request from {source_branch} to {target_branch}: {title}")
        data = await self._request_json(
            "POST",
            f"{self.project_url}/merge_requests",
            {
                "source_branch": source_branch,
                "target_branch": target_branch,
                "title": title,
                "description": description,
            },
        )
        mr = MergeRequest.from_json(data)
        log.info(f"Merge request created successfully: {mr.web_url}")
        return mr

    async def create_branch(self, name: str, ref: str) -> None:
        log.info(f"Creating branch {name} from {ref}")
        await self._request(
            "POST",
            f"{self.project_url}/repository/branches",
            {"branch": name, "ref": ref},
        )

    async def commit_file(self, branch: str, file_path: str, content: str, commit_message: str) -> None:
        """Update a file on a branch, creating it when it does not exist yet."""
        log.info(f"Committing file {file_path} on branch {branch}")
        url = f"{self.project_url}/repository/files/{quote(file_path, safe='')}"
        body = {"branch": branch, "content": content, "commit_message": commit_message}
        try:
            await self._request("PUT", url, body)
        except APIError as e:
            if e.status != 404:
                raise
            log.debug("File not found, creating new file")
            await self._request("POST", url, body)

    async def get_file(self, branch: str, file_path: str) -> str:
        url = f"{self.project_url}/repository/files/{quote(file_path, safe='')}/raw?ref={quote(branch, safe='')}"
        text = await self._request("GET", url)
        return text or ""
