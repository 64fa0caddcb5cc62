"""
Docker Hub tag listing.

Follows the paginated `next` chain of the repositories API and returns every
tag name in response order.
"""
import asyncio
import base64
from typing import Dict, List, Optional, Tuple

import aiohttp

from . import log
from .cancellation import CancelToken
from .errors import Cancelled, RegistryDecodeError, RegistryHTTPError, RegistryNetworkError

DOCKERHUB_API_BASE_URL = "https://hub.docker.com/v2/repositories"
DEFAULT_TIMEOUT = 30
DEFAULT_PAGE_SIZE = 100
DEFAULT_NAMESPACE = "library"


def parse_repository_name(repository: str) -> Tuple[str, str]:
    """
    Split a Docker Hub repository into (namespace, name).

    Bare names live in the 'library' namespace:
        nginx          -> ('library', 'nginx')
        bitnami/redis  -> ('bitnami', 'redis')
    """
    if ":" in repository:
        repository = repository.split(":", 1)[0]
    namespace, sep, name = repository.partition("/")
    if not sep:
        return DEFAULT_NAMESPACE, namespace
    return namespace, name


def basic_auth_header(username: Optional[str], token: Optional[str]) -> Dict[str, str]:
    if not (username and token):
        return {}
    encoded = base64.b64encode(f"{username}:{token}".encode()).decode()
    return {"Authorization": f"Basic {encoded}"}


class DockerHubClient:
    """Lists repository tags through the Docker Hub HTTP API."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str = DOCKERHUB_API_BASE_URL,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        username: Optional[str] = None,
        token: Optional[str] = None,
    ):
        self._session = session
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self.timeout = timeout
        self._headers = basic_auth_header(username, token)

    @property
    def authenticated(self) -> bool:
        return bool(self._headers)

    def tags_url(self, repository: str) -> str:
        namespace, name = parse_repository_name(repository)
        return f"{self.base_url}/{namespace}/{name}/tags?page_size={self.page_size}"

    async def fetch_all_tags(self, repository: str, cancel: Optional[CancelToken] = None) -> List[str]:
        """
        Fetch every tag published for a repository.

        Partial results are never returned: a cancelled fetch raises
        Cancelled and drops the pages read so far.

        Raises:
            Cancelled, RegistryNetworkError, RegistryHTTPError, RegistryDecodeError
        """
        url: Optional[str] = self.tags_url(repository)
        tags: List[str] = []
        page = 0

        while url:
            if cancel is not None and cancel.cancelled:
                raise Cancelled(f"tag fetch for {repository} cancelled")

            page += 1
            log.debug(f"Fetching page {page} from {url}", indent=2)
            data = await self._get_page(repository, url)

            results = data.get("results") or []
            if not isinstance(results, list):
                raise RegistryDecodeError(repository, "'results' is not a list")
            for r in results:
                name = r.get("name") if isinstance(r, dict) else None
                if name:
                    tags.append(name)
            url = data.get("next") or None

        log.debug(f"Found {len(tags)} tags for {repository} in {page} page(s)", indent=2)
        return tags

    async def _get_page(self, repository: str, url: str) -> dict:
        try:
            async with self._session.get(
                url,
                headers=self._headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if not 200 <= resp.status < 300:
                    raise RegistryHTTPError(repository, resp.status)
                try:
                    data = await resp.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError) as e:
                    raise RegistryDecodeError(repository, f"JSON parse error: {e}") from e
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            error_msg = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            raise RegistryNetworkError(repository, f"error fetching tags: {error_msg}") from e

        if not isinstance(data, dict):
            raise RegistryDecodeError(repository, "response is not a JSON object")
        return data
