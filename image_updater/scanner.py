"""
Update set builder: resolve every service image across a set of compose
files and collect the ones with a newer tag.
"""
import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple

from . import log
from .cancellation import CancelToken
from .errors import Cancelled, NoTagFound, NotVersionLike, RegistryError, RegistryHTTPError, ScanCancelled
from .ignore import IgnoreRules
from .registry import DockerHubClient
from .resolver import resolve
from .tags import parse_reference, parse_tag

DEFAULT_CONCURRENCY = 5


@dataclass(frozen=True)
class UpdateCandidate:
    service_name: str
    file_path: Path
    old_image: str
    new_image: str
    repository: str
    old_tag: str
    new_tag: str

    def as_dict(self) -> dict:
        return {
            "service": self.service_name,
            "file": str(self.file_path),
            "old_image": self.old_image,
            "new_image": self.new_image,
            "repository": self.repository,
            "old_tag": self.old_tag,
            "new_tag": self.new_tag,
        }


class UpdateSetBuilder:
    """
    Resolve images concurrently (bounded by a semaphore) and gather the
    resulting candidates in manifest order, then service order.
    """

    def __init__(
        self,
        registry: DockerHubClient,
        concurrency: int = DEFAULT_CONCURRENCY,
        ignore: Optional[IgnoreRules] = None,
    ):
        self.registry = registry
        self.concurrency = concurrency
        self.ignore = ignore or IgnoreRules()

    async def build(
        self,
        manifests: Sequence[Path],
        images_per_manifest: Mapping[Path, Mapping[str, str]],
        cancel: CancelToken,
    ) -> List[UpdateCandidate]:
        """
        Raises:
            ScanCancelled: carrying the candidates found before cancellation
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        lock = asyncio.Lock()
        collected: List[Tuple[int, UpdateCandidate]] = []

        async def worker(order: int, path: Path, service: str, image: str) -> None:
            async with semaphore:
                cancel.raise_if_cancelled()
                candidate = await self.check_service(path, service, image, cancel)
            if candidate is not None:
                async with lock:
                    collected.append((order, candidate))

        jobs = []
        for path in manifests:
            images = images_per_manifest.get(path) or {}
            if not images:
                log.info(f"No images found in {path}")
                continue
            log.info(f"Found {len(images)} services with images in {path.name}")
            for service, image in images.items():
                jobs.append((len(jobs), path, service, image))

        tasks = [asyncio.ensure_future(worker(*job)) for job in jobs]
        try:
            await asyncio.gather(*tasks)
        except Cancelled:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise ScanCancelled(self._ordered(collected))
        except BaseException:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return self._ordered(collected)

    @staticmethod
    def _ordered(collected: List[Tuple[int, UpdateCandidate]]) -> List[UpdateCandidate]:
        return [c for _, c in sorted(collected, key=lambda item: item[0])]

    async def check_service(
        self, path: Path, service: str, image: str, cancel: CancelToken
    ) -> Optional[UpdateCandidate]:
        """Resolve one service image. Skip-worthy and registry errors are logged, not raised."""
        log.info(f"Checking image for service {service}: {image}", indent=1)
        try:
            ref = parse_reference(image)
            parsed = parse_tag(ref.tag)
        except (NoTagFound, NotVersionLike) as e:
            log.debug(f"Skipping {service}: {e}", indent=2)
            return None

        ignored, reason = self.ignore.should_skip(service, ref.repository, ref.tag)
        if ignored:
            log.skip(f"{service}: {reason}", indent=2)
            return None

        log.debug(f"Parsed version: prefix='{parsed.prefix}', version={parsed.version_text}", indent=2)

        try:
            tags = await self.registry.fetch_all_tags(ref.repository, cancel)
        except RegistryHTTPError as e:
            if e.status == 404:
                log.warn(f"Repository {ref.repository} not found, skipping {service}", indent=2)
            else:
                log.error(f"Error checking {service}", e, indent=2)
            return None
        except RegistryError as e:
            log.error(f"Error checking {service}", e, indent=2)
            return None

        tags = self.ignore.filter_tags(service, ref.repository, tags)
        resolution = resolve(parsed, tags)
        if resolution is None:
            log.info(f"No matching versions found for {service}", indent=2)
            return None
        if not resolution.has_update:
            log.info(f"{service} is up to date ({ref.tag})", indent=2)
            return None

        new_ref = ref.with_tag(resolution.latest_tag)
        log.info(f"Update available: {ref.tag} -> {resolution.latest_tag}", indent=2)
        return UpdateCandidate(
            service_name=service,
            file_path=path,
            old_image=image,
            new_image=str(new_ref),
            repository=ref.repository,
            old_tag=ref.tag,
            new_tag=resolution.latest_tag,
        )
