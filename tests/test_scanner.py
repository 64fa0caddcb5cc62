"""Tests for the update set builder."""

import asyncio
from pathlib import Path

import pytest

from image_updater.cancellation import CancelToken
from image_updater.errors import Cancelled, RegistryHTTPError, RegistryNetworkError, ScanCancelled
from image_updater.ignore import build_ignore_rules
from image_updater.scanner import UpdateCandidate, UpdateSetBuilder


class FakeRegistry:
    """Serves canned tag lists per repository; exceptions are raised."""

    def __init__(self, tags):
        self.tags = tags
        self.calls = []

    async def fetch_all_tags(self, repository, cancel=None):
        self.calls.append(repository)
        if cancel is not None and cancel.cancelled:
            raise Cancelled()
        await asyncio.sleep(0)
        result = self.tags[repository]
        if isinstance(result, Exception):
            raise result
        return list(result)


COMPOSE = Path("docker-compose.yml")
OTHER = Path("stack/compose.yaml")


class TestBuild:
    """Tests for UpdateSetBuilder.build."""

    @pytest.mark.asyncio
    async def test_collects_updates(self):
        """Only images with a strictly newer tag become candidates."""
        registry = FakeRegistry({
            "nginx": ["apache-2.34.0", "apache-2.35.0", "apache-rc1"],
            "redis": ["7.0.0"],
        })
        builder = UpdateSetBuilder(registry)
        images = {COMPOSE: {"web": "nginx:apache-2.34.0", "cache": "redis:7.0.0"}}

        result = await builder.build([COMPOSE], images, CancelToken())

        assert result == [
            UpdateCandidate(
                service_name="web",
                file_path=COMPOSE,
                old_image="nginx:apache-2.34.0",
                new_image="nginx:apache-2.35.0",
                repository="nginx",
                old_tag="apache-2.34.0",
                new_tag="apache-2.35.0",
            )
        ]

    @pytest.mark.asyncio
    async def test_skips_untrackable_images(self):
        """myapp:latest and tagless images are skipped without a registry call."""
        registry = FakeRegistry({"redis": ["7.0.0", "7.2.0"]})
        builder = UpdateSetBuilder(registry)
        images = {COMPOSE: {"app": "myapp:latest", "bare": "postgres", "cache": "redis:7.0.0"}}

        result = await builder.build([COMPOSE], images, CancelToken())

        assert registry.calls == ["redis"]
        assert [c.service_name for c in result] == ["cache"]

    @pytest.mark.asyncio
    async def test_registry_errors_do_not_abort(self):
        """404s and network errors skip only their own image."""
        registry = FakeRegistry({
            "gone/app": RegistryHTTPError("gone/app", 404),
            "flaky/app": RegistryNetworkError("flaky/app", "timeout"),
            "redis": ["7.0.0", "7.0.1"],
        })
        builder = UpdateSetBuilder(registry)
        images = {COMPOSE: {"a": "gone/app:1.0.0", "b": "flaky/app:1.0.0", "c": "redis:7.0.0"}}

        result = await builder.build([COMPOSE], images, CancelToken())

        assert [c.new_tag for c in result] == ["7.0.1"]

    @pytest.mark.asyncio
    async def test_deterministic_order(self):
        """Manifest order first, then service order, whatever finishes first."""
        registry = FakeRegistry({
            "a": ["1.0.0", "1.1.0"],
            "b": ["1.0.0", "1.1.0"],
            "c": ["1.0.0", "1.1.0"],
        })
        builder = UpdateSetBuilder(registry, concurrency=3)
        images = {
            COMPOSE: {"svc-b": "b:1.0.0", "svc-a": "a:1.0.0"},
            OTHER: {"svc-c": "c:1.0.0"},
        }

        result = await builder.build([COMPOSE, OTHER], images, CancelToken())

        assert [(c.file_path, c.service_name) for c in result] == [
            (COMPOSE, "svc-b"),
            (COMPOSE, "svc-a"),
            (OTHER, "svc-c"),
        ]

    @pytest.mark.asyncio
    async def test_empty_manifests(self):
        """Manifests without images contribute nothing."""
        builder = UpdateSetBuilder(FakeRegistry({}))
        assert await builder.build([COMPOSE], {COMPOSE: {}}, CancelToken()) == []

    @pytest.mark.asyncio
    async def test_cancellation_keeps_partial_result(self):
        """Cancelling mid-scan raises ScanCancelled with what was already found."""
        cancel = CancelToken()

        class CancelAfterFirst(FakeRegistry):
            async def fetch_all_tags(self, repository, cancel_token=None):
                tags = await super().fetch_all_tags(repository, cancel_token)
                cancel.cancel()
                return tags

        registry = CancelAfterFirst({"a": ["1.0.0", "2.0.0"], "b": ["1.0.0", "2.0.0"]})
        builder = UpdateSetBuilder(registry, concurrency=1)
        images = {COMPOSE: {"first": "a:1.0.0", "second": "b:1.0.0"}}

        with pytest.raises(ScanCancelled) as excinfo:
            await builder.build([COMPOSE], images, cancel)

        assert [c.service_name for c in excinfo.value.candidates] == ["first"]
        assert registry.calls == ["a"]

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        """A token cancelled up front resolves nothing."""
        registry = FakeRegistry({"a": ["1.0.0", "2.0.0"]})
        cancel = CancelToken()
        cancel.cancel()

        with pytest.raises(ScanCancelled) as excinfo:
            await UpdateSetBuilder(registry).build([COMPOSE], {COMPOSE: {"x": "a:1.0.0"}}, cancel)

        assert excinfo.value.candidates == []
        assert registry.calls == []


class TestIgnoreRules:
    """Ignore rules applied while building."""

    @pytest.mark.asyncio
    async def test_ignored_service(self):
        """A bare service rule skips the image entirely."""
        registry = FakeRegistry({"redis": ["7.0.0", "7.2.0"]})
        ignore = build_ignore_rules({"images": [{"service": "cache"}]})
        builder = UpdateSetBuilder(registry, ignore=ignore)

        result = await builder.build([COMPOSE], {COMPOSE: {"cache": "redis:7.0.0"}}, CancelToken())

        assert result == []
        assert registry.calls == []

    @pytest.mark.asyncio
    async def test_version_pattern_filters_tags(self):
        """versionPattern hides matching tags but still updates otherwise."""
        registry = FakeRegistry({"postgres": ["15.0.0", "15.4.0", "16.1.0"]})
        ignore = build_ignore_rules({"images": [{"repository": "postgres", "versionPattern": r"^16\."}]})
        builder = UpdateSetBuilder(registry, ignore=ignore)

        result = await builder.build([COMPOSE], {COMPOSE: {"db": "postgres:15.0.0"}}, CancelToken())

        assert [c.new_tag for c in result] == ["15.4.0"]
