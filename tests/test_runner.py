"""Tests for a full batch run without external services."""

import pytest

from image_updater import runner
from image_updater.cancellation import CancelToken
from image_updater.config import Settings
from image_updater.errors import ConfigError, ProposalsCancelled
from image_updater.gitlab import MergeRequest
from image_updater.workflow import Stage, WorkflowState


class FakeDockerHub:
    tags = {
        "nginx": ["1.25.0", "1.27.0", "mainline"],
        "postgres": ["15.0.0", "15.4.0", "16.1.0"],
    }

    def __init__(self, session, **kwargs):
        self.kwargs = kwargs
        self.authenticated = False

    async def fetch_all_tags(self, repository, cancel=None):
        return list(self.tags.get(repository, []))


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.setattr(runner, "DockerHubClient", FakeDockerHub)
    (tmp_path / "docker-compose.yml").write_text(
        "services:\n"
        "  web:\n"
        "    image: nginx:1.25.0\n"
        "  db:\n"
        "    image: postgres:15.0.0\n"
    )
    return tmp_path


class TestResolveFiles:
    """Tests for resolve_files."""

    def test_explicit_file(self, project):
        """An explicit file is used as is."""
        path = project / "docker-compose.yml"
        assert runner.resolve_files(Settings(), None, [str(path)]) == [path]

    def test_explicit_file_missing(self, project):
        """A missing explicit file is a configuration error."""
        with pytest.raises(ConfigError):
            runner.resolve_files(Settings(), None, [str(project / "nope.yml")])

    def test_relative_to_checkout(self, project):
        """Relative files resolve inside the checkout."""
        assert runner.resolve_files(Settings(), project, ["docker-compose.yml"]) == [project / "docker-compose.yml"]

    def test_scan_directory(self, project):
        """Without files the scan directory is walked."""
        assert runner.resolve_files(Settings(scan_dir=str(project)), None, None) == [project / "docker-compose.yml"]

    def test_no_scan_directory(self):
        """Nothing to scan is a configuration error."""
        with pytest.raises(ConfigError):
            runner.resolve_files(Settings(), None, None)


class TestRun:
    """Tests for runner.run."""

    @pytest.mark.asyncio
    async def test_scan_only(self, project):
        """Updates are found without touching version control."""
        summary = await runner.run(Settings(scan_dir=str(project)), CancelToken())

        assert summary.files == [project / "docker-compose.yml"]
        assert [(c.service_name, c.new_tag) for c in summary.candidates] == [("web", "1.27.0"), ("db", "16.1.0")]
        assert summary.outcomes == []
        assert summary.failed == 0

    @pytest.mark.asyncio
    async def test_config_file_ignore_rules(self, project):
        """Ignore rules in the scan root are honored."""
        (project / ".img-upgr.yaml").write_text(
            "ignore:\n"
            "  images:\n"
            "    - service: web\n"
            "    - repository: postgres\n"
            "      versionPattern: '^16\\.'\n"
        )
        summary = await runner.run(Settings(scan_dir=str(project)), CancelToken())

        assert [(c.service_name, c.new_tag) for c in summary.candidates] == [("db", "15.4.0")]

    @pytest.mark.asyncio
    async def test_missing_credentials(self, project):
        """Requesting merge requests without credentials fails early."""
        with pytest.raises(ConfigError):
            await runner.run(Settings(scan_dir=str(project), create_mr=True), CancelToken())

    @pytest.mark.asyncio
    async def test_no_files(self, tmp_path, monkeypatch):
        """An empty tree is not an error."""
        monkeypatch.setattr(runner, "DockerHubClient", FakeDockerHub)
        summary = await runner.run(Settings(scan_dir=str(tmp_path)), CancelToken())
        assert summary.files == []
        assert summary.found == 0

    @pytest.mark.asyncio
    async def test_cancelled_workflow_keeps_outcomes(self, project, monkeypatch):
        """Merge requests opened before cancellation stay in the summary."""
        opened = []

        async def propose(settings, session, repo, candidates, cancel):
            opened.append(WorkflowState(candidates[0], stage=Stage.DONE, merge_request=MergeRequest(1, 1, "https://gitlab/mr/1")))
            raise ProposalsCancelled(opened)

        monkeypatch.setattr(runner, "propose", propose)
        settings = Settings(scan_dir=str(project), create_mr=True)
        summary = runner.RunSummary(proposals_requested=True)

        await runner._run_in(settings, None, summary, None, object(), None, CancelToken())

        assert summary.cancelled
        assert summary.found == 2
        assert summary.applied == 1
        assert summary.outcomes[0].merge_request.web_url == "https://gitlab/mr/1"
