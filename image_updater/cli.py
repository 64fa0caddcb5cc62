"""img-upgr command line."""
import asyncio
import platform
import signal
from pathlib import Path
from typing import List, Optional

import typer

from . import __version__, log, report, runner
from .cancellation import CancelToken
from .config import Settings
from .errors import Cancelled, ConfigError, GitError, ScanCancelled

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2

app = typer.Typer(
    name="img-upgr",
    help="Docker image upgrade checker for docker-compose files.",
    no_args_is_help=True,
)

OutputOption = typer.Option(None, "--output", "-o", help="Output format: text, json, yaml")
DryRunOption = typer.Option(False, "--dry-run", help="Check for updates but don't create merge requests")
CreateMROption = typer.Option(False, "--create-mr", help="Create a merge request per update")
TargetBranchOption = typer.Option(
    None, "--target-branch", help="Target branch for merge requests (default: repository default branch)"
)
ReportOption = typer.Option(None, "--report", help="Also write a text summary to this file")


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress all output except warnings, errors and the summary"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARN, ERROR"),
) -> None:
    settings = Settings.from_env()
    settings.verbose = verbose
    settings.quiet = quiet
    if log_level:
        settings.log_level = log_level
    ctx.obj = settings


def _interrupt(cancel: CancelToken) -> None:
    log.info("Received interrupt signal, shutting down gracefully...")
    cancel.cancel()


async def _main(settings: Settings, files: Optional[List[str]]) -> int:
    cancel = CancelToken()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _interrupt, cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # no signal handlers on Windows event loops
            continue

    try:
        summary = await runner.run(settings, cancel, files)
    except ScanCancelled as e:
        log.error(f"Scan cancelled, {len(e.candidates)} update(s) found so far were not proposed")
        return EXIT_ERROR
    except Cancelled as e:
        log.error("Run cancelled", e)
        return EXIT_ERROR
    except ConfigError as e:
        log.error(str(e))
        return EXIT_ERROR
    except GitError as e:
        log.error("Repository setup failed", e)
        return EXIT_ERROR
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)

    typer.echo(report.render(summary, settings.output_format))
    if settings.report_path:
        await report.write_report(Path(settings.report_path), summary)

    log.info(f"Total time: {summary.duration:.2f}s")
    if summary.cancelled:
        log.error(f"Run cancelled, {summary.applied} merge request(s) were created before the signal")
        return EXIT_ERROR
    if summary.failed:
        return EXIT_PARTIAL
    return EXIT_OK


def _execute(settings: Settings, files: Optional[List[str]] = None) -> None:
    log.configure(
        settings.log_level,
        verbose=settings.verbose,
        quiet=settings.quiet,
        stderr_only=settings.output_format != "text",
    )
    if settings.verbose:
        log.debug("Running with verbose logging")
        log.debug(_version_info())
    raise typer.Exit(asyncio.run(_main(settings, files)))


def _apply(
    settings: Settings,
    output: Optional[str],
    dry_run: bool,
    create_mr: bool,
    target_branch: Optional[str],
    report_path: Optional[str],
) -> Settings:
    if output:
        settings.output_format = output
    settings.dry_run = dry_run
    settings.create_mr = create_mr
    if target_branch is not None:
        settings.target_branch = target_branch
    settings.report_path = report_path
    return settings


@app.command()
def check(
    ctx: typer.Context,
    file: Optional[str] = typer.Argument(None, help="Compose file to check (default: every compose file in the scan directory)"),
    output: Optional[str] = OutputOption,
    dry_run: bool = DryRunOption,
    create_mr: bool = CreateMROption,
    target_branch: Optional[str] = TargetBranchOption,
    report_path: Optional[str] = ReportOption,
) -> None:
    """Check docker-compose files for image updates."""
    settings = _apply(ctx.obj, output, dry_run, create_mr, target_branch, report_path)
    _execute(settings, [file] if file else None)


@app.command()
def scan(
    ctx: typer.Context,
    directory: Optional[str] = typer.Argument(None, help="Directory to scan (default: IMG_UPGR_SCANDIR)"),
    output: Optional[str] = OutputOption,
    dry_run: bool = DryRunOption,
    create_mr: bool = CreateMROption,
    target_branch: Optional[str] = TargetBranchOption,
    report_path: Optional[str] = ReportOption,
) -> None:
    """Scan a directory tree for docker-compose files and check for updates."""
    settings = _apply(ctx.obj, output, dry_run, create_mr, target_branch, report_path)
    if directory:
        settings.scan_dir = directory
    _execute(settings)


def _version_info() -> str:
    return (
        f"Version: {__version__}, Python: {platform.python_version()}, "
        f"OS/Arch: {platform.system().lower()}/{platform.machine()}"
    )


@app.command()
def version() -> None:
    """Print the version number."""
    typer.echo(f"img-upgr version: {__version__}")
    typer.echo(f"Python Version: {platform.python_version()}")
    typer.echo(f"OS/Arch: {platform.system().lower()}/{platform.machine()}")


def main() -> None:
    app()
