"""CLI entry point for repo-fanout.

Each workflow stage is its own command and the workflow directory carries
state between them::

    fanout init "org:acme filename:Dockerfile"
    fanout clone
    fanout plan -b bump-base-image -m "Bump base image" -- ./bump.sh
    fanout push -a reviewer
    fanout status
    fanout merge

Exit codes:
    0: the stage ran (individual repositories may have failed or been skipped)
    1: fatal error, or corrupted records were found
    130: interrupted
"""

import asyncio
import re
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path

import click
import structlog

from repo_fanout import __version__
from repo_fanout.config.settings import FanoutSettings
from repo_fanout.engine.pipeline import ProgressRow, StagePipeline, StageSummary
from repo_fanout.engine.stages import CloneStage, MergeStage, PlanStage, PushStage, RepoStage, StatusStage
from repo_fanout.engine.version_gate import check_workflow_version
from repo_fanout.engine.workflow_store import WorkflowStore
from repo_fanout.exceptions import FanoutError
from repo_fanout.providers.factory import create_repo_provider
from repo_fanout.utils.logging_config import configure_logging
from repo_fanout.utils.rate_limiter import RateLimiter

log = structlog.get_logger(__name__)

DEFAULT_WORK_DIR = "fanout"
DEFAULT_THROTTLE = "30s"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str) -> float:
    """Parse a duration such as ``500ms``, ``30s``, ``1m30s`` or ``2h`` into seconds.

    A bare ``0`` is accepted and disables the throttle.

    Raises:
        ValueError: If the value is not a valid duration.
    """
    text = value.strip()
    if text == "0":
        return 0.0

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration {value!r} (expected e.g. 500ms, 30s, 1m30s, 2h)")
    return total


def _duration_option(ctx: click.Context, param: click.Parameter, value: str) -> float:
    try:
        return parse_duration(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


@click.group()
@click.version_option(__version__, prog_name="fanout")
@click.option(
    "--work-dir",
    default=DEFAULT_WORK_DIR,
    show_default=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Workflow directory holding all stage records",
)
@click.option("--repo", "-r", "repo", default=None, help="Only operate on this repository (namespace/name)")
@click.option(
    "--workers",
    type=click.IntRange(1, 100),
    default=None,
    help="Repositories processed concurrently [default: FANOUT_WORKERS or 10]",
)
@click.option("--log-level", default="INFO", help="Logging level")
@click.pass_context
def cli(ctx: click.Context, work_dir: Path, repo: str | None, workers: int | None, log_level: str) -> None:
    """repo-fanout: apply one scripted change across many repositories."""
    configure_logging(log_level)
    ctx.obj = {"work_dir": work_dir, "repo": repo, "workers": workers}


@asynccontextmanager
async def _open_pipeline(options: dict) -> AsyncIterator[StagePipeline]:
    """Load configuration, check the workflow version and connect the provider.

    Configuration problems and version mismatches are raised before any
    network request or disk write happens.
    """
    settings = FanoutSettings.load()
    store = WorkflowStore(options["work_dir"])
    await check_workflow_version(store, __version__)

    limiter = RateLimiter(settings.rate_limit_interval, name="provider")
    provider = create_repo_provider(settings, limiter)
    workers = options["workers"] or settings.max_workers

    async with provider:
        yield StagePipeline(store, provider, __version__, max_workers=workers)


def _run(ctx: click.Context, command: Callable[[StagePipeline], Awaitable[int]]) -> None:
    """Run ``command`` against an open pipeline and translate errors into exit codes."""

    async def _main() -> int:
        async with _open_pipeline(ctx.obj) as pipeline:
            return await command(pipeline)

    try:
        exit_code = asyncio.run(_main())
    except FanoutError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("command_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        log.error("command_unexpected_error", exc_info=True)
        sys.exit(1)

    if exit_code:
        sys.exit(exit_code)


def _print_summary(summary: StageSummary) -> int:
    """Print one line per repository; return 1 if corrupted records were found."""
    for outcome in summary.outcomes:
        line = f"{outcome.repo}\t{outcome.status}"
        if outcome.detail:
            line += f"\t{outcome.detail}"
        click.echo(line)

    click.echo(
        f"{summary.stage}: {len(summary.succeeded)} succeeded, {len(summary.failed)} failed, "
        f"{len(summary.skipped)} skipped",
        err=True,
    )
    if summary.corrupted:
        click.echo(
            f"Error: {len(summary.corrupted)} corrupted record(s) found; "
            "re-run the previous stage for those repositories",
            err=True,
        )
        return 1
    return 0


async def _run_stage(pipeline: StagePipeline, stage: RepoStage, only: str | None) -> int:
    return _print_summary(await pipeline.run(stage, only=only))


@cli.command("init")
@click.argument("query", required=False)
@click.option(
    "--repos-file",
    "-f",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="File with one namespace/name per line",
)
@click.pass_context
def init_command(ctx: click.Context, query: str | None, repos_file: Path | None) -> None:
    """Initialize a workflow from a search QUERY or a repos file.

    \b
    GitHub: QUERY is a code search query, e.g. "org:acme filename:Dockerfile".
    GitLab: QUERY searches the projects scope on gitlab.com and code (blobs)
    on self-managed instances with advanced search.

    Re-running init replaces the repository set.
    """
    if (query is None) == (repos_file is None):
        click.echo(
            "Error: to init via search, pass a search query. Otherwise, specify a repos file with -f",
            err=True,
        )
        sys.exit(1)

    async def _init(pipeline: StagePipeline) -> int:
        output = await pipeline.initialize(query=query, repos_file=repos_file)
        for repo in output.repos:
            click.echo(repo.name)
        return 0

    _run(ctx, _init)


@cli.command("clone")
@click.pass_context
def clone_command(ctx: click.Context) -> None:
    """Clone every repository of the workflow."""

    async def _clone(pipeline: StagePipeline) -> int:
        stage = CloneStage(pipeline.store, pipeline.provider)
        return await _run_stage(pipeline, stage, ctx.obj["repo"])

    _run(ctx, _clone)


@cli.command("plan", context_settings={"ignore_unknown_options": True})
@click.option("--branch", "-b", required=True, help="Branch to commit the change on")
@click.option("--message", "-m", required=True, help="Commit message (first line becomes the PR title)")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def plan_command(ctx: click.Context, branch: str, message: str, command: tuple[str, ...]) -> None:
    """Run COMMAND in every clone and commit the result.

    \b
    Example:
        fanout plan -b bump-go -m "Bump Go to 1.22" -- sed -i 's/1.21/1.22/' go.mod

    COMMAND runs with FANOUT_REPO_NAME, FANOUT_REPO_OWNER and
    FANOUT_REPO_SHORT_NAME set.
    """

    async def _plan(pipeline: StagePipeline) -> int:
        stage = PlanStage(pipeline.store, pipeline.provider, branch=branch, message=message, command=command)
        return await _run_stage(pipeline, stage, ctx.obj["repo"])

    _run(ctx, _plan)


@cli.command("push")
@click.option(
    "--throttle",
    "-t",
    default=DEFAULT_THROTTLE,
    show_default=True,
    callback=_duration_option,
    help="Minimum time between pushes, e.g. 500ms, 30s, 1m30s",
)
@click.option("--assignee", "-a", default=None, help="User to assign the change requests to")
@click.option(
    "--body-file",
    "-b",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="File with the change request description (default: the commit message)",
)
@click.pass_context
def push_command(ctx: click.Context, throttle: float, assignee: str | None, body_file: Path | None) -> None:
    """Push planned changes and open pull/merge requests."""
    body = body_file.read_text() if body_file is not None else None

    async def _push(pipeline: StagePipeline) -> int:
        stage = PushStage(
            pipeline.store,
            pipeline.provider,
            throttle=RateLimiter(throttle, name="push_throttle"),
            assignee=assignee,
            body=body,
        )
        return await _run_stage(pipeline, stage, ctx.obj["repo"])

    _run(ctx, _push)


@cli.command("merge")
@click.option(
    "--throttle",
    "-t",
    default=DEFAULT_THROTTLE,
    show_default=True,
    callback=_duration_option,
    help="Minimum time between merges, e.g. 500ms, 30s, 1m30s",
)
@click.option("--ignore-review-approval", is_flag=True, help="Merge without an approved review")
@click.option("--ignore-build-status", is_flag=True, help="Merge without a passing build")
@click.pass_context
def merge_command(
    ctx: click.Context,
    throttle: float,
    ignore_review_approval: bool,
    ignore_build_status: bool,
) -> None:
    """Merge change requests that are approved and passing."""

    async def _merge(pipeline: StagePipeline) -> int:
        stage = MergeStage(
            pipeline.store,
            pipeline.provider,
            throttle=RateLimiter(throttle, name="merge_throttle"),
            ignore_review_approval=ignore_review_approval,
            ignore_build_status=ignore_build_status,
        )
        return await _run_stage(pipeline, stage, ctx.obj["repo"])

    _run(ctx, _merge)


def _format_progress(rows: list[ProgressRow]) -> list[str]:
    headers = ("REPO", "STAGE", "DETAILS")
    table: list[tuple[str, str, str]] = []

    for row in rows:
        stage = str(row.stage)
        details: list[str] = []
        if row.failed_stage is not None:
            stage = f"{row.failed_stage} failed"
            details.append(row.error or "")
        if row.url:
            details.append(row.url)
        if row.state:
            details.append(row.state)
        if row.build:
            details.append(f"build: {row.build}")
        if row.approved is not None:
            details.append("approved" if row.approved else "not approved")
        if row.status_error:
            details.append(f"status failed: {row.status_error}")
        if row.stale:
            details.append("stale: plan re-run since push")
        table.append((row.repo, stage, ", ".join(d for d in details if d)))

    widths = [max(len(headers[i]), *(len(r[i]) for r in table)) if table else len(headers[i]) for i in range(2)]
    lines = [f"{headers[0]:<{widths[0]}}  {headers[1]:<{widths[1]}}  {headers[2]}"]
    lines.extend(f"{repo:<{widths[0]}}  {stage:<{widths[1]}}  {details}".rstrip() for repo, stage, details in table)
    return lines


@cli.command("status")
@click.option("--refresh/--no-refresh", default=True, help="Query the provider for pushed change requests first")
@click.pass_context
def status_command(ctx: click.Context, refresh: bool) -> None:
    """Show how far each repository has progressed."""

    async def _status(pipeline: StagePipeline) -> int:
        exit_code = 0
        if refresh:
            summary = await pipeline.run(StatusStage(pipeline.store, pipeline.provider), only=ctx.obj["repo"])
            for outcome in summary.failed + summary.corrupted:
                click.echo(f"{outcome.repo}\t{outcome.status}\t{outcome.detail}", err=True)
            if summary.failed:
                click.echo(f"status: refresh failed for {len(summary.failed)} repositories", err=True)
            if summary.corrupted:
                exit_code = 1
        for line in _format_progress(await pipeline.progress(only=ctx.obj["repo"])):
            click.echo(line)
        return exit_code

    _run(ctx, _status)


if __name__ == "__main__":
    cli()
