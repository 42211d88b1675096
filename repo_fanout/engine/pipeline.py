"""
Stage pipeline - Runs workflow stages over the repository set.

The pipeline is the workflow's state machine. Each stage runs as its own
invocation and the workflow directory is the only channel between stages:

    init   writes init.json with the repository set
    clone  needs init    -> <repo>/clone/clone.json
    plan   needs clone   -> <repo>/plan/plan.json
    push   needs plan    -> <repo>/push/push.json
    merge  needs push    -> <repo>/merge/merge.json
    status needs push    -> <repo>/status/status.json

For every repository the pipeline reads the predecessor record and decides:

- no predecessor record: skipped, with the reason
- predecessor failed: skipped, with the predecessor's error
- predecessor record unreadable: corrupted, nothing is written
- otherwise the stage runs and a success or failure record is written

Repositories are processed concurrently by a bounded worker pool and one
repository's failure never affects another.

Example:
    >>> pipeline = StagePipeline(store, provider, version="0.1.0")
    >>> await pipeline.initialize(repos_file="repos.txt")
    >>> summary = await pipeline.run(CloneStage(store, provider))
    >>> for outcome in summary.skipped:
    ...     print(outcome.repo, outcome.detail)
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from repo_fanout.engine.parallel_executor import ParallelExecutor
from repo_fanout.engine.stages.base import RepoStage
from repo_fanout.engine.workflow_store import WorkflowStore
from repo_fanout.enums import Stage
from repo_fanout.exceptions import (
    ConfigurationError,
    FanoutError,
    RecordCorruptedError,
    RecordNotFoundError,
    WorkflowError,
    WorkflowNotInitializedError,
)
from repo_fanout.models.domain import (
    CloneRecord,
    InitOutput,
    MergeRecord,
    PlanRecord,
    PushRecord,
    Repo,
    StageRecord,
    StatusRecord,
)
from repo_fanout.providers.base import RepoProvider

log = structlog.get_logger(__name__)

# Stages shown by progress(), in workflow order
_PROGRESS_STAGES: tuple[tuple[Stage, type[StageRecord[Any]]], ...] = (
    (Stage.CLONE, CloneRecord),
    (Stage.PLAN, PlanRecord),
    (Stage.PUSH, PushRecord),
    (Stage.MERGE, MergeRecord),
)


class OutcomeStatus(str, Enum):
    """What happened to one repository during a stage run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CORRUPTED = "corrupted"

    def __str__(self) -> str:
        return self.value


@dataclass
class RepoOutcome:
    """Result of running a stage for one repository.

    Attributes:
        repo: Repository name.
        status: Outcome category.
        detail: Skip reason, error message or corruption detail.
    """

    repo: str
    status: OutcomeStatus
    detail: str | None = None


@dataclass
class StageSummary:
    """Outcomes of one stage run, sorted by repository name."""

    stage: Stage
    outcomes: list[RepoOutcome] = field(default_factory=list)

    def _with_status(self, status: OutcomeStatus) -> list[RepoOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def succeeded(self) -> list[RepoOutcome]:
        return self._with_status(OutcomeStatus.SUCCEEDED)

    @property
    def failed(self) -> list[RepoOutcome]:
        return self._with_status(OutcomeStatus.FAILED)

    @property
    def skipped(self) -> list[RepoOutcome]:
        return self._with_status(OutcomeStatus.SKIPPED)

    @property
    def corrupted(self) -> list[RepoOutcome]:
        return self._with_status(OutcomeStatus.CORRUPTED)

    def outcome_for(self, repo_name: str) -> RepoOutcome | None:
        return next((o for o in self.outcomes if o.repo == repo_name), None)


@dataclass
class ProgressRow:
    """One line of the status table.

    Attributes:
        repo: Repository name.
        stage: Furthest stage completed successfully ("init" if none).
        error: Failure detail of the stage after ``stage``, if it failed.
        failed_stage: Stage that failed, if any.
        url: Change request URL once pushed.
        state: Change request state from the latest status record.
        build: Build status from the latest status record.
        approved: Review approval from the latest status record.
        status_error: Error of the latest status refresh, if it failed.
        stale: True when plan was re-run after the last push.
    """

    repo: str
    stage: Stage = Stage.INIT
    error: str | None = None
    failed_stage: Stage | None = None
    url: str | None = None
    state: str | None = None
    build: str | None = None
    approved: bool | None = None
    status_error: str | None = None
    stale: bool = False


class StagePipeline:
    """Runs init and the per-repository stages against a workflow directory.

    Attributes:
        store: Workflow record store.
        provider: Hosting provider (already selected from configuration).
        version: Running tool version, recorded by init.
        executor: Bounded worker pool shared by all stage runs.
    """

    def __init__(
        self,
        store: WorkflowStore,
        provider: RepoProvider,
        version: str,
        max_workers: int = 10,
    ) -> None:
        self.store = store
        self.provider = provider
        self.version = version
        self.executor = ParallelExecutor(max_workers=max_workers)

    async def initialize(self, query: str | None = None, repos_file: str | Path | None = None) -> InitOutput:
        """Resolve the repository set and (re)write ``init.json``.

        Exactly one of ``query`` and ``repos_file`` must be given. Re-running
        init replaces the repository set; records of earlier runs stay on
        disk but only repositories in the new set are processed.

        Raises:
            ConfigurationError: Both or neither input given, unreadable or
                malformed repos file.
            ProviderError: The search failed.
        """
        if (query is None) == (repos_file is None):
            raise ConfigurationError(
                "To init via search, pass a search query. Otherwise, specify a repos file with -f"
            )

        if query is not None:
            if not query.strip():
                raise ConfigurationError("The search query is empty")
            log.info("init_search", query=query)
            repos = await self.provider.search(query)
            source = {"query": query}
        else:
            path = Path(repos_file).absolute()
            try:
                async with aiofiles.open(path) as f:
                    content = await f.read()
            except (OSError, UnicodeDecodeError) as e:
                raise ConfigurationError(f"Cannot read repos file {path}: {e}") from e
            repos = self.provider.repos_from_names(content.splitlines())
            source = {"repos_file": str(path)}

        output = InitOutput(
            version=self.version,
            provider=self.provider.provider_type,
            repos=repos,
            **source,
        )
        await self.store.write_init(output)

        if not repos:
            log.warning("init_no_repos", **source)
        log.info("init_complete", repos=len(repos), work_dir=str(self.store.root))
        return output

    async def load_repos(self, only: str | None = None) -> list[Repo]:
        """Repositories of the workflow, optionally restricted to one.

        Raises:
            WorkflowNotInitializedError: init has not run.
            RecordCorruptedError: ``init.json`` cannot be parsed.
            ConfigurationError: ``only`` is not part of the workflow.
        """
        try:
            init_output = await self.store.read_init()
        except RecordNotFoundError as e:
            raise WorkflowNotInitializedError(self.store.root) from e

        if only is None:
            return list(init_output.repos)

        name = only.strip().removesuffix(".git")
        matching = [repo for repo in init_output.repos if repo.name == name]
        if not matching:
            raise ConfigurationError(f"Repository {only!r} is not part of this workflow (see init.json)")
        return matching

    async def run(self, stage: RepoStage, only: str | None = None) -> StageSummary:
        """Run ``stage`` for every repository of the workflow.

        Args:
            stage: Configured stage object.
            only: Restrict the run to this repository.

        Returns:
            Outcomes for each repository, sorted by name.

        Raises:
            WorkflowNotInitializedError: init has not run.
            ConfigurationError: ``only`` is not part of the workflow.
        """
        repos = await self.load_repos(only)
        known = {repo.name for repo in repos}
        log.info("stage_started", stage=str(stage.stage), repos=len(repos))

        async def _process(repo: Repo) -> RepoOutcome:
            return await self._run_one(stage, repo, known)

        results = await self.executor.map(repos, _process, key=lambda repo: repo.name)

        outcomes: list[RepoOutcome] = []
        for result in results:
            if result.success and result.result is not None:
                outcomes.append(result.result)
            else:
                # Only reachable when recording the outcome itself failed
                outcomes.append(RepoOutcome(result.key, OutcomeStatus.FAILED, str(result.error)))
        outcomes.sort(key=lambda outcome: outcome.repo)

        summary = StageSummary(stage=stage.stage, outcomes=outcomes)
        log.info(
            "stage_complete",
            stage=str(stage.stage),
            succeeded=len(summary.succeeded),
            failed=len(summary.failed),
            skipped=len(summary.skipped),
            corrupted=len(summary.corrupted),
        )
        return summary

    async def _run_one(self, stage: RepoStage, repo: Repo, known: set[str]) -> RepoOutcome:
        bound_log = log.bind(repo=repo.name, stage=str(stage.stage))

        predecessor: StageRecord[Any] | None = None
        if stage.requires != Stage.INIT:
            assert stage.predecessor_model is not None
            try:
                predecessor = await self.store.read(repo.name, stage.requires, stage.predecessor_model)
            except RecordNotFoundError:
                reason = f"no {stage.requires} record"
                bound_log.info("stage_repo_skipped", reason=reason)
                return RepoOutcome(repo.name, OutcomeStatus.SKIPPED, reason)
            except RecordCorruptedError as e:
                bound_log.error("stage_repo_corrupted", path=str(e.path), reason=e.reason)
                return RepoOutcome(repo.name, OutcomeStatus.CORRUPTED, e.message)

            if not predecessor.success:
                reason = f"no {stage.requires} record (last {stage.requires} failed: {predecessor.error})"
                bound_log.info("stage_repo_skipped", reason=reason)
                return RepoOutcome(repo.name, OutcomeStatus.SKIPPED, reason)

        reason = stage.skip_reason(repo, predecessor)
        if reason:
            bound_log.info("stage_repo_skipped", reason=reason)
            return RepoOutcome(repo.name, OutcomeStatus.SKIPPED, reason)

        try:
            payload = await stage.process(repo, predecessor)
        except FanoutError as e:
            bound_log.warning("stage_repo_failed", error=e.message)
            error = e.message
        except Exception as e:
            bound_log.error("stage_repo_failed", error=str(e), exc_info=True)
            error = f"{type(e).__name__}: {e}"
        else:
            record = stage.record_model(repo=repo.name, stage=stage.stage, success=True, payload=payload)
            await self._write(repo.name, stage.stage, record, known)
            bound_log.info("stage_repo_succeeded")
            return RepoOutcome(repo.name, OutcomeStatus.SUCCEEDED)

        record = stage.record_model(repo=repo.name, stage=stage.stage, success=False, error=error)
        await self._write(repo.name, stage.stage, record, known)
        return RepoOutcome(repo.name, OutcomeStatus.FAILED, error)

    async def _write(self, repo_name: str, stage: Stage, record: StageRecord[Any], known: set[str]) -> None:
        if repo_name not in known:
            raise WorkflowError(f"Refusing to record {stage} for {repo_name}: not part of the workflow")
        await self.store.write(repo_name, stage, record)

    async def progress(self, only: str | None = None) -> list[ProgressRow]:
        """Summarise how far each repository has progressed.

        Corrupted records are reported in the row's ``error`` instead of
        being raised, so one damaged file does not hide the whole table.

        Raises:
            WorkflowNotInitializedError: init has not run.
            ConfigurationError: ``only`` is not part of the workflow.
        """
        rows = [await self._progress_row(repo) for repo in await self.load_repos(only)]
        return sorted(rows, key=lambda row: row.repo)

    async def _progress_row(self, repo: Repo) -> ProgressRow:
        row = ProgressRow(repo=repo.name)
        records: dict[Stage, StageRecord[Any]] = {}

        for stage, model in _PROGRESS_STAGES:
            try:
                record = await self.store.read(repo.name, stage, model)
            except RecordNotFoundError:
                break
            except RecordCorruptedError as e:
                row.failed_stage = stage
                row.error = e.message
                break
            if not record.success:
                row.failed_stage = stage
                row.error = record.error
                break
            records[stage] = record
            row.stage = stage

        push = records.get(Stage.PUSH)
        plan = records.get(Stage.PLAN)
        if push is not None:
            row.url = push.payload.change_request.url
            row.stale = plan is not None and plan.recorded_at > push.recorded_at

        try:
            status = await self.store.read(repo.name, Stage.STATUS, StatusRecord)
        except (RecordNotFoundError, RecordCorruptedError):
            status = None
        if status is not None and not status.success:
            row.status_error = status.error
        elif status is not None and status.payload is not None:
            snapshot = status.payload.change_request
            row.state = str(snapshot.state)
            row.build = str(snapshot.build_status)
            row.approved = snapshot.approved

        return row
