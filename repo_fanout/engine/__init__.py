"""Workflow state machine and execution engine.

This package runs the fan-out workflow over a workflow directory:

Key Components:
    - WorkflowStore: Durable per-(repo, stage) JSON records
    - check_workflow_version: Refuses directories made by another version
    - StagePipeline: Runs init and the per-repository stages
    - ParallelExecutor: Bounded worker pool used by the pipeline

Workflow Stages:
    - Clone: Check out every repository
    - Plan: Run the change command and commit on a branch
    - Push: Push the branch and open a pull/merge request
    - Merge: Merge approved, passing change requests
    - Status: Snapshot change request state

Example:
    >>> from repo_fanout.engine import StagePipeline, WorkflowStore
    >>> store = WorkflowStore("./fanout")
    >>> pipeline = StagePipeline(store, provider, version="0.1.0")
    >>> summary = await pipeline.run(CloneStage(store, provider))
"""

from repo_fanout.engine.parallel_executor import ParallelExecutor, TaskResult
from repo_fanout.engine.pipeline import (
    OutcomeStatus,
    ProgressRow,
    RepoOutcome,
    StagePipeline,
    StageSummary,
)
from repo_fanout.engine.version_gate import check_workflow_version
from repo_fanout.engine.workflow_store import WorkflowStore

__all__ = [
    "OutcomeStatus",
    "ParallelExecutor",
    "ProgressRow",
    "RepoOutcome",
    "StagePipeline",
    "StageSummary",
    "TaskResult",
    "WorkflowStore",
    "check_workflow_version",
]
