"""
Base class for per-repository stages.

Stage Lifecycle:
    A stage object is built once per invocation with everything it needs
    (store, provider, operator options) and handed to
    :meth:`StagePipeline.run`, which calls it once per repository:

    1. The pipeline reads the predecessor record named by ``requires``
       (nothing is read for stages that follow init)
    2. ``skip_reason()`` may decline the repository with an explanation
    3. ``process()`` does the work and returns the payload
    4. The pipeline writes a success record with the payload, or a failure
       record with the error detail if ``process()`` raised

Creating New Stages:
    Subclass RepoStage, set ``stage``, ``requires``, ``predecessor_model``
    and ``record_model``, and implement ``process()``.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from repo_fanout.engine.workflow_store import WorkflowStore
from repo_fanout.enums import Stage
from repo_fanout.models.domain import Repo, StageRecord
from repo_fanout.providers.base import RepoProvider


class RepoStage(ABC):
    """Abstract base class for all stages that run per repository.

    Attributes:
        stage: Stage this class implements; names its records.
        requires: Stage whose successful record is this stage's input.
        predecessor_model: Record model of ``requires`` (None after init).
        record_model: Record model this stage writes.
        store: Workflow store for reading extra records and locating
            working directories.
        provider: Hosting provider used for every remote operation.
    """

    stage: Stage
    requires: Stage
    predecessor_model: type[StageRecord[Any]] | None = None
    record_model: type[StageRecord[Any]]

    def __init__(self, store: WorkflowStore, provider: RepoProvider) -> None:
        self.store = store
        self.provider = provider

    def skip_reason(self, repo: Repo, predecessor: StageRecord[Any] | None) -> str | None:
        """Return why ``repo`` should be skipped, or None to process it."""
        return None

    @abstractmethod
    async def process(self, repo: Repo, predecessor: StageRecord[Any] | None) -> BaseModel:
        """Run the stage for one repository.

        Args:
            repo: Repository from the init record.
            predecessor: Successful record of ``requires`` (None after init).

        Returns:
            The payload to store in this stage's record.

        Raises:
            FanoutError: Recorded as this repository's failure.
        """
        pass
