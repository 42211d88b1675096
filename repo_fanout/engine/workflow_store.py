"""
Durable per-repository, per-stage record storage.

The workflow directory is the whole state of a run. Records are JSON files
keyed by (repository name, stage)::

    <root>/init.json                          # the single InitOutput
    <root>/<namespace>/<name>/clone/clone.json
    <root>/<namespace>/<name>/plan/plan.json
    <root>/<namespace>/<name>/push/push.json
    <root>/<namespace>/<name>/merge/merge.json
    <root>/<namespace>/<name>/status/status.json

Working files a stage needs (the clone checkout, the plan working copy) live
next to its record in ``stage_dir(repo, stage)``.

Reads distinguish three outcomes:

- the record is present and valid: the parsed model is returned
- there is no record: :class:`RecordNotFoundError`
- the record exists but cannot be parsed: :class:`RecordCorruptedError`

Concurrency Model:
    Writes are partitioned by (repo, stage) and a stage never processes the
    same repository twice at once, so no locking is needed. Each write goes
    to a temporary file that is renamed over the target, so a concurrent
    reader sees either the old or the new record, never a partial one.

Example:
    >>> store = WorkflowStore("./fanout")
    >>> await store.write("org/a", Stage.CLONE, record)
    >>> record = await store.read("org/a", Stage.CLONE, CloneRecord)
"""

from pathlib import Path, PurePosixPath
from typing import TypeVar

import aiofiles
import structlog
from pydantic import BaseModel, ValidationError

from repo_fanout.enums import Stage
from repo_fanout.exceptions import RecordCorruptedError, RecordNotFoundError
from repo_fanout.models.domain import InitOutput

log = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

INIT_FILE = "init.json"


class WorkflowStore:
    """Key-value store of stage records rooted at a workflow directory.

    The directory is not created until the first write, so a store can be
    opened (and read from) without touching the disk.

    Attributes:
        root: Absolute path of the workflow directory.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).absolute()

    def _repo_dir(self, repo_name: str) -> Path:
        parts = PurePosixPath(repo_name).parts
        if not parts or repo_name.startswith("/") or any(part in (".", "..") for part in parts):
            raise ValueError(f"Invalid repository name for the workflow store: {repo_name!r}")
        return self.root.joinpath(*parts)

    def record_path(self, repo_name: str, stage: Stage | str) -> Path:
        """Compute the record file for (repo_name, stage).

        The init stage ignores ``repo_name``; pass ``""``.
        """
        stage = str(stage)
        if stage == Stage.INIT.value:
            return self.root / INIT_FILE
        return self.stage_dir(repo_name, stage) / f"{stage}.json"

    def stage_dir(self, repo_name: str, stage: Stage | str) -> Path:
        """Directory holding a repository's record and working files for a stage."""
        return self._repo_dir(repo_name) / str(stage)

    def exists(self, repo_name: str, stage: Stage | str) -> bool:
        return self.record_path(repo_name, stage).is_file()

    async def write(self, repo_name: str, stage: Stage | str, value: BaseModel) -> Path:
        """Atomically store ``value`` as the record for (repo_name, stage).

        Missing directories are created. Any previous record is replaced.

        Returns:
            Path of the written record.
        """
        path = self.record_path(repo_name, stage)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")

        async with aiofiles.open(tmp_path, "w") as f:
            await f.write(value.model_dump_json(indent=2))

        # Atomic rename - safe on POSIX when same filesystem
        tmp_path.replace(path)

        log.debug("record_written", repo=repo_name, stage=str(stage), path=str(path))
        return path

    async def read(self, repo_name: str, stage: Stage | str, model: type[M]) -> M:
        """Load the record for (repo_name, stage) into ``model``.

        Raises:
            RecordNotFoundError: No record exists yet.
            RecordCorruptedError: The file is not valid JSON for ``model``.
        """
        path = self.record_path(repo_name, stage)

        try:
            async with aiofiles.open(path) as f:
                content = await f.read()
        except FileNotFoundError as e:
            raise RecordNotFoundError(path) from e
        except UnicodeDecodeError as e:
            raise RecordCorruptedError(path, "not valid UTF-8") from e

        try:
            return model.model_validate_json(content)
        except ValidationError as e:
            log.error("record_corrupted", path=str(path), errors=e.error_count())
            raise RecordCorruptedError(path, str(e).splitlines()[0]) from e

    async def read_init(self) -> InitOutput:
        """Load the workflow's InitOutput (see :meth:`read` for errors)."""
        return await self.read("", Stage.INIT, InitOutput)

    async def write_init(self, output: InitOutput) -> Path:
        """Replace the workflow's InitOutput, resetting the repository set."""
        return await self.write("", Stage.INIT, output)
