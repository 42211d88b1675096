"""Refuse to operate on a workflow directory created by another tool version."""

import structlog

from repo_fanout.engine.workflow_store import WorkflowStore
from repo_fanout.exceptions import RecordNotFoundError, VersionMismatchError

log = structlog.get_logger(__name__)


async def check_workflow_version(store: WorkflowStore, running_version: str) -> None:
    """Compare the version recorded by init with the running version.

    No init record yet means a fresh directory, which is fine.

    Raises:
        VersionMismatchError: The recorded version differs.
        RecordCorruptedError: ``init.json`` exists but cannot be parsed.
    """
    try:
        init_output = await store.read_init()
    except RecordNotFoundError:
        log.debug("version_gate_fresh_workdir", work_dir=str(store.root))
        return

    if init_output.version != running_version:
        log.error(
            "version_gate_mismatch",
            work_dir=str(store.root),
            recorded=init_output.version,
            running=running_version,
        )
        raise VersionMismatchError(store.root, init_output.version, running_version)
