"""Custom exception hierarchy for repo-fanout.

Components never terminate the process themselves. They raise one of the
exceptions below and the CLI boundary in ``repo_fanout.main`` decides the
exit status and the message shown to the operator.

Exception Hierarchy:
    FanoutError (base)
    ├── ConfigurationError
    ├── WorkflowError
    │   ├── VersionMismatchError
    │   └── WorkflowNotInitializedError
    ├── StorageError
    │   ├── RecordNotFoundError
    │   └── RecordCorruptedError
    ├── ProviderError
    │   └── RateLimitedError
    ├── GitOperationError
    └── StageError

Example Usage:
    >>> from repo_fanout.exceptions import ConfigurationError
    >>> try:
    ...     settings = FanoutSettings.load()
    ... except ConfigurationError as e:
    ...     click.echo(f"Error: {e.message}", err=True)
"""

from pathlib import Path


class FanoutError(Exception):
    """Base exception for all repo-fanout errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(FanoutError):
    """Configuration and usage errors.

    Raised before any work starts when the environment or the command line
    is inconsistent.

    Examples:
        - Both GITHUB_API_TOKEN and GITLAB_API_TOKEN are set
        - Neither credential is set
        - init given both a query and a repos file
        - Malformed ``namespace/name`` entry in a repos file
    """

    pass


class WorkflowError(FanoutError):
    """Workflow directory state prevents the requested stage from running."""

    pass


class VersionMismatchError(WorkflowError):
    """The workflow directory was created by a different tool version.

    Attributes:
        work_dir: Workflow directory that holds the incompatible state
        recorded_version: Version stored in ``init.json``
        running_version: Version of the running tool
    """

    def __init__(self, work_dir: Path, recorded_version: str, running_version: str) -> None:
        self.work_dir = work_dir
        self.recorded_version = recorded_version
        self.running_version = running_version
        super().__init__(
            f"A workflow directory ({work_dir}) exists, created with repo-fanout version "
            f"{recorded_version}. This is incompatible with your version {running_version}. "
            "Either run again using a compatible version, or remove the workflow directory and restart."
        )


class WorkflowNotInitializedError(WorkflowError):
    """No init record exists; ``fanout init`` has to run first."""

    def __init__(self, work_dir: Path) -> None:
        self.work_dir = work_dir
        super().__init__(f"No workflow found in {work_dir}. Run 'fanout init' first.")


class StorageError(FanoutError):
    """Workflow store errors.

    Attributes:
        path: Record file the error refers to
    """

    def __init__(self, message: str, path: Path) -> None:
        self.path = path
        super().__init__(message)


class RecordNotFoundError(StorageError):
    """No record has been written yet for this (repo, stage).

    This is the normal condition for a stage that has not run for a repo.
    """

    def __init__(self, path: Path) -> None:
        super().__init__(f"No record at {path}", path)


class RecordCorruptedError(StorageError):
    """A record file exists but cannot be parsed.

    Kept distinct from :class:`RecordNotFoundError` so that a damaged record
    is reported instead of being treated as "stage not run yet".
    """

    def __init__(self, path: Path, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Corrupted record at {path}: {reason}", path)


class ProviderError(FanoutError):
    """Hosting provider communication errors.

    Raised when a search query is rejected, a network call fails or the
    provider answers with an unexpected error. Provider errors are not
    retried automatically; the operator re-runs the stage.

    Attributes:
        status_code: HTTP status code (if applicable)
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"

        super().__init__(full_message)
        self.message = full_message


class RateLimitedError(ProviderError):
    """The provider throttled us (quota exhausted or abuse detection).

    Retryable by re-running the stage after a pause.
    """

    pass


class GitOperationError(FanoutError):
    """A git command failed (clone, commit, push, ...).

    Attributes:
        command: The git arguments that were run
        stderr: Captured standard error of the command
    """

    def __init__(self, message: str, command: tuple[str, ...] = (), stderr: str = "") -> None:
        self.command = command
        self.stderr = stderr.strip()

        full_message = message
        if self.stderr:
            full_message = f"{message}: {self.stderr}"

        super().__init__(full_message)


class StageError(FanoutError):
    """A stage refused to act on a repository.

    Used for per-repository gates such as an unapproved review or a failing
    build. Recorded in that repository's stage record; never aborts a batch.
    """

    pass
