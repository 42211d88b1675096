"""Async git command helpers.

Thin wrappers over the ``git`` executable. They carry no workflow policy:
deciding when to clone, branch or push belongs to the stages. A failing
command raises :class:`GitOperationError` with git's stderr attached.
"""

import subprocess
from collections.abc import Mapping
from pathlib import Path

import structlog

from repo_fanout.exceptions import GitOperationError
from repo_fanout.utils.async_subprocess import run_command

log = structlog.get_logger(__name__)

# Clones of large repositories can take a while
GIT_TIMEOUT = 900.0

_GIT_ENV = {
    # Never block a worker on a credential prompt
    "GIT_TERMINAL_PROMPT": "0",
}


async def git(*args: str, cwd: Path, env: Mapping[str, str] | None = None) -> str:
    """Run ``git *args`` in ``cwd`` and return its stdout."""
    try:
        stdout, _, _ = await run_command(
            "git",
            *args,
            cwd=cwd,
            check=True,
            timeout=GIT_TIMEOUT,
            env={**_GIT_ENV, **(env or {})},
        )
    except subprocess.CalledProcessError as e:
        raise GitOperationError(f"git {args[0]} failed", args, e.stderr or "") from e
    except TimeoutError as e:
        raise GitOperationError(f"git {args[0]} timed out after {GIT_TIMEOUT:.0f}s", args) from e
    except FileNotFoundError as e:
        raise GitOperationError("git executable not found", args) from e
    return stdout


async def clone(url: str, dest: Path) -> None:
    """Clone ``url`` into ``dest``. The parent directory must exist."""
    log.info("git_clone", url=url, dest=str(dest))
    await git("clone", "--quiet", url, str(dest), cwd=dest.parent)


async def head_sha(path: Path) -> str:
    return (await git("rev-parse", "HEAD", cwd=path)).strip()


async def current_branch(path: Path) -> str:
    return (await git("rev-parse", "--abbrev-ref", "HEAD", cwd=path)).strip()


async def create_branch(path: Path, branch: str) -> None:
    """Create (or reset) ``branch`` at HEAD and check it out."""
    await git("checkout", "--quiet", "-B", branch, cwd=path)


async def has_changes(path: Path) -> bool:
    """True if the working tree has staged, unstaged or untracked changes."""
    return bool((await git("status", "--porcelain", cwd=path)).strip())


async def commit_all(path: Path, message: str) -> str:
    """Stage everything, commit, and return the new commit SHA."""
    await git("add", "--all", cwd=path)
    await git("commit", "--quiet", "-m", message, cwd=path)
    return await head_sha(path)


async def last_commit_diff(path: Path) -> str:
    """Patch introduced by the HEAD commit."""
    return await git("show", "--format=", "--patch", "HEAD", cwd=path)


async def push(path: Path, branch: str) -> None:
    """Force-push ``branch`` to origin so re-planned commits replace old ones."""
    log.info("git_push", path=str(path), branch=branch)
    await git("push", "--quiet", "--force", "--set-upstream", "origin", branch, cwd=path)
