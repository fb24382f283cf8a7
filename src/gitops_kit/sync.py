import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .constants import APP_NAME, GIT_DIR
from .credentials import SshCredentials, git_env
from .errors import (
    CloneError,
    GitCommandError,
    NonFastForwardError,
    OpenError,
    PullError,
    SyncError,
)
from .events import EventKind, EventSink, emit
from .git_wrapper import GitRepo, PullOutcome

logger = logging.getLogger(APP_NAME)


class SyncStatus(Enum):
    """What a successful sync did to the working copy."""

    CLONED = "cloned"
    UP_TO_DATE = "up_to_date"
    UPDATED = "updated"


@dataclass
class SyncResult:
    """The successful outcome of `sync_repo`.

    Attributes:
        repo (GitRepo): The handle on the working copy.
        status (SyncStatus): Whether it was cloned, left alone or updated.
        head (str | None): The commit id checked out after an update.
    """

    repo: GitRepo
    status: SyncStatus
    head: str | None = None


def _clone_repo(
    path: Path,
    url: str,
    ref: str,
    credentials: SshCredentials | None,
    sink: EventSink | None,
) -> SyncResult:
    try:
        repo = GitRepo.clone(path, url, ref, env=git_env(credentials))
    except (GitCommandError, ValueError) as e:
        raise CloneError(f'Error cloning in directory "{path}": {e}') from e

    emit(sink, EventKind.CLONED, ref=ref, url=url, path=str(path))
    return SyncResult(repo, SyncStatus.CLONED)


def _pull_repo(
    path: Path,
    url: str,
    ref: str,
    credentials: SshCredentials | None,
    sink: EventSink | None,
) -> SyncResult:
    try:
        repo = GitRepo(path)
    except ValueError as e:
        raise OpenError(f'Error accessing repo in directory "{path}": {e}') from e

    try:
        outcome = repo.pull(ref, env=git_env(credentials))
    except GitCommandError as e:
        raise PullError(
            f'Error pulling latest changes in directory "{path}": {e}', repo=repo
        ) from e

    if outcome is PullOutcome.NON_FAST_FORWARD:
        raise NonFastForwardError(
            f'Error pulling latest changes in directory "{path}": '
            "non-fast-forward update",
            repo=repo,
        )

    if outcome is PullOutcome.UP_TO_DATE:
        emit(sink, EventKind.UP_TO_DATE, ref=ref, url=url, path=str(path))
        return SyncResult(repo, SyncStatus.UP_TO_DATE)

    try:
        head = repo.head()
    except GitCommandError as e:
        raise PullError(
            f'Error accessing top commit in directory "{path}": {e}', repo=repo
        ) from e

    emit(sink, EventKind.UPDATED, ref=ref, url=url, path=str(path), head=head)
    return SyncResult(repo, SyncStatus.UPDATED, head=head)


def sync_repo(
    path: str | Path,
    url: str,
    ref: str,
    credentials: SshCredentials | None = None,
    sink: EventSink | None = None,
) -> SyncResult:
    """Clones or pulls the given branch of a repository at a given path.

    If `path` already holds a working copy (a `.git` sub-directory) the branch is
    pulled, otherwise it is cloned. Pulls are forced: the local working copy is
    treated as disposable and reset onto the remote tip.

    Args:
        path (str | Path): The local working copy directory.
        url (str): The remote repository URL.
        ref (str): The branch name.
        credentials (SshCredentials | None, optional): ssh identity for the
            transport. None uses git's ambient configuration.
        sink (EventSink | None, optional): Receives progress events.

    Returns:
        SyncResult: The handle and what was done.

    Raises:
        NonFastForwardError: The remote history diverged from the local one
            (`remote_advanced` is True). Recloning from scratch resolves it.
        SyncError: Any other clone, open or pull failure.
    """
    path = Path(path)

    try:
        (path / GIT_DIR).stat()
    except FileNotFoundError:
        return _clone_repo(path, url, ref, credentials, sink)
    except OSError as e:
        raise SyncError(
            f"Error accessing repo directory's {GIT_DIR} sub-directory: {e}"
        ) from e

    return _pull_repo(path, url, ref, credentials, sink)
