import logging
import time
from collections.abc import Callable

from .constants import APP_NAME, DEFAULT_PUSH_RETRIES, DEFAULT_RETRY_INTERVAL
from .credentials import SshCredentials, git_env
from .errors import GitCommandError, PushError, RetriesExhaustedError
from .events import EventKind, EventSink, emit
from .git_wrapper import GitRepo, PushOutcome

logger = logging.getLogger(APP_NAME)

PushHook = Callable[[], GitRepo | None]
"""Returns a repository holding the commits to push, or None if there are none.

The hook is re-invoked after every rejected push, so it must bring the working
copy up to date with the remote (re-sync), re-apply its changes and re-commit.
It must be idempotent: calling it again with nothing outstanding must not
produce new commits.
"""


def push_changes(
    hook: PushHook,
    ref: str,
    credentials: SshCredentials | None = None,
    retries: int = DEFAULT_PUSH_RETRIES,
    retry_interval: float = DEFAULT_RETRY_INTERVAL,
    sink: EventSink | None = None,
) -> None:
    """Pushes the commits produced by `hook` to the given branch on origin.

    When the push is rejected because the remote branch moved since the hook's
    last sync, the hook is invoked again and the push retried, up to `retries`
    times with `retry_interval` seconds between attempts. Any other failure is
    final.

    Args:
        hook (PushHook): Produces the repository to push, or None.
        ref (str): The branch to push.
        credentials (SshCredentials | None, optional): ssh identity for the
            transport.
        retries (int, optional): Push retries allowed after a rejection.
        retry_interval (float, optional): Seconds to wait before a retry.
        sink (EventSink | None, optional): Receives progress events.

    Raises:
        RetriesExhaustedError: The remote kept moving until retries ran out.
        PushError: The push failed for another reason.
        Exception: Anything raised by `hook`, unchanged.
    """
    env = git_env(credentials)
    retries_left = retries

    while True:
        repo = hook()

        # No repository means there is nothing to push.
        if repo is None:
            logger.debug(f"Nothing to push on branch '{ref}'.")
            return

        try:
            outcome = repo.push(ref, env=env)
        except GitCommandError as e:
            raise PushError(f"Error pushing {repo.path} to origin/{ref}: {e}") from e

        if outcome is PushOutcome.UP_TO_DATE:
            emit(sink, EventKind.PUSH_NOOP, ref=ref, path=str(repo.path))
            return

        if outcome is PushOutcome.PUSHED:
            emit(sink, EventKind.PUSHED, ref=ref, path=str(repo.path))
            return

        if retries_left <= 0:
            raise RetriesExhaustedError(
                f"Push of {repo.path} to origin/{ref} continuously failed "
                "due to remote updates. Giving up."
            )

        emit(
            sink,
            EventKind.PUSH_CONFLICT,
            ref=ref,
            path=str(repo.path),
            retries_left=retries_left,
        )
        time.sleep(retry_interval)
        retries_left -= 1
