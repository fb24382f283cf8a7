"""Exception taxonomy shared by the sync, commit, verify and push engines.

Every error message names the local path or remote URL involved and the
underlying cause. The two no-op outcomes (already up to date, nothing to
commit) are results, not errors.
"""

from typing import Any


class GitCommandError(RuntimeError):
    """A git subprocess exited with a non-zero status.

    Attributes:
        args_list (list[str]): The git arguments that were run.
        stderr (str): The captured standard error of the command.
        returncode (int): The exit status.
    """

    def __init__(self, args_list: list[str], stderr: str, returncode: int = 1):
        self.args_list = args_list
        self.stderr = stderr.strip()
        self.returncode = returncode
        super().__init__(f"Git error: {self.stderr or f'exit status {returncode}'}")


class GitOpsError(RuntimeError):
    """Base class for every failure reported by gitops-kit."""


class CredentialError(GitOpsError):
    """The ssh key or known hosts file is missing or cannot be parsed."""


class SigningKeyError(GitOpsError):
    """The armored signing key cannot be read, parsed or decrypted."""


class SyncError(GitOpsError):
    """A clone or pull failed.

    Attributes:
        repo: The repository handle produced before the failure, if any. It must
            only be used for inspection.
        remote_advanced (bool): True when the remote history diverged from the
            local one, so the caller should start again from a fresh clone.
    """

    remote_advanced = False

    def __init__(self, message: str, repo: Any = None):
        super().__init__(message)
        self.repo = repo


class CloneError(SyncError):
    """The repository could not be cloned."""


class OpenError(SyncError):
    """The existing working copy could not be opened."""


class PullError(SyncError):
    """Fetching or applying the latest remote changes failed."""


class NonFastForwardError(PullError):
    """The remote history is not a descendant of the local history."""

    remote_advanced = True


class StageError(GitOpsError):
    """A file could not be staged for commit."""


class CommitError(GitOpsError):
    """The commit object could not be built or recorded."""


class VerificationError(GitOpsError):
    """The top commit is not signed by any of the trusted keys."""


class PushError(GitOpsError):
    """The push was rejected for a reason other than a remote update."""


class RetriesExhaustedError(PushError):
    """The push kept being rejected because the remote kept moving."""


class StoreReleasedError(GitOpsError):
    """A memory store was used after being released."""
