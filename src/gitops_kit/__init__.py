"""gitops-kit: clone, commit, verify and push git repositories for GitOps.

This package provides the sync engine (clone-or-pull), the commit engine with
optional OpenPGP signing, top-commit signature verification, push with bounded
retry on remote updates, and in-memory clones exported as key/value maps.
"""

from . import (
    cli,
    commit,
    config,
    constants,
    credentials,
    errors,
    events,
    git_wrapper,
    memstore,
    push,
    sync,
    verify,
)
from .commit import CommitOptions, TopCommit, commit_files, get_top_commit
from .credentials import (
    SigningKey,
    SshCredentials,
    load_signing_key,
    load_ssh_credentials,
)
from .memstore import MemoryRepository, MemoryStore, mem_clone_repo
from .push import push_changes
from .sync import SyncResult, SyncStatus, sync_repo
from .verify import verify_top_commit

__all__ = [
    "cli",
    "commit",
    "config",
    "constants",
    "credentials",
    "errors",
    "events",
    "git_wrapper",
    "memstore",
    "push",
    "sync",
    "verify",
    "CommitOptions",
    "MemoryRepository",
    "MemoryStore",
    "SigningKey",
    "SshCredentials",
    "SyncResult",
    "SyncStatus",
    "TopCommit",
    "commit_files",
    "get_top_commit",
    "load_signing_key",
    "load_ssh_credentials",
    "mem_clone_repo",
    "push_changes",
    "sync_repo",
    "verify_top_commit",
]
