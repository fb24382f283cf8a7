"""Tests for top-commit signature verification."""

import shutil
from pathlib import Path

import pgpy
import pytest

from gitops_kit.commit import CommitOptions, commit_files, get_top_commit
from gitops_kit.credentials import SigningKey
from gitops_kit.errors import StoreReleasedError, VerificationError
from gitops_kit.events import Event, EventKind
from gitops_kit.git_wrapper import GitRepo, PushOutcome
from gitops_kit.memstore import mem_clone_repo
from gitops_kit.sync import sync_repo
from gitops_kit.verify import verify_top_commit

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _public(keys: list[pgpy.PGPKey]) -> list[str]:
    return [str(key.pubkey) for key in keys]


@pytest.fixture
def working_copy(tmp_path: Path, remote_repo: str) -> GitRepo:
    return sync_repo(tmp_path / "wc", remote_repo, "main").repo


def _signed_commit(repo: GitRepo, key: pgpy.PGPKey) -> None:
    (repo.path / "README.md").write_text("# About")
    commit_files(
        repo,
        ["README.md"],
        "Signed changes",
        CommitOptions("user3", "user3@email.com", SigningKey(key)),
    )


def test_unsigned_commit_is_rejected(
    working_copy: GitRepo, pgp_keys: list[pgpy.PGPKey]
) -> None:
    """Verifies that an unsigned top commit fails whatever the keys."""
    with pytest.raises(VerificationError, match="isn't signed with any of the trusted keys"):
        verify_top_commit(working_copy, _public(pgp_keys))


def test_wrong_keys_are_rejected(
    working_copy: GitRepo, pgp_keys: list[pgpy.PGPKey]
) -> None:
    """Verifies that a signature from an untrusted key fails."""
    _signed_commit(working_copy, pgp_keys[2])

    with pytest.raises(VerificationError, match="isn't signed"):
        verify_top_commit(working_copy, _public(pgp_keys[:2]))


def test_trusted_key_listed_last_is_accepted(
    working_copy: GitRepo, pgp_keys: list[pgpy.PGPKey]
) -> None:
    """Verifies that every keyring is tried, in order, until one verifies."""
    _signed_commit(working_copy, pgp_keys[2])
    events: list[Event] = []

    verify_top_commit(working_copy, _public(pgp_keys), sink=events.append)

    assert [e.kind for e in events] == [EventKind.VERIFIED]
    assert events[0].fields["signers"] == ["user3 <user3@email.com>"]
    assert events[0].fields["commit"] == working_copy.head()


def test_no_keyrings_is_rejected(
    working_copy: GitRepo, pgp_keys: list[pgpy.PGPKey]
) -> None:
    """Verifies that an empty trust list never verifies anything."""
    _signed_commit(working_copy, pgp_keys[0])

    with pytest.raises(VerificationError):
        verify_top_commit(working_copy, [])


def test_unparsable_keyring_is_skipped(
    working_copy: GitRepo,
    pgp_keys: list[pgpy.PGPKey],
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Verifies that a broken keyring is logged and the next one still tried."""
    _signed_commit(working_copy, pgp_keys[0])

    verify_top_commit(working_copy, ["not a key", str(pgp_keys[0].pubkey)])

    assert "Skipping unparsable keyring" in caplog.text


def test_tampered_commit_is_rejected(
    working_copy: GitRepo, pgp_keys: list[pgpy.PGPKey]
) -> None:
    """Verifies that a signature copied onto a different commit does not verify."""
    _signed_commit(working_copy, pgp_keys[0])
    raw = working_copy.cat_commit("HEAD")
    forged = working_copy.write_commit(raw.replace("Signed changes", "Forged changes"))
    working_copy.update_ref("HEAD", forged)

    with pytest.raises(VerificationError):
        verify_top_commit(working_copy, _public(pgp_keys))


def test_memory_clone_signed_commit_is_accepted(
    working_copy: GitRepo, remote_repo: str, pgp_keys: list[pgpy.PGPKey]
) -> None:
    """Verifies that a signed commit pushed to the remote verifies from a memory clone."""
    _signed_commit(working_copy, pgp_keys[2])
    assert working_copy.push("main") is PushOutcome.PUSHED
    events: list[Event] = []

    handle, store = mem_clone_repo(remote_repo, "main")
    try:
        verify_top_commit(handle, _public(pgp_keys), sink=events.append)
        top = get_top_commit(handle)
    finally:
        store.release()

    assert events[0].fields["commit"] == working_copy.head()
    assert events[0].fields["signers"] == ["user3 <user3@email.com>"]
    assert top.hash == working_copy.head()
    assert top.message == "Signed changes"
    assert top.signature is not None


def test_memory_clone_unsigned_commit_is_rejected(
    remote_repo: str, pgp_keys: list[pgpy.PGPKey]
) -> None:
    """Verifies that an unsigned remote tip fails verification from a memory clone."""
    handle, store = mem_clone_repo(remote_repo, "main")
    try:
        with pytest.raises(VerificationError, match="isn't signed"):
            verify_top_commit(handle, _public(pgp_keys))
    finally:
        store.release()


def test_released_memory_clone_cannot_be_verified(
    remote_repo: str, pgp_keys: list[pgpy.PGPKey]
) -> None:
    """Verifies that the handle stops working once its store is released."""
    handle, store = mem_clone_repo(remote_repo, "main")
    store.release()

    with pytest.raises(StoreReleasedError):
        verify_top_commit(handle, _public(pgp_keys))
