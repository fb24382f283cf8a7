"""Shared fixtures: an isolated git environment, a seeded remote and PGP keys."""

import subprocess
from pathlib import Path

import pgpy
import pytest
from pgpy.constants import (
    CompressionAlgorithm,
    HashAlgorithm,
    KeyFlags,
    PubKeyAlgorithm,
    SymmetricKeyAlgorithm,
)

README_CONTENT = "# test\n\ntest"


def git(*args: str, cwd: Path | None = None) -> str:
    """Runs a git command for test setup and returns its stripped stdout."""
    res = subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    )
    return res.stdout.strip()


def make_pgp_key(name: str, email: str, passphrase: str | None = None) -> pgpy.PGPKey:
    """Generates an RSA signing key with a single user id."""
    key = pgpy.PGPKey.new(PubKeyAlgorithm.RSAEncryptOrSign, 2048)
    uid = pgpy.PGPUID.new(name, email=email)
    key.add_uid(
        uid,
        usage={KeyFlags.Sign, KeyFlags.Certify},
        hashes=[HashAlgorithm.SHA256],
        ciphers=[SymmetricKeyAlgorithm.AES256],
        compression=[CompressionAlgorithm.Uncompressed],
    )
    if passphrase:
        key.protect(passphrase, SymmetricKeyAlgorithm.AES256, HashAlgorithm.SHA256)
    return key


@pytest.fixture(autouse=True)
def isolated_git(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> None:
    """Keeps the user's git configuration out of the tests and fixes the identity."""
    global_config = tmp_path_factory.mktemp("gitconfig") / "config"
    global_config.write_text("")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Ambient User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "ambient@test.test")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Ambient User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "ambient@test.test")


@pytest.fixture
def remote_repo(tmp_path: Path) -> str:
    """A bare repository whose `main` branch holds a single README.md."""
    bare = tmp_path / "remote.git"
    git("init", "--bare", "--initial-branch=main", str(bare))

    seed = tmp_path / "seed"
    git("init", "--initial-branch=main", str(seed))
    (seed / "README.md").write_text(README_CONTENT)
    git("add", "README.md", cwd=seed)
    git("commit", "-m", "Initial commit", cwd=seed)
    git("remote", "add", "origin", str(bare), cwd=seed)
    git("push", "origin", "main", cwd=seed)
    return str(bare)


@pytest.fixture
def other_writer(tmp_path: Path, remote_repo: str):
    """Returns a function pushing a new commit to the remote from another clone."""
    clone = tmp_path / "other-writer"
    git("clone", "--branch", "main", remote_repo, str(clone))

    def push_commit(name: str, content: str | bytes, message: str) -> str:
        path = clone / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)
        git("add", name, cwd=clone)
        git("commit", "-m", message, cwd=clone)
        git("push", "origin", "main", cwd=clone)
        return git("rev-parse", "HEAD", cwd=clone)

    return push_commit


@pytest.fixture(scope="session")
def pgp_keys() -> list[pgpy.PGPKey]:
    """Three unprotected signing keys."""
    return [make_pgp_key(f"user{i}", f"user{i}@email.com") for i in (1, 2, 3)]


def read_tree(root: Path, skip_prefix: str = ".git") -> dict[str, str]:
    """Returns every file under `root` (except `skip_prefix`) keyed by relative path."""
    content = {}
    for path in root.rglob("*"):
        rel = path.relative_to(root).as_posix()
        if path.is_file() and not rel.startswith(skip_prefix):
            content[rel] = path.read_text()
    return content
