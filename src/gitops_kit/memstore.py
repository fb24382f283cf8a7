"""In-memory clones for inspection or templating without touching the disk.

The object store is a dulwich `MemoryRepo` and the checked-out working tree an
fsspec `MemoryFileSystem`. Every clone gets its own filesystem store rather than
fsspec's process-wide one.

File contents are exposed as text. Bytes that are not valid UTF-8 are carried
as lone surrogates (`surrogateescape`), so binary files survive an export and
`value.encode("utf-8", "surrogateescape")` gives back the original bytes.
"""

import logging
import posixpath
import stat
from collections.abc import Callable, Mapping

from dulwich.client import SSHGitClient, get_transport_and_path
from dulwich.errors import GitProtocolError, NotGitRepository
from dulwich.objects import S_ISGITLINK, Commit
from dulwich.repo import MemoryRepo
from fsspec.implementations.memory import MemoryFileSystem

from .constants import APP_NAME, DEFAULT_REMOTE
from .credentials import SshCredentials
from .errors import CloneError, StoreReleasedError
from .events import EventKind, EventSink, emit

logger = logging.getLogger(APP_NAME)

ENCODING = "utf-8"
ENCODING_ERRORS = "surrogateescape"


def _new_memory_fs() -> MemoryFileSystem:
    fs = MemoryFileSystem(skip_instance_cache=True)
    # MemoryFileSystem keeps its files in class attributes shared by every
    # instance; each clone gets its own dict and directory list instead.
    fs.store = {}
    fs.pseudo_dirs = [""]
    return fs


def _norm(path: str) -> str:
    """Normalizes a tree path to the absolute form the memory filesystem lists."""
    path = posixpath.normpath(f"/{path}").lstrip("/")
    return f"/{path}" if path else ""


def _strip_prefix(path: str, root: str) -> str:
    """Makes a memory filesystem path relative to `root`."""
    return path[len(root) :].lstrip("/")


def _decode(data: bytes) -> str:
    return data.decode(ENCODING, errors=ENCODING_ERRORS)


class MemoryStore:
    """Owns the object store and working tree of an in-memory clone.

    Both are dropped together by `release()`; any use afterwards raises
    `StoreReleasedError`.
    """

    def __init__(self, repo: MemoryRepo, fs: MemoryFileSystem):
        self._repo: MemoryRepo | None = repo
        self._fs: MemoryFileSystem | None = fs

    @property
    def repo(self) -> MemoryRepo:
        if self._repo is None:
            raise StoreReleasedError("Memory store was released")
        return self._repo

    @property
    def fs(self) -> MemoryFileSystem:
        if self._fs is None:
            raise StoreReleasedError("Memory store was released")
        return self._fs

    @property
    def released(self) -> bool:
        return self._fs is None

    def release(self) -> None:
        """Drops the references to the object store and the filesystem."""
        self._repo = None
        self._fs = None

    def export(self, prefix: str = "") -> dict[str, str]:
        """Returns every file under `prefix` keyed by its path relative to it.

        Args:
            prefix (str, optional): A directory of the working tree. The empty
                string exports the whole tree with paths as-is.

        Returns:
            dict[str, str]: Relative path -> file content.

        Raises:
            FileNotFoundError: If `prefix` is not a directory of the tree.
            StoreReleasedError: If the store was released.
        """
        fs = self.fs
        root = _norm(prefix)
        if not fs.isdir(root):
            raise FileNotFoundError(f"No such directory in memory store: '{prefix}'")

        return {
            _strip_prefix(path, root): _decode(fs.cat_file(path))
            for path in fs.find(root)
        }

    def file_exists(self, path: str) -> bool:
        return self.fs.isfile(path)

    def get_file_content(self, path: str) -> str:
        """Returns the content of a file of the working tree.

        Raises:
            FileNotFoundError: If there is no such file.
        """
        return _decode(self.fs.cat_file(path))

    def set_file_content(self, path: str, content: str) -> None:
        """Writes a file into the working tree, creating parent directories."""
        fs = self.fs
        path = _norm(path)
        parent = posixpath.dirname(path)
        if parent.strip("/"):
            fs.makedirs(parent, exist_ok=True)
        fs.pipe_file(path, content.encode(ENCODING, errors=ENCODING_ERRORS))


class MemoryRepository:
    """Read-only repository handle over the object store of a `MemoryStore`.

    Offers the subset of `GitRepo` that commit inspection and signature
    verification need, so both work on memory clones. The handle shares the
    store's lifetime and raises `StoreReleasedError` once it is released.
    """

    def __init__(self, store: MemoryStore, url: str = ""):
        self.store = store
        self.path = url

    def __repr__(self) -> str:
        return f"<MemoryRepository url={self.path!r}>"

    @property
    def repo(self) -> MemoryRepo:
        return self.store.repo

    def head(self) -> str:
        """Returns the commit id HEAD points to.

        Raises:
            KeyError: If HEAD cannot be resolved.
        """
        return self.repo.head().decode("ascii")

    def cat_commit(self, rev: str) -> str:
        """Returns the raw text of a commit object, signature header included.

        Raises:
            KeyError: If `rev` is unknown or not a commit.
        """
        obj = self.repo[rev.encode("ascii")]
        if not isinstance(obj, Commit):
            raise KeyError(f"{rev} is not a commit")
        return obj.as_raw_string().decode(ENCODING, errors=ENCODING_ERRORS)


def _single_branch(
    repo: MemoryRepo, branch: bytes
) -> Callable[..., list[bytes]]:
    def determine_wants(refs: Mapping[bytes, bytes], depth: int | None = None) -> list[bytes]:
        sha = refs.get(branch)
        if sha is None or sha in repo.object_store:
            return []
        return [sha]

    return determine_wants


def _checkout(repo: MemoryRepo, tree_id: bytes, fs: MemoryFileSystem, base: str = "") -> None:
    for entry in repo[tree_id].iteritems():
        path = f"{base}/{entry.path.decode('utf-8')}"
        if stat.S_ISDIR(entry.mode):
            fs.makedirs(path, exist_ok=True)
            _checkout(repo, entry.sha, fs, path)
        elif S_ISGITLINK(entry.mode):
            # Submodules are not fetched.
            continue
        else:
            fs.pipe_file(path, repo[entry.sha].data)


def mem_clone_repo(
    url: str,
    ref: str,
    depth: int = 0,
    credentials: SshCredentials | None = None,
    sink: EventSink | None = None,
) -> tuple[MemoryRepository, MemoryStore]:
    """Clones a single branch of a repository into memory.

    Args:
        url (str): The remote repository URL.
        ref (str): The branch to clone.
        depth (int, optional): History depth; 0 or less clones everything.
        credentials (SshCredentials | None, optional): ssh identity, used for
            ssh URLs. None clones anonymously.
        sink (EventSink | None, optional): Receives progress events.

    Returns:
        tuple[MemoryRepository, MemoryStore]: A read-only handle for commit
        inspection and verification, and the store holding the working tree.
        The caller must `release()` the store when done; the handle goes with it.

    Raises:
        CloneError: If the branch could not be fetched or checked out.
    """
    repo = MemoryRepo()
    store = MemoryStore(repo, _new_memory_fs())
    branch = f"refs/heads/{ref}".encode()

    try:
        client, path = get_transport_and_path(url)
        if credentials is not None and isinstance(client, SSHGitClient):
            client, path = get_transport_and_path(
                url, ssh_command=credentials.ssh_command
            )

        result = client.fetch(
            path,
            repo,
            determine_wants=_single_branch(repo, branch),
            depth=depth if depth > 0 else None,
        )
        sha = result.refs.get(branch)
        if sha is None:
            raise CloneError(f'Branch "{ref}" not found in repo "{url}"')

        repo.refs[branch] = sha
        repo.refs[f"refs/remotes/{DEFAULT_REMOTE}/{ref}".encode()] = sha
        repo.refs.set_symbolic_ref(b"HEAD", branch)
        _checkout(repo, repo[sha].tree, store.fs)
    except CloneError:
        store.release()
        raise
    except (GitProtocolError, NotGitRepository, KeyError, OSError, ValueError) as e:
        store.release()
        raise CloneError(f'Error cloning repo "{url}" in memory: {e}') from e

    emit(sink, EventKind.CLONED, ref=ref, url=url, path=None)
    return MemoryRepository(store, url), store
