import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from .constants import APP_NAME
from .credentials import SigningKey
from .errors import CommitError, GitCommandError, SigningKeyError, StageError
from .events import EventKind, EventSink, emit
from .git_wrapper import GitRepo
from .memstore import MemoryRepository

logger = logging.getLogger(APP_NAME)

SIGNATURE_HEADER = "gpgsig"


@dataclass
class CommitOptions:
    """Optional parameters of `commit_files`.

    Attributes:
        name (str): Name of the committer. Passed through as-is, even alone.
        email (str): Email of the committer. Passed through as-is, even alone.
        signing_key (SigningKey | None): Key producing the commit signature.
    """

    name: str = ""
    email: str = ""
    signing_key: SigningKey | None = None


@dataclass
class TopCommit:
    """The parsed commit HEAD points to.

    Attributes:
        hash (str): The commit id.
        message (str): The commit message, without its trailing newline.
        author (str): The raw author line ('Name <email> epoch tz').
        committer (str): The raw committer line.
        parents (list[str]): Parent commit ids.
        signature (str | None): The armored signature, if the commit is signed.
    """

    hash: str
    message: str
    author: str = ""
    committer: str = ""
    parents: list[str] = field(default_factory=list)
    signature: str | None = None

    def is_same(self, other: "TopCommit") -> bool:
        return self.hash == other.hash


def parse_commit(raw: str) -> tuple[list[tuple[str, str]], str]:
    """Splits a raw commit object into its headers and message.

    Multi-line header values (continuation lines starting with a space) are
    joined back with newlines.

    Args:
        raw (str): The output of `git cat-file commit`.

    Returns:
        tuple[list[tuple[str, str]], str]: Ordered (key, value) headers and the
        message exactly as stored.
    """
    header_text, _, message = raw.partition("\n\n")
    headers: list[tuple[str, str]] = []
    for line in header_text.split("\n"):
        if line.startswith(" ") and headers:
            key, value = headers[-1]
            headers[-1] = (key, f"{value}\n{line[1:]}")
        else:
            key, _, value = line.partition(" ")
            headers.append((key, value))
    return headers, message


def render_commit(headers: list[tuple[str, str]], message: str) -> str:
    """Inverse of `parse_commit`."""
    lines = []
    for key, value in headers:
        lines.append(f"{key} " + value.replace("\n", "\n "))
    return "\n".join(lines) + "\n\n" + message


def get_top_commit(repo: GitRepo | MemoryRepository) -> TopCommit:
    """Reads and parses the commit HEAD points to, on disk or in memory.

    Raises:
        CommitError: If HEAD cannot be resolved or read.
    """
    try:
        head = repo.head()
        raw = repo.cat_commit(head)
    except (GitCommandError, KeyError) as e:
        raise CommitError(f"Error accessing top commit in {repo.path}: {e}") from e

    headers, message = parse_commit(raw)
    values = dict(headers)
    return TopCommit(
        hash=head,
        message=message.rstrip("\n"),
        author=values.get("author", ""),
        committer=values.get("committer", ""),
        parents=[v for k, v in headers if k == "parent"],
        signature=values.get(SIGNATURE_HEADER),
    )


def _identity(repo: GitRepo, options: CommitOptions) -> tuple[str, str]:
    """Resolves the (author, committer) identity lines for a new commit."""
    if options.name or options.email:
        ident = f"{options.name} <{options.email}> {int(time.time())} {time.strftime('%z')}"
        return ident, ident
    return repo.ident("GIT_AUTHOR_IDENT"), repo.ident("GIT_COMMITTER_IDENT")


def _build_commit(
    repo: GitRepo, message: str, parent: str | None, options: CommitOptions
) -> str:
    author, committer = _identity(repo, options)
    headers = [("tree", repo.write_tree())]
    if parent:
        headers.append(("parent", parent))
    headers += [("author", author), ("committer", committer)]
    if not message.endswith("\n"):
        message += "\n"

    if options.signing_key is not None:
        payload = render_commit(headers, message)
        signature = options.signing_key.sign(payload.encode("utf-8"))
        headers.append((SIGNATURE_HEADER, signature.rstrip("\n")))

    return render_commit(headers, message)


def commit_files(
    repo: GitRepo,
    files: Sequence[str],
    message: str,
    options: CommitOptions | None = None,
    sink: EventSink | None = None,
) -> bool:
    """Commits the given list of files in the repository.

    Files are staged one by one; the first staging failure aborts without
    committing. If the staged tree does not differ from HEAD, no commit is
    attempted.

    Args:
        repo (GitRepo): The working copy.
        files (Sequence[str]): Paths relative to the repository root. Deleted
            files are staged as deletions.
        message (str): The commit message.
        options (CommitOptions | None, optional): Identity and signing key.
        sink (EventSink | None, optional): Receives progress events.

    Returns:
        bool: True if a commit was created, False if there was nothing to commit.

    Raises:
        StageError: If a file could not be staged.
        CommitError: If the commit could not be built or recorded.
    """
    options = options or CommitOptions()

    for file in files:
        try:
            repo.add(file)
        except GitCommandError as e:
            raise StageError(f"Error staging file {file} for commit: {e}") from e

    try:
        changes = repo.staged_changes()
    except GitCommandError as e:
        raise CommitError(
            f"Error getting repo status after staging files in {repo.path}: {e}"
        ) from e

    if not changes:
        emit(sink, EventKind.NOTHING_TO_COMMIT, path=str(repo.path))
        return False

    parent = repo.rev_parse("HEAD")
    try:
        payload = _build_commit(repo, message, parent, options)
        commit = repo.write_commit(payload)
        repo.update_ref("HEAD", commit, parent, message=f"commit: {message}")
    except (GitCommandError, SigningKeyError) as e:
        raise CommitError(f"Error committing file changes in {repo.path}: {e}") from e

    logger.debug(f"Created commit {commit} in {repo.path}")
    emit(
        sink,
        EventKind.COMMITTED,
        path=str(repo.path),
        message=message,
        commit=commit,
        changes=changes,
    )
    return True
