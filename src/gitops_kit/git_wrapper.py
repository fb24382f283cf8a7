import logging
import subprocess
from enum import Enum
from pathlib import Path

from .constants import APP_NAME, DEFAULT_REMOTE, GIT_DIR
from .errors import GitCommandError

logger = logging.getLogger(APP_NAME)


class PullOutcome(Enum):
    """Result of bringing the local branch up to the remote tip."""

    UP_TO_DATE = "up_to_date"
    UPDATED = "updated"
    NON_FAST_FORWARD = "non_fast_forward"


class PushOutcome(Enum):
    """Result of pushing the local branch to the remote."""

    UP_TO_DATE = "up_to_date"
    PUSHED = "pushed"
    NON_FAST_FORWARD = "non_fast_forward"


# Summaries `git push --porcelain` gives for a rejected ref that the remote moved.
_REMOTE_ADVANCED_REASONS = ("non-fast-forward", "fetch first")


def _git(
    args: list[str],
    cwd: Path | None = None,
    capture: bool = True,
    env: dict | None = None,
    input: str | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Runs a git command, raising `GitCommandError` on failure when `check` is set."""
    res = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=capture,
        text=True,
        encoding="utf-8",
        env=env,
        input=input,
    )
    if check and res.returncode != 0:
        raise GitCommandError(args, res.stderr or "", res.returncode)
    return res


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    This class is the on-disk repository handle. Network operations accept an
    `env` mapping so that the caller's ssh credentials (`GIT_SSH_COMMAND`) apply
    to that command only.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ValueError: If the specified path does not contain a .git directory.
        """
        self.path = Path(path)
        if not (self.path / GIT_DIR).exists():
            raise ValueError(f"Not a git repository: {self.path}")

    def __repr__(self) -> str:
        return f"GitRepo({str(self.path)!r})"

    @classmethod
    def clone(
        cls, path: Path, url: str, ref: str, env: dict | None = None
    ) -> "GitRepo":
        """Clones a single branch of a remote repository into `path`.

        Tags and submodules are not fetched; the working tree is checked out.

        Args:
            path (Path): The destination directory.
            url (str): The remote repository URL.
            ref (str): The branch to clone.
            env (dict | None, optional): Environment for the git subprocess.

        Returns:
            GitRepo: A handle on the new working copy.

        Raises:
            GitCommandError: If git fails to clone.
        """
        _git(
            [
                "clone",
                "--origin",
                DEFAULT_REMOTE,
                "--branch",
                ref,
                "--single-branch",
                "--no-tags",
                "--no-recurse-submodules",
                url,
                str(path),
            ],
            env=env,
        )
        return cls(Path(path))

    def _run(
        self,
        args: list[str],
        capture: bool = True,
        env: dict | None = None,
        input: str | None = None,
        strip: bool = True,
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional): Whether to capture and return stdout.
                                      Defaults to True.
            env (Optional[dict], optional): Environment variables to pass to the
                                            subprocess. Defaults to None.
            input (Optional[str], optional): Data written to the command's stdin.
            strip (bool, optional): Whether to strip surrounding whitespace from
                                    the output. Defaults to True.

        Returns:
            str: The stdout of the command if capture is True, otherwise "".

        Raises:
            GitCommandError: If the git command returns a non-zero exit code.
        """
        res = _git(args, cwd=self.path, capture=capture, env=env, input=input)
        if not capture:
            return ""
        return res.stdout.strip() if strip else res.stdout

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision (tag, branch, relative ref) to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'main').

        Returns:
            Optional[str]:  The full SHA-1 hash,
                            or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"])
        except GitCommandError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def head(self) -> str:
        """Returns the commit id HEAD points to.

        Raises:
            GitCommandError: If HEAD cannot be resolved (e.g. empty repository).
        """
        return self._run(["rev-parse", "--verify", "HEAD^{commit}"])

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Checks whether `ancestor` is reachable from `descendant`.

        Raises:
            GitCommandError: If either commit is unknown.
        """
        args = ["merge-base", "--is-ancestor", ancestor, descendant]
        res = _git(args, cwd=self.path, check=False)
        if res.returncode not in (0, 1):
            raise GitCommandError(args, res.stderr or "", res.returncode)
        return res.returncode == 0

    def fetch(self, ref: str, env: dict | None = None) -> str:
        """Force-fetches a single branch from origin into its remote-tracking ref.

        Args:
            ref (str): The branch to fetch.
            env (dict | None, optional): Environment for the git subprocess.

        Returns:
            str: The commit id of the fetched remote tip.
        """
        tracking = f"refs/remotes/{DEFAULT_REMOTE}/{ref}"
        self._run(
            ["fetch", "--no-tags", DEFAULT_REMOTE, f"+refs/heads/{ref}:{tracking}"],
            env=env,
        )
        return self._run(["rev-parse", "--verify", f"{tracking}^{{commit}}"])

    def pull(self, ref: str, env: dict | None = None) -> PullOutcome:
        """Brings the checked-out branch up to the remote tip, discarding local edits.

        The local working tree is disposable: a fast-forward resets it hard onto
        the remote tip. Diverged histories are reported rather than merged.

        Args:
            ref (str): The branch to pull.
            env (dict | None, optional): Environment for the git subprocess.

        Returns:
            PullOutcome: How the local branch relates to the remote one.
        """
        remote_tip = self.fetch(ref, env=env)
        local_tip = self.rev_parse("HEAD")

        if local_tip == remote_tip or (
            local_tip and self.is_ancestor(remote_tip, local_tip)
        ):
            return PullOutcome.UP_TO_DATE

        if local_tip and not self.is_ancestor(local_tip, remote_tip):
            return PullOutcome.NON_FAST_FORWARD

        self._run(["reset", "--hard", remote_tip], capture=True)
        return PullOutcome.UPDATED

    def add(self, path: str) -> None:
        """Stages a single path (new, modified or deleted)."""
        self._run(["add", "--all", "--", path])

    def staged_changes(self) -> list[str]:
        """Lists the staged differences from HEAD.

        Returns:
            list[str]: `git diff --cached --name-status` lines, e.g. 'M\\tREADME.md'.
        """
        output = self._run(["diff", "--cached", "--name-status"])
        return output.splitlines() if output else []

    def write_tree(self, env: dict | None = None) -> str:
        """Creates a tree object from the current index.

        Returns:
            str: The SHA-1 hash of the created tree object.
        """
        return self._run(["write-tree"], env=env)

    def ident(self, variable: str) -> str:
        """Returns git's ambient identity, e.g. for 'GIT_AUTHOR_IDENT'.

        The value has the form 'Name <email> <epoch> <tz>'.
        """
        return self._run(["var", variable])

    def write_commit(self, payload: str) -> str:
        """Writes a raw commit object into the object database.

        Args:
            payload (str): The full commit object text, headers and message.

        Returns:
            str: The SHA-1 hash of the new commit.
        """
        return self._run(
            ["hash-object", "-t", "commit", "-w", "--stdin"], input=payload
        )

    def update_ref(
        self, ref: str, new_oid: str, old_oid: str | None = None, message: str = ""
    ) -> None:
        """Safely updates a reference to a new object ID.

        Args:
            ref (str): The reference to update (e.g., 'HEAD').
            new_oid (str): The new SHA-1 hash.
            old_oid (Optional[str], optional): The expected old SHA-1 hash. If provided,
                                               the update will fail if the current ref
                                               does not match this value.
            message (str, optional): The reflog message.
        """
        cmd = ["update-ref", "-m", message or "gitops-kit", ref, new_oid]
        if old_oid:
            cmd.append(old_oid)
        try:
            self._run(cmd)
        except GitCommandError as e:
            logger.warning(f"Failed to update ref {ref}: {e}")
            raise

    def cat_commit(self, rev: str) -> str:
        """Returns the raw, unmodified text of a commit object."""
        return self._run(["cat-file", "commit", rev], strip=False)

    def push(self, ref: str, env: dict | None = None) -> PushOutcome:
        """Pushes a local branch to the identically named branch on origin.

        The push is neither forced nor pruning. The outcome is read from the
        status flag of `git push --porcelain` for the pushed ref.

        Args:
            ref (str): The branch to push.
            env (dict | None, optional): Environment for the git subprocess.

        Returns:
            PushOutcome: UP_TO_DATE, PUSHED or NON_FAST_FORWARD.

        Raises:
            GitCommandError: If the push failed for any other reason.
        """
        refspec = f"refs/heads/{ref}:refs/heads/{ref}"
        args = ["push", "--porcelain", DEFAULT_REMOTE, refspec]
        res = _git(args, cwd=self.path, env=env, check=False)

        for line in (res.stdout or "").splitlines():
            parts = line.split("\t")
            if len(parts) < 3 or parts[1] != refspec:
                continue
            flag, summary = parts[0], parts[2]
            if flag == "=":
                return PushOutcome.UP_TO_DATE
            if flag == "!":
                if any(reason in summary for reason in _REMOTE_ADVANCED_REASONS):
                    return PushOutcome.NON_FAST_FORWARD
                raise GitCommandError(args, res.stderr or summary, res.returncode or 1)
            if res.returncode == 0:
                return PushOutcome.PUSHED

        if res.returncode != 0:
            raise GitCommandError(args, res.stderr or "", res.returncode)
        return PushOutcome.PUSHED

    def last_commit_message(self, rev: str = "HEAD") -> str:
        """Returns the full message of a commit, without trailing whitespace."""
        return self._run(["log", "-1", "--format=%B", rev])
