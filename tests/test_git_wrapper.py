import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gitops_kit.errors import GitCommandError
from gitops_kit.git_wrapper import GitRepo, PullOutcome, PushOutcome

REFSPEC = "refs/heads/main:refs/heads/main"


def _completed(stdout: str = "", stderr: str = "", returncode: int = 0) -> MagicMock:
    res = MagicMock(spec=subprocess.CompletedProcess)
    res.stdout = stdout
    res.stderr = stderr
    res.returncode = returncode
    return res


@pytest.fixture
def repo(tmp_path: Path) -> GitRepo:
    """A GitRepo over a fake .git directory."""
    (tmp_path / ".git").mkdir()
    return GitRepo(tmp_path)


def test_init_rejects_directory_without_git(tmp_path: Path) -> None:
    """Verifies that a plain directory is not accepted as a repository."""
    with pytest.raises(ValueError, match="Not a git repository"):
        GitRepo(tmp_path)


def test_run_raises_git_command_error(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that a non-zero exit is raised with git's stderr."""
    mocker.patch(
        "subprocess.run",
        return_value=_completed(stderr="fatal: bad revision\n", returncode=128),
    )

    with pytest.raises(GitCommandError, match="fatal: bad revision") as exc:
        repo.head()

    assert exc.value.returncode == 128
    assert exc.value.args_list == ["rev-parse", "--verify", "HEAD^{commit}"]


def test_rev_parse_returns_none_on_failure(
    mocker: MagicMock, caplog: pytest.LogCaptureFixture, repo: GitRepo
) -> None:
    """Verifies that an unresolvable revision is reported as None and logged."""
    caplog.set_level("DEBUG")
    mocker.patch("subprocess.run", return_value=_completed(returncode=1))

    assert repo.rev_parse("HEAD") is None
    assert "rev-parse failed for 'HEAD'" in caplog.text


def test_push_parses_porcelain_flags(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that each porcelain status flag maps to its push outcome."""
    run = mocker.patch("subprocess.run")

    run.return_value = _completed(f"To remote\n=\t{REFSPEC}\t[up to date]\nDone\n")
    assert repo.push("main") is PushOutcome.UP_TO_DATE

    run.return_value = _completed(f"To remote\n \t{REFSPEC}\t1111111..2222222\nDone\n")
    assert repo.push("main") is PushOutcome.PUSHED

    run.return_value = _completed(
        f"To remote\n!\t{REFSPEC}\t[rejected] (non-fast-forward)\nDone\n",
        returncode=1,
    )
    assert repo.push("main") is PushOutcome.NON_FAST_FORWARD

    run.return_value = _completed(
        f"To remote\n!\t{REFSPEC}\t[rejected] (fetch first)\nDone\n", returncode=1
    )
    assert repo.push("main") is PushOutcome.NON_FAST_FORWARD

    args = run.call_args.args[0]
    assert args == ["git", "push", "--porcelain", "origin", REFSPEC]


def test_push_raises_on_other_rejections(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that hook declines and transport errors are not mistaken for conflicts."""
    run = mocker.patch("subprocess.run")

    run.return_value = _completed(
        f"To remote\n!\t{REFSPEC}\t[remote rejected] (pre-receive hook declined)\n",
        stderr="remote: denied",
        returncode=1,
    )
    with pytest.raises(GitCommandError, match="remote: denied"):
        repo.push("main")

    run.return_value = _completed(
        stderr="fatal: Could not read from remote repository.", returncode=128
    )
    with pytest.raises(GitCommandError, match="Could not read from remote"):
        repo.push("main")


def test_push_passes_environment(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that credentials reach the git subprocess through its environment."""
    run = mocker.patch(
        "subprocess.run", return_value=_completed(f"=\t{REFSPEC}\t[up to date]\n")
    )
    env = {"GIT_SSH_COMMAND": "ssh -i key"}

    repo.push("main", env=env)

    assert run.call_args.kwargs["env"] == env


def test_pull_classifies_remote_tip(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies the up-to-date, fast-forward and diverged pull outcomes."""
    mocker.patch.object(repo, "fetch", return_value="remote")
    mocker.patch.object(repo, "rev_parse", return_value="local")
    is_ancestor = mocker.patch.object(repo, "is_ancestor")
    run = mocker.patch.object(repo, "_run")

    # Remote tip already contained in the local history.
    is_ancestor.side_effect = lambda a, d: (a, d) == ("remote", "local")
    assert repo.pull("main") is PullOutcome.UP_TO_DATE
    run.assert_not_called()

    # Local history is an ancestor of the remote tip: fast-forward.
    is_ancestor.side_effect = lambda a, d: (a, d) == ("local", "remote")
    assert repo.pull("main") is PullOutcome.UPDATED
    run.assert_called_once_with(["reset", "--hard", "remote"], capture=True)

    # Neither contains the other.
    run.reset_mock()
    is_ancestor.side_effect = lambda a, d: False
    assert repo.pull("main") is PullOutcome.NON_FAST_FORWARD
    run.assert_not_called()


def test_pull_same_tip_is_up_to_date(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that an unchanged remote needs no ancestry check."""
    mocker.patch.object(repo, "fetch", return_value="abc")
    mocker.patch.object(repo, "rev_parse", return_value="abc")
    is_ancestor = mocker.patch.object(repo, "is_ancestor")

    assert repo.pull("main") is PullOutcome.UP_TO_DATE
    is_ancestor.assert_not_called()


def test_is_ancestor_reads_exit_status(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that merge-base exit codes 0 and 1 are answers, others errors."""
    run = mocker.patch("subprocess.run")

    run.return_value = _completed(returncode=0)
    assert repo.is_ancestor("a", "b") is True

    run.return_value = _completed(returncode=1)
    assert repo.is_ancestor("a", "b") is False

    run.return_value = _completed(stderr="fatal: Not a valid commit name", returncode=128)
    with pytest.raises(GitCommandError):
        repo.is_ancestor("a", "b")


def test_staged_changes_splits_lines(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that staged changes are listed one per line, empty when clean."""
    mock_run = mocker.patch.object(repo, "_run")

    mock_run.return_value = "M\tREADME.md\nA\tAnother.txt"
    assert repo.staged_changes() == ["M\tREADME.md", "A\tAnother.txt"]

    mock_run.return_value = ""
    assert repo.staged_changes() == []


def test_add_uses_path_boundary(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that staged paths are separated from options by a double-dash."""
    mock_run = mocker.patch.object(repo, "_run")

    repo.add("-weird-name.txt")

    mock_run.assert_called_once_with(["add", "--all", "--", "-weird-name.txt"])
