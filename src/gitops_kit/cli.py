import argparse
import logging
import shutil
import sys
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .commit import CommitOptions, commit_files
from .config import Config
from .constants import APP_NAME, LOG_FILE
from .credentials import (
    SshCredentials,
    load_signing_key,
    load_ssh_credentials,
)
from .errors import GitOpsError, NonFastForwardError
from .events import Event, EventKind, log_sink
from .git_wrapper import GitRepo
from .memstore import ENCODING, ENCODING_ERRORS, mem_clone_repo
from .push import push_changes
from .sync import sync_repo
from .verify import verify_top_commit

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)

_EVENT_LABELS = {
    EventKind.CLONED: "[bold green]CLONED:[/bold green]",
    EventKind.UP_TO_DATE: "[bold blue]UP-TO-DATE:[/bold blue]",
    EventKind.UPDATED: "[bold green]UPDATED:[/bold green]",
    EventKind.COMMITTED: "[bold green]COMMITTED:[/bold green]",
    EventKind.NOTHING_TO_COMMIT: "[dim]NO CHANGES:[/dim]",
    EventKind.VERIFIED: "[bold green]VERIFIED:[/bold green]",
    EventKind.PUSHED: "[bold green]PUSHED:[/bold green]",
    EventKind.PUSH_NOOP: "[dim]NO-OP:[/dim]",
    EventKind.PUSH_CONFLICT: "[bold yellow]CONFLICT:[/bold yellow]",
}

EXIT_ERROR = 1
EXIT_REMOTE_ADVANCED = 2


def console_sink(event: Event) -> None:
    """Prints an event on the console and records it in the log file."""
    label = _EVENT_LABELS.get(event.kind, "[bold]INFO:[/bold]")
    console.print(f"{label} {event.describe()}", highlight=False)
    log_sink(event)


def setup_logging(verbose: bool, config: Config) -> None:
    """Configures the logging subsystem.

    Args:
        verbose (bool): If True, also logs debug output to stderr.
        config (Config): Provides the log rotation size.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    if verbose:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    try:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=config.limits.max_log_size,
            backupCount=5,
        )
    except OSError as e:
        err_console.print(f"[yellow]WARNING:[/yellow] Logging to file disabled: {e}")
        return
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


def _credentials(config: Config) -> SshCredentials | None:
    if not config.auth.ssh_key:
        return None
    return load_ssh_credentials(
        Path(config.auth.ssh_key).expanduser(),
        Path(config.auth.known_hosts).expanduser(),
        config.auth.user,
    )


def _commit_options(config: Config) -> CommitOptions:
    signing_key = None
    if config.commit.sign_key:
        signing_key = load_signing_key(
            Path(config.commit.sign_key).expanduser(),
            Path(config.commit.passphrase_file).expanduser()
            if config.commit.passphrase_file
            else None,
        )
    return CommitOptions(config.commit.name, config.commit.email, signing_key)


def _require_url(config: Config) -> str:
    if not config.remote.url:
        raise GitOpsError("No remote URL given (use --url or [remote] url in config).")
    return config.remote.url


def cmd_sync(args: argparse.Namespace, config: Config) -> None:
    sync_repo(
        args.path,
        _require_url(config),
        config.remote.branch,
        _credentials(config),
        sink=console_sink,
    )


def cmd_commit(args: argparse.Namespace, config: Config) -> None:
    commit_files(
        GitRepo(args.path),
        args.files,
        args.message,
        _commit_options(config),
        sink=console_sink,
    )


def cmd_verify(args: argparse.Namespace, config: Config) -> None:
    keyrings = [Path(p).expanduser().read_text() for p in config.verify.keyrings]
    verify_top_commit(GitRepo(args.path), keyrings, sink=console_sink)


def cmd_push(args: argparse.Namespace, config: Config) -> None:
    """Commits the given files and pushes them, replaying them after conflicts.

    The files' current contents are captured first. Every hook invocation syncs
    the working copy (recloning it from scratch when the remote diverged), writes
    the captured contents back and commits them.
    """
    path = Path(args.path)
    url = _require_url(config)
    branch = config.remote.branch
    credentials = _credentials(config)
    options = _commit_options(config)

    snapshot: dict[str, str | None] = {}
    for name in args.files:
        file = path / name
        snapshot[name] = file.read_text() if file.exists() else None

    def hook() -> GitRepo:
        try:
            result = sync_repo(path, url, branch, credentials, sink=console_sink)
        except NonFastForwardError:
            logger.warning(f"Remote diverged from {path}; recloning.")
            shutil.rmtree(path)
            result = sync_repo(path, url, branch, credentials, sink=console_sink)

        for name, content in snapshot.items():
            file = path / name
            if content is None:
                file.unlink(missing_ok=True)
            else:
                file.parent.mkdir(parents=True, exist_ok=True)
                file.write_text(content)

        commit_files(result.repo, args.files, args.message, options, sink=console_sink)
        return result.repo

    push_changes(
        hook,
        branch,
        credentials,
        retries=config.push.retries,
        retry_interval=config.push.retry_interval,
        sink=console_sink,
    )


def cmd_export(args: argparse.Namespace, config: Config) -> None:
    _, store = mem_clone_repo(
        _require_url(config),
        config.remote.branch,
        depth=config.remote.depth,
        credentials=_credentials(config),
        sink=console_sink,
    )
    try:
        files = store.export(args.prefix)
    finally:
        store.release()

    table = Table(title=f"Files under '{args.prefix or '/'}'")
    table.add_column("Path", style="cyan")
    table.add_column("Size", justify="right")
    for name in sorted(files):
        table.add_row(name, str(len(files[name].encode(ENCODING, ENCODING_ERRORS))))
    console.print(table)


COMMANDS = {
    "sync": cmd_sync,
    "commit": cmd_commit,
    "verify": cmd_verify,
    "push": cmd_push,
    "export": cmd_export,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Clone, commit, verify and push git repositories for GitOps.",
    )
    parser.add_argument("--url", help="Remote repository URL (overrides config)")
    parser.add_argument("--branch", help="Branch to use (overrides config)")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Log debug output to stderr"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Clone or pull a working copy")
    sync_parser.add_argument("path", help="Working copy directory")

    commit_parser = subparsers.add_parser("commit", help="Commit a list of files")
    commit_parser.add_argument("path", help="Working copy directory")
    commit_parser.add_argument("files", nargs="+", help="Files to commit")
    commit_parser.add_argument("--message", "-m", required=True)

    verify_parser = subparsers.add_parser(
        "verify", help="Check the top commit is signed by a trusted key"
    )
    verify_parser.add_argument("path", help="Working copy directory")

    push_parser = subparsers.add_parser(
        "push",
        help="Commit files and push them, retrying on remote updates "
        "(the working copy is recloned if the remote diverged)",
    )
    push_parser.add_argument("path", help="Working copy directory")
    push_parser.add_argument("files", nargs="+", help="Files to commit")
    push_parser.add_argument("--message", "-m", required=True)

    export_parser = subparsers.add_parser(
        "export", help="Clone the remote in memory and list its files"
    )
    export_parser.add_argument("prefix", nargs="?", default="", help="Sub-directory")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the gitops-kit CLI."""
    args = build_parser().parse_args(argv)

    config = Config.load(repo_path=Path.cwd())
    if args.url:
        config.remote = replace(config.remote, url=args.url)
    if args.branch:
        config.remote = replace(config.remote, branch=args.branch)

    setup_logging(args.verbose, config)

    try:
        COMMANDS[args.command](args, config)
    except NonFastForwardError as e:
        logger.error(str(e))
        err_console.print(f"[bold yellow]REMOTE ADVANCED:[/bold yellow] {e}")
        return EXIT_REMOTE_ADVANCED
    except (GitOpsError, OSError, ValueError) as e:
        logger.error(str(e))
        err_console.print(f"[bold red]ERROR:[/bold red] {e}")
        return EXIT_ERROR
    return 0


if __name__ == "__main__":
    sys.exit(main())
