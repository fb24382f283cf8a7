"""Structured progress events emitted by the engines.

Operations never print. They hand an `Event` to the sink they were given, which
defaults to `log_sink` (one line on the package logger). The CLI swaps in a sink
that renders through a rich console; tests pass a list's `append`.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


class EventKind(Enum):
    CLONED = "cloned"
    UP_TO_DATE = "up_to_date"
    UPDATED = "updated"
    COMMITTED = "committed"
    NOTHING_TO_COMMIT = "nothing_to_commit"
    VERIFIED = "verified"
    PUSHED = "pushed"
    PUSH_NOOP = "push_noop"
    PUSH_CONFLICT = "push_conflict"


@dataclass(frozen=True)
class Event:
    """A single progress notification.

    Attributes:
        kind (EventKind): What happened.
        fields (dict[str, Any]): Event details (ref, url, commit, ...).
    """

    kind: EventKind
    fields: dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        """Renders the event as a human-readable sentence."""
        f = self.fields
        if self.kind is EventKind.CLONED:
            return f"Cloned branch \"{f['ref']}\" of repo \"{f['url']}\""
        if self.kind is EventKind.UP_TO_DATE:
            return f"Branch \"{f['ref']}\" of repo \"{f['url']}\" is up-to-date"
        if self.kind is EventKind.UPDATED:
            return (
                f"Branch \"{f['ref']}\" of repo \"{f['url']}\" "
                f"was updated to commit {f['head']}"
            )
        if self.kind is EventKind.COMMITTED:
            changes = "\n".join(f.get("changes", []))
            return f"Committed following changes with message \"{f['message']}\":\n{changes}"
        if self.kind is EventKind.NOTHING_TO_COMMIT:
            return "Will not commit as there are no changes to commit."
        if self.kind is EventKind.VERIFIED:
            signers = ", ".join(f.get("signers", [])) or "unknown"
            return f"Validated top commit \"{f['commit']}\" is signed by {signers}"
        if self.kind is EventKind.PUSHED:
            return f"Pushed branch \"{f['ref']}\" to origin."
        if self.kind is EventKind.PUSH_NOOP:
            return "Push operation was no-op as remote was already up to date."
        if self.kind is EventKind.PUSH_CONFLICT:
            return (
                "Push operation failed as remote was updated with non-local commits. "
                f"Will retry ({f['retries_left']} left)."
            )
        return f"{self.kind.value}: {f}"


EventSink = Callable[[Event], None]
"""A callable receiving every event an operation emits."""


def log_sink(event: Event) -> None:
    """Default sink: logs the event on the package logger.

    Push conflicts are logged as warnings, everything else as info.
    """
    level = logging.WARNING if event.kind is EventKind.PUSH_CONFLICT else logging.INFO
    logger.log(level, event.describe())


def emit(sink: EventSink | None, kind: EventKind, **fields: Any) -> None:
    (sink or log_sink)(Event(kind, fields))
