"""
Pipeline observers.

`reconcile` reports what it does through an injected callable rather than
printing: `observer(checkpoint, details)`. Observers must not modify the
records they are shown.
"""

from __future__ import annotations

import logging
import typing

from stairval.notepad import Notepad

PipelineObserver = typing.Callable[[str, dict], None]

# Checkpoints emitted by the merge pipeline
CHECKPOINTS = (
    "decoded",
    "record-skipped",
    "seeded",
    "cache-folded",
    "remote-current-applied",
    "remote-history-folded",
    "sentinels-removed",
    "current-assigned",
    "persisted",
    "persist-failed",
)

# Checkpoints that indicate something the caller should hear about
WARNING_CHECKPOINTS = {"record-skipped", "persist-failed"}


def null_observer(checkpoint: str, details: dict) -> None:
    pass


class LoggingObserver:
    """Forward checkpoints to a logger (DEBUG, or WARNING for problems)."""

    def __init__(self, logger: typing.Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger("clinrec.pipeline")

    def __call__(self, checkpoint: str, details: dict) -> None:
        level = logging.WARNING if checkpoint in WARNING_CHECKPOINTS else logging.DEBUG
        self._logger.log(level, "%s %s", checkpoint, details)


class NotepadObserver:
    """
    Collect problem checkpoints in a stairval Notepad so a caller can report
    them the same way mapping issues are reported.
    """

    def __init__(self, notepad: Notepad):
        self.notepad = notepad
        self.events: list[tuple[str, dict]] = []

    def __call__(self, checkpoint: str, details: dict) -> None:
        self.events.append((checkpoint, dict(details)))
        if checkpoint == "persist-failed":
            self.notepad.add_warning(
                f"Could not write merged records to {details.get('key')!r}: {details.get('error')}"
            )
        elif checkpoint == "record-skipped":
            self.notepad.add_warning(
                f"Skipped {details.get('source')} entry that is not a record: {details.get('value')!r}"
            )

    def checkpoints(self) -> list[str]:
        return [name for name, _ in self.events]


def fan_out(*observers: PipelineObserver) -> PipelineObserver:
    """Combine several observers into one."""

    def _observer(checkpoint: str, details: dict) -> None:
        for observer in observers:
            observer(checkpoint, details)

    return _observer
