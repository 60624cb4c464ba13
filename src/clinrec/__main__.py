"""
Command-line interface for the clinrec engine.

Decodes wire payloads, segments history notes, and runs a reconciliation
pass for one patient against the local cache and the remote store.
"""

import click
import functools
import json
import logging
import pathlib
import sys
import typing

from stairval.notepad import create_notepad

from .config import EngineSettings
from .history import append_history_entry, segment_history
from .merge import MergePolicy
from .record import FIELD_LABELS, ClinicalParameterRecord
from .remote import fetch_patient_clinical_data
from .session import PatientClinicalSession
from .store import FileStore
from .telemetry import LoggingObserver, NotepadObserver, fan_out
from .wire import decode


@click.group()
def main():
    """clinrec: reconcile clinical parameter records and history notes."""
    pass


@main.command(name="decode")
@click.argument("payload_file", type=click.Path(exists=True, dir_okay=False))
def decode_command(payload_file: str):
    """
    Print the plain JSON form of a wire-format payload file.
    """
    raw = _read_json(payload_file)
    click.echo(json.dumps(decode(raw), indent=2, default=str))


@main.command(name="history")
@click.argument("history_file", type=click.Path(exists=True, dir_okay=False))
def history_command(history_file: str):
    """
    Print the entries of a medical history text file, newest first.
    """
    text = pathlib.Path(history_file).read_text(encoding="utf-8")
    entries = segment_history(text)
    for entry in entries:
        click.echo(click.style(entry.timestamp or "(undated)", fg="cyan"))
        click.echo(entry.text)
        click.echo("")
    click.echo(f"Found {len(entries)} history entries")


@main.command(name="append-history")
@click.argument("history_file", type=click.Path(dir_okay=False))
@click.argument("text")
def append_history_command(history_file: str, text: str):
    """
    Add TEXT as a new dated entry at the top of HISTORY_FILE.
    """
    path = pathlib.Path(history_file)
    existing = path.read_text(encoding="utf-8") if path.is_file() else ""
    updated = append_history_entry(existing, text)
    if updated == existing:
        click.echo("Nothing to add: entry text is blank")
        return
    path.write_text(updated, encoding="utf-8")
    click.echo(f"Added entry to {path}")


@main.command(name="reconcile")
@click.option("-p", "--patient-id", required=True, help="patient identifier")
@click.option(
    "-d",
    "--draft",
    "draft_file",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file holding the current (unsaved) clinical parameters",
)
@click.option("--cache-dir", default=None, help="local cache directory (default: $CLINREC_CACHE_DIR)")
@click.option("--offline", is_flag=True, help="skip the remote store and use cached data only")
@click.option("--verbose", is_flag=True, help="log pipeline checkpoints to stderr")
@click.option("--log-file", type=click.Path(dir_okay=False), help="also append logs to this file")
def reconcile_command(
    patient_id: str,
    draft_file: typing.Optional[str],
    cache_dir: typing.Optional[str],
    offline: bool,
    verbose: bool,
    log_file: typing.Optional[str],
):
    """
    Merge the draft, cached and remote records for one patient and print
    them newest first, with the current record marked.
    """
    _configure_logging(verbose, log_file)
    settings = _load_settings()

    store = FileStore(cache_dir or settings.cache_dir)
    notepad = create_notepad("reconcile")
    observer = fan_out(NotepadObserver(notepad), LoggingObserver())
    fetcher = None if offline else functools.partial(fetch_patient_clinical_data, settings=settings)

    session = PatientClinicalSession(
        patient_id,
        store,
        fetcher=fetcher,
        policy=MergePolicy.from_settings(settings),
        observer=observer,
    )
    if draft_file:
        draft = decode(_read_json(draft_file))
        if not isinstance(draft, dict):
            click.echo(f"Error: {draft_file} must hold a JSON object", err=True)
            sys.exit(1)
        session.draft = ClinicalParameterRecord.from_mapping(draft)

    snapshot = session.refresh()

    _report_issues(notepad)
    if snapshot.stale:
        reason = "offline mode" if offline else snapshot.error
        click.echo(click.style(f"Showing cached data only ({reason})", fg="yellow"))

    if not snapshot.records:
        click.echo("No clinical parameter records found")
        return
    click.echo(_format_table(snapshot.records))
    click.echo(f"Reconciled {len(snapshot.records)} records for patient {patient_id}")


def _configure_logging(verbose: bool, log_file: typing.Optional[str]) -> None:
    handlers: list[logging.Handler] = []
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    if verbose:
        handlers.append(logging.StreamHandler(sys.stderr))
    if handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            handlers=handlers,
            force=True,
        )


def _load_settings() -> EngineSettings:
    try:
        return EngineSettings.from_env()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _read_json(path: str) -> typing.Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        click.echo(f"Error: {path} is not valid JSON: {e}", err=True)
        sys.exit(1)


def _report_issues(notepad):
    # if there were errors, show them
    if notepad.has_errors(include_subsections=True):
        click.echo("Errors found in reconciliation:")
        for err in notepad.errors():
            click.echo(f"- {err}")
    # show any warnings but keep going
    if notepad.has_warnings(include_subsections=True):
        click.echo("Warnings found in reconciliation:")
        for w in notepad.warnings():
            click.echo(f"- {w}")


def _format_table(records: typing.Sequence[ClinicalParameterRecord]) -> str:
    """Parameters as rows, one column per record; the current column is starred."""
    headers = [
        r.date.strftime("%Y-%m-%d %H:%M") + ("*" if r.is_current else "") for r in records
    ]
    label_width = max(len(label) for label in FIELD_LABELS.values())
    widths = [
        max(len(h), *(len(getattr(r, name) or "") for name in FIELD_LABELS))
        for h, r in zip(headers, records)
    ]
    lines = [
        " | ".join(["Parameter".ljust(label_width)] + [h.ljust(w) for h, w in zip(headers, widths)])
    ]
    for name, label in FIELD_LABELS.items():
        cells = [(getattr(r, name) or "-").ljust(w) for r, w in zip(records, widths)]
        lines.append(" | ".join([label.ljust(label_width)] + cells))
    return "\n".join(lines)


if __name__ == "__main__":
    main()
