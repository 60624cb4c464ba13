import logging

from clinrec.merge import reconcile
from clinrec.telemetry import CHECKPOINTS, LoggingObserver, NotepadObserver, fan_out
from stairval.notepad import create_notepad


def test_notepad_observer_records_problems():
    notepad = create_notepad("reconcile")
    observer = NotepadObserver(notepad)
    observer("decoded", {"draft": True})
    observer("persist-failed", {"key": "clinical_history_P1", "error": "disk full"})

    assert observer.checkpoints() == ["decoded", "persist-failed"]
    assert notepad.has_warnings(include_subsections=True)
    assert not notepad.has_errors(include_subsections=True)
    assert any("disk full" in str(w) for w in notepad.warnings())


def test_logging_observer_levels(caplog):
    observer = LoggingObserver()
    with caplog.at_level(logging.DEBUG, logger="clinrec.pipeline"):
        observer("seeded", {"count": 1})
        observer("record-skipped", {"source": "cached"})
    levels = [r.levelno for r in caplog.records]
    assert levels == [logging.DEBUG, logging.WARNING]


def test_fan_out_calls_every_observer():
    seen = []
    combined = fan_out(lambda c, d: seen.append(("a", c)), lambda c, d: seen.append(("b", c)))
    combined("persisted", {})
    assert seen == [("a", "persisted"), ("b", "persisted")]


def test_merge_emits_only_known_checkpoints(failing_store):
    observer = NotepadObserver(create_notepad("reconcile"))
    reconcile(
        {"hb": "1", "date": "2025-04-02T14:44"},
        ["junk", {"hb": "2", "date": "2025-03-01T09:00"}],
        {"hb": "3", "date": "2025-03-01T10:00"},
        [{"hb": "4", "date": "2025-02-01T09:00"}],
        store=failing_store,
        patient_id="P1",
        observer=observer,
    )
    seen = observer.checkpoints()
    assert set(seen) <= set(CHECKPOINTS)
    assert {"record-skipped", "sentinels-removed", "persist-failed"} <= set(seen)
