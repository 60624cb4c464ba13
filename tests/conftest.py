import pytest
from datetime import datetime

from clinrec.store import MemoryStore


class FailingStore(MemoryStore):
    """MemoryStore whose writes always fail."""

    def set(self, key, value):
        raise OSError("disk full")


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def fixed_now() -> datetime:
    """
    The instant used as "now" by merge and session tests.
    """
    return datetime(2025, 5, 10, 9, 30)


@pytest.fixture
def wire_record() -> dict:
    """
    A clinical parameter record as the remote store returns it.
    """
    return {
        "M": {
            "hb": {"S": "11.2"},
            "inr": {"N": "1.3"},
            "platelet": {"N": "250"},
            "tprAlb": {"S": "6.8/3.9"},
            "date": {"S": "2025-03-01T10:00:00"},
            "isCurrent": {"BOOL": True},
            "enteredBy": {"NULL": True},
        }
    }
