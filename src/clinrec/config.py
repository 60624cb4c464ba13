"""
Engine configuration.

Environment flags
----------------------------------------
CLINREC_API_URL         : Patient-processor endpoint used by clinrec.remote.
CLINREC_CACHE_DIR       : Directory backing the file store used by the CLI.
CLINREC_SENTINEL_DATES  : Comma-separated "YYYY-MM-DDTHH:MM" placeholder
                          timestamps the merge must never surface, or "none".
CLINREC_HTTP_TIMEOUT    : Seconds per HTTP attempt.
CLINREC_HTTP_RETRIES    : Number of HTTP attempts.
"""

from __future__ import annotations

import os
import typing
from dataclasses import dataclass, field
from datetime import datetime

DEFAULT_API_URL = "http://localhost:8080/"
DEFAULT_CACHE_DIR = ".clinrec_cache"

# Placeholder record left in patient data by an old import (4/2/2025 2:44 PM)
LEGACY_PLACEHOLDER = datetime(2025, 4, 2, 14, 44)


@dataclass(frozen=True)
class SentinelDate:
    """
    Matches any instant within the same minute as `moment`.
    """

    moment: datetime

    def __call__(self, value: datetime) -> bool:
        return (
            value.year == self.moment.year
            and value.month == self.moment.month
            and value.day == self.moment.day
            and value.hour == self.moment.hour
            and value.minute == self.moment.minute
        )

    @classmethod
    def from_text(cls, text: str) -> "SentinelDate":
        try:
            return cls(datetime.strptime(text.strip(), "%Y-%m-%dT%H:%M"))
        except ValueError as e:
            raise ValueError(f"Invalid sentinel date {text!r}, expected YYYY-MM-DDTHH:MM") from e


def parse_sentinels(raw: typing.Optional[str]) -> tuple[SentinelDate, ...]:
    """'2025-04-02T14:44,2024-01-01T00:00' -> predicates; 'none' or '' -> ()"""
    if raw is None:
        return (SentinelDate(LEGACY_PLACEHOLDER),)
    raw = raw.strip()
    if not raw or raw.lower() == "none":
        return ()
    return tuple(SentinelDate.from_text(part) for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class EngineSettings:
    api_url: str = DEFAULT_API_URL
    cache_dir: str = DEFAULT_CACHE_DIR
    sentinels: tuple[SentinelDate, ...] = field(
        default_factory=lambda: (SentinelDate(LEGACY_PLACEHOLDER),)
    )
    http_timeout: float = 10.0
    http_retries: int = 4

    @classmethod
    def from_env(cls, environ: typing.Optional[typing.Mapping[str, str]] = None) -> "EngineSettings":
        env = os.environ if environ is None else environ
        try:
            timeout = float(env.get("CLINREC_HTTP_TIMEOUT", "10"))
            retries = int(env.get("CLINREC_HTTP_RETRIES", "4"))
        except ValueError as e:
            raise ValueError(f"Invalid HTTP setting: {e}") from e
        if retries < 1:
            raise ValueError(f"CLINREC_HTTP_RETRIES must be at least 1, got {retries}")
        return cls(
            api_url=env.get("CLINREC_API_URL", DEFAULT_API_URL),
            cache_dir=env.get("CLINREC_CACHE_DIR", DEFAULT_CACHE_DIR),
            sentinels=parse_sentinels(env.get("CLINREC_SENTINEL_DATES")),
            http_timeout=timeout,
            http_retries=retries,
        )
