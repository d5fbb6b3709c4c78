"""
Timezone Utilities for AWG Hub

All telemetry, events and period buckets are handled in UTC. This module
centralizes conversion so that naive datetimes coming from the store, the
API or tests are interpreted consistently.
"""

import pytz
from datetime import datetime
from typing import Optional, Union
import logging

log = logging.getLogger(__name__)

UTC = pytz.UTC


def now_utc() -> datetime:
    """Get current time in UTC."""
    return datetime.now(UTC)


def now_utc_iso() -> str:
    """Get current time in UTC as ISO string."""
    return now_utc().isoformat()


def to_utc(dt: datetime) -> datetime:
    """
    Convert any datetime to UTC.

    Args:
        dt: datetime object (with or without timezone info)

    Returns:
        datetime object in UTC. Naive input is assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return UTC.localize(dt)
    return dt.astimezone(UTC)


def parse_iso_to_utc(iso_string: str) -> datetime:
    """
    Parse ISO string and convert to UTC.

    Accepts the trailing 'Z' form emitted by the ingestion layer as well as
    explicit offsets and the space separator SQLite uses.
    """
    dt = datetime.fromisoformat(iso_string.strip().replace('Z', '+00:00'))
    return to_utc(dt)


def ensure_utc(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Coerce a datetime or ISO string to an aware UTC datetime (None passes through)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    return parse_iso_to_utc(value)


def format_utc_for_db(dt: datetime) -> str:
    """
    Format datetime for storage.

    Fixed-width ISO text with microseconds keeps lexical and chronological
    ordering identical in SQLite.
    """
    return to_utc(dt).isoformat(timespec='microseconds')
