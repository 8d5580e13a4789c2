"""Timezone-aware datetime helpers."""

from __future__ import annotations

import datetime as dt

UTC = dt.timezone.utc


def now_utc() -> dt.datetime:
    """Return the current time as an aware ``datetime`` in UTC."""

    return dt.datetime.now(UTC)
