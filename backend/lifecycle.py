"""Test lifecycle classification (Upcoming / Live / Completed).

State is never stored: it is recomputed from the clock on every read. A test's
``date``, ``start_time`` and ``end_time`` are wall-clock values in the portal
zone (``datetime_utils.PORTAL_TZ``); ``now`` must be timezone-aware and is
compared as an absolute instant, so every caller gets the same answer.
"""
import datetime as dt
from typing import Protocol, Tuple

from datetime_utils import PORTAL_TZ
from models import TestState


class Scheduled(Protocol):
    date: dt.date
    start_time: dt.time
    end_time: dt.time


def live_window(test: Scheduled, tz: dt.tzinfo = PORTAL_TZ) -> Tuple[dt.datetime, dt.datetime]:
    """Return the absolute ``(start, end)`` instants of a test's live window."""
    if test.start_time.tzinfo is not None or test.end_time.tzinfo is not None:
        raise ValueError("test times must be wall-clock times without a UTC offset")
    start = dt.datetime.combine(test.date, test.start_time, tzinfo=tz)
    end = dt.datetime.combine(test.date, test.end_time, tzinfo=tz)
    return start, end


def classify(now: dt.datetime, test: Scheduled, tz: dt.tzinfo = PORTAL_TZ) -> TestState:
    """Classify ``test`` at instant ``now``; both window boundaries are Live."""
    if now.tzinfo is None or now.utcoffset() is None:
        raise ValueError("classify() requires a timezone-aware 'now'")
    start, end = live_window(test, tz)
    if now < start:
        return TestState.UPCOMING
    if now <= end:
        return TestState.LIVE
    return TestState.COMPLETED


def seconds_remaining(now: dt.datetime, test: Scheduled, tz: dt.tzinfo = PORTAL_TZ) -> int:
    """Whole seconds until the window closes, never negative."""
    _, end = live_window(test, tz)
    return max(0, int((end - now).total_seconds()))
