from datetime import datetime, timezone, timedelta

from constants import PORTAL_UTC_OFFSET_MINUTES

# Wall-clock zone for test schedules (IST, UTC+5:30, unless configured otherwise)
PORTAL_TZ = timezone(timedelta(minutes=PORTAL_UTC_OFFSET_MINUTES))

def now_portal() -> datetime:
    """Return a timezone-aware datetime in the portal zone."""
    return datetime.now(PORTAL_TZ)

def now_portal_iso() -> str:
    """Return current portal time as ISO-8601 string including offset."""
    return now_portal().isoformat()
