"""
Timezone helpers. Everything is stored in UTC; the service timezone is only
used for display and for the calendar day embedded in order numbers.
"""
from datetime import datetime, timezone

import pytz

from config_payments import SERVICE_TIMEZONE


def get_service_timezone():
    """Configured service timezone, Asia/Jakarta unless overridden."""
    try:
        return pytz.timezone(SERVICE_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        return pytz.timezone('Asia/Jakarta')


def get_utc_now():
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def get_local_now():
    """Current time in the service timezone."""
    return get_utc_now().astimezone(get_service_timezone())


def get_local_today():
    """Calendar day in the service timezone."""
    return get_local_now().date()


def format_utc_datetime_to_local(dt, format_str='%d/%m/%Y %H:%M'):
    """Convert a UTC datetime to the service timezone and format it for display"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(get_service_timezone()).strftime(format_str)
