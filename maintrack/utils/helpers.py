"""Shared input-parsing helpers for blueprints.

parse_date / parse_time:  raise ValueError on malformed input so blueprints
                          can turn it into a 400 with a precise message.
json_body:                request JSON as a dict, never None.
"""
import logging
import re
from datetime import date, datetime, time

from flask import request

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])(?::([0-5][0-9]))?$")


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def parse_date(value, field: str = "date"):
    """Parse an ISO date (YYYY-MM-DD, or a full ISO datetime) into a date.

    Returns None for None / blank input.  Raises ValueError otherwise.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError as exc:
        raise ValueError(f"Invalid {field} format. Expected YYYY-MM-DD.") from exc


def parse_time(value, field: str = "time"):
    """Parse HH:MM (or HH:MM:SS) into a time.

    Blank strings normalise to None so an empty end time is stored as
    NULL, never as an empty marker.
    """
    if value is None:
        return None
    if isinstance(value, time):
        return value
    text = str(value).strip()
    if not text:
        return None
    match = _TIME_RE.match(text)
    if not match:
        raise ValueError(f"Invalid {field} format. Use HH:MM format.")
    hours, minutes, seconds = match.groups()
    return time(int(hours), int(minutes), int(seconds or 0))


def parse_datetime(value, field: str = "datetime"):
    """Parse an ISO datetime string; blank → None."""
    if value is None or isinstance(value, datetime):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Invalid {field} format. Expected ISO 8601.") from exc
