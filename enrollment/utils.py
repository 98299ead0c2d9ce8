"""Utility functions shared by the enrollment rules, forms and CLI.

Provides string normalization helpers used when validating and assembling
records, and locale-aware date formatting for review screens."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Mapping

from babel.dates import format_date

_SEPARATORS = re.compile(r"[\s\-]+")
# A calendar date, optionally followed by the time part of a stored timestamp
_ISO_DATE = re.compile(
    r"([0-9]{4}-[0-9]{2}-[0-9]{2})(T[0-9:.]+(Z|[+-][0-9]{2}:?[0-9]{2})?)?"
)


def string_or_empty(value: Any) -> str:
    """Safely convert value to string, returning empty string for None.

    Parameters
    ----------
    value : Any
        Value to convert (may be None, empty string, or any type)

    Returns
    -------
    str
        Stringified, stripped value or empty string for None
    """
    if value is None:
        return ""
    return str(value).strip()


def strip_separators(value: Any) -> str:
    """Remove hyphens and whitespace from a document number.

    Examples
    --------
    >>> strip_separators("1234-5678 9012")
    '123456789012'
    """
    return _SEPARATORS.sub("", string_or_empty(value))


def split_full_name(full_name: Any) -> tuple[str, str]:
    """Split a stored full name into given and family name.

    The first word is the given name; everything after it is the family
    name. Used when an existing record is loaded back into a draft.

    Examples
    --------
    >>> split_full_name("Asha Devi Rao")
    ('Asha', 'Devi Rao')
    """
    parts = string_or_empty(full_name).split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def ref_id(value: Any) -> str:
    """Return the id of a reference that may be populated ({'_id': ...}) or bare.

    Examples
    --------
    >>> ref_id({"_id": "bus-1", "bus_number": "KA-01-AB-1234"})
    'bus-1'
    >>> ref_id("bus-1")
    'bus-1'
    """
    if isinstance(value, Mapping):
        return string_or_empty(value.get("_id") or value.get("id"))
    return string_or_empty(value)


def parse_iso_date(value: Any) -> date:
    """Parse a YYYY-MM-DD string (or ISO timestamp) into a date.

    Stored records may carry a full timestamp such as
    "2016-04-02T00:00:00.000Z"; anything else after the date is rejected.

    Raises
    ------
    ValueError
        If value is empty or not in ISO format.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = string_or_empty(value)
    if not text:
        raise ValueError("Empty date")
    match = _ISO_DATE.fullmatch(text)
    if not match:
        raise ValueError(f"Not an ISO date: {text!r}")
    return datetime.strptime(match.group(1), "%Y-%m-%d").date()


def iso_date_or_empty(value: Any) -> str:
    """Return value as YYYY-MM-DD, or an empty string when it is not a date."""
    try:
        return parse_iso_date(value).isoformat()
    except ValueError:
        return ""


def format_display_date(value: Any, locale: str = "en_IN") -> str:
    """Format an ISO date with locale-aware long formatting.

    Parameters
    ----------
    value : Any
        Date in ISO format (YYYY-MM-DD) or a date object.
    locale : str, optional
        Babel locale identifier (default: "en_IN").

    Returns
    -------
    str
        Formatted date, e.g. "2 April 2016" for en_IN, or an empty string
        when value is empty or not a valid date.
    """
    try:
        date_obj = parse_iso_date(value)
    except ValueError:
        return ""
    return format_date(date_obj, format="long", locale=locale)
