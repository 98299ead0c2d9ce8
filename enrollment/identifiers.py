"""Derive human-readable record identifiers from identity document numbers.

An identifier is composed of the current year, the last four digits of the
12-digit identity document number and a zero-padded sequence number that is
unique within (year, suffix):

    2026-4821-0001

Employee records carry a kind prefix in front of the same shape
(``STF-2026-4821-0001``).

**Contract:**
- Document numbers that do not normalize to exactly 12 digits yield the
  pending sentinel ``AUTO-GENERATE`` rather than an error.
- The next sequence is one more than the highest sequence already issued
  for the same (prefix, year, suffix), not one more than the count.
- The function is pure: the same snapshot of existing identifiers always
  yields the same result. Callers re-run it whenever the snapshot is
  refreshed.
- The result is advisory. The records API owns uniqueness and rejects
  duplicates with a conflict response.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Iterable, Optional

from .utils import strip_separators

PENDING_IDENTIFIER = "AUTO-GENERATE"

DOCUMENT_DIGITS = 12
SUFFIX_DIGITS = 4
SEQUENCE_DIGITS = 4

_DOCUMENT_PATTERN = re.compile(rf"^[0-9]{{{DOCUMENT_DIGITS}}}$")


def normalize_document_number(document_number: object) -> str:
    """Strip separators (hyphens, spaces) from a document number."""
    return strip_separators(document_number)


def is_complete_document_number(document_number: object) -> bool:
    """Return True when the normalized document number has exactly 12 digits."""
    return bool(_DOCUMENT_PATTERN.match(normalize_document_number(document_number)))


def is_pending(identifier: Optional[str]) -> bool:
    """Return True when an identifier has not been derived yet."""
    return not identifier or identifier == PENDING_IDENTIFIER


def generate_identifier(
    document_number: object,
    existing_identifiers: Iterable[str],
    year: Optional[int] = None,
    prefix: Optional[str] = None,
) -> str:
    """Derive the next identifier for a document number.

    Parameters
    ----------
    document_number : object
        Identity document number as typed; hyphens and spaces are ignored.
    existing_identifiers : Iterable[str]
        Identifiers already issued in the same namespace. Entries that do not
        match the identifier shape are ignored.
    year : int, optional
        Temporal partition. Defaults to the current year.
    prefix : str, optional
        Kind prefix such as 'STF'. Empty or None means no prefix.

    Returns
    -------
    str
        Identifier like '2026-4821-0001', or PENDING_IDENTIFIER when the
        document number is incomplete.

    Examples
    --------
    >>> generate_identifier("1234-5678-4821", ["2026-4821-0001", "2026-4821-0003"], year=2026)
    '2026-4821-0004'

    >>> generate_identifier("1234", [], year=2026)
    'AUTO-GENERATE'
    """
    normalized = normalize_document_number(document_number)
    if not _DOCUMENT_PATTERN.match(normalized):
        return PENDING_IDENTIFIER

    partition = year if year is not None else date.today().year
    suffix = normalized[-SUFFIX_DIGITS:]
    head = f"{prefix}-{partition}-{suffix}" if prefix else f"{partition}-{suffix}"

    pattern = re.compile(rf"^{re.escape(head)}-([0-9]{{{SEQUENCE_DIGITS}}})$")
    highest = 0
    for existing in existing_identifiers:
        match = pattern.match(str(existing).strip())
        if match:
            highest = max(highest, int(match.group(1)))

    return f"{head}-{highest + 1:0{SEQUENCE_DIGITS}d}"
