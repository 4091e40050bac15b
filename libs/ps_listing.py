#!/usr/bin/env python3
"""
PSListing - Remote Directory Listing Parser

Turns the text of a long-format directory listing (`ls -la` style) into sorted
DirectoryEntry objects. Pure: no I/O, no logging.

 Author: Gino Bogo
License: MIT
Version: 1.0
"""

from __future__ import annotations

import re

from datetime import datetime, timedelta
from typing import Optional

from libs.ps_models import DirectoryEntry, sort_entries


# ============================================================================
# CONSTANTS
# ============================================================================

MIN_TOKENS = 9
# Shell prompts must be followed by whitespace so permission strings never match.
PROMPT_PREFIXES = ("sftp>", "ftp>", "$ ", "# ", "> ")
PROMPT_MARKERS = ("$", "#", ">")
SUMMARY_PATTERN = re.compile(r"^total\s+\d+(\.\d+)?[KMGTP]?$", re.IGNORECASE)
SYMLINK_SEPARATOR = " -> "


# ============================================================================
# HELPERS
# ============================================================================


def join_remote_path(base_path: str, name: str) -> str:
    """Join a base path and an entry name with exactly one separating '/'."""
    return f"{base_path.rstrip('/')}/{name.lstrip('/')}"


def _is_skippable(line: str) -> bool:
    if not line:
        return True
    if line.startswith(PROMPT_PREFIXES) or line in PROMPT_MARKERS:
        return True
    if SUMMARY_PATTERN.match(line):
        return True
    return line.split()[-1] in (".", "..")


def _parse_size(token: str) -> int:
    try:
        return int(token)
    except ValueError:
        return 0


def parse_listing_date(
    month: str, day: str, time_or_year: str, now: Optional[datetime] = None
) -> Optional[datetime]:
    """Parse the three date tokens of a listing line.

    Recent files show "Mon D HH:MM" without a year; the current year is assumed
    and stepped back one year if that would put the date in the future. Older
    files show "Mon D YYYY".

    Args:
        month: Abbreviated month name, e.g. "Jan"
        day: Day of the month
        time_or_year: "HH:MM" or a four-digit year
        now: Reference time (defaults to the current time)

    Returns:
        The parsed datetime, or None if the tokens are not a date
    """
    now = now or datetime.now()
    try:
        if ":" in time_or_year:
            parsed = datetime.strptime(
                f"{now.year} {month} {day} {time_or_year}", "%Y %b %d %H:%M"
            )
            if parsed > now + timedelta(days=1):
                parsed = parsed.replace(year=now.year - 1)
            return parsed
        return datetime.strptime(f"{time_or_year} {month} {day}", "%Y %b %d")
    except ValueError:
        return None


# ============================================================================
# PARSER
# ============================================================================


def parse_listing_line(
    line: str, base_path: str, now: Optional[datetime] = None
) -> Optional[DirectoryEntry]:
    """Parse one listing line.

    Args:
        line: Raw line from the listing
        base_path: Directory that was listed
        now: Reference time for year-less dates

    Returns:
        A DirectoryEntry, or None when the line is skipped
    """
    line = line.strip()
    if _is_skippable(line):
        return None

    tokens = line.split()
    if len(tokens) < MIN_TOKENS:
        return None

    permissions = tokens[0]
    is_directory = permissions.startswith("d")
    name = " ".join(tokens[8:])
    if permissions.startswith("l") and SYMLINK_SEPARATOR in name:
        name = name.split(SYMLINK_SEPARATOR, 1)[0]

    if not name or name.startswith("."):
        return None

    return DirectoryEntry(
        name=name,
        full_path=join_remote_path(base_path, name),
        is_directory=is_directory,
        size_bytes=0 if is_directory else _parse_size(tokens[4]),
        modified_at=parse_listing_date(tokens[5], tokens[6], tokens[7], now),
    )


def parse_listing(
    text: str, base_path: str, now: Optional[datetime] = None
) -> list:
    """Parse a whole long-format listing.

    Malformed lines are skipped silently.

    Args:
        text: Multi-line listing output
        base_path: Directory that was listed
        now: Reference time for year-less dates

    Returns:
        Entries sorted directories first, then case-insensitively by name
    """
    entries = []
    for line in text.splitlines():
        entry = parse_listing_line(line, base_path, now)
        if entry is not None:
            entries.append(entry)
    return sort_entries(entries)
