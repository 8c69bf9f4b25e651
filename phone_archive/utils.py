"""
Utility functions and classes for Phone Archive.
"""

from datetime import datetime, timezone
from typing import Optional


class Colors:
    """ANSI color codes for terminal output."""

    HEADER = "\033[95m"
    OKBLUE = "\033[94m"
    OKCYAN = "\033[96m"
    OKGREEN = "\033[92m"
    WARNING = "\033[93m"
    FAIL = "\033[91m"
    ENDC = "\033[0m"
    BOLD = "\033[1m"


def format_timestamp(timestamp: Optional[int]) -> str:
    """
    Convert an archive timestamp to readable format.

    Archive timestamps are epoch milliseconds, as written by the device.

    Args:
        timestamp: Epoch milliseconds, or None.

    Returns:
        Formatted UTC date string, or "-" when there is no timestamp.
    """
    if timestamp is None:
        return "-"
    dt = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def format_count(count: int) -> str:
    """
    Format a record count with appropriate units.

    Args:
        count: Number of records.

    Returns:
        Formatted string (e.g., "999" or "1.2K").
    """
    if count < 1000:
        return str(count)
    elif count < 1_000_000:
        return f"{count / 1000:.1f}K"
    else:
        return f"{count / 1_000_000:.1f}M"
