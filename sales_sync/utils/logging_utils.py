"""
UTC timestamped log lines for sync runs.

Everything goes to stdout; the Lambda runtime forwards it to CloudWatch.
Sections are named "<Stage> - <channel>" so one run can be followed with a
single filter.
"""

from datetime import datetime, UTC
from typing import Any, Optional


def _utc_timestamp() -> str:
    """
    Generate the current UTC timestamp string.

    Returns:
        str: Timestamp formatted as YYYY-MM-DD HH:MM:SS in UTC.
    """
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")


def format_fields(**fields: Any) -> str:
    """
    Render key/value context as "key=value | key=value", skipping None values.

    Args:
        **fields: Context values to render.

    Returns:
        str: The rendered context, empty when nothing is set.
    """
    return " | ".join(
        f"{key}={value}" for key, value in fields.items() if value is not None
    )


def log_section_start(section: str) -> None:
    """
    Log the start of a section.

    Args:
        section (str): Description of the section that is beginning.
    """
    print(f"[{_utc_timestamp()}] Starting: {section}")


def log_section_complete(section: str, details: Optional[str] = None) -> None:
    """
    Log the completion of a section.

    Args:
        section (str): Description of the section that finished.
        details (Optional[str]): Optional extra context to append to the message.
    """
    suffix = f" - {details}" if details else ""
    print(f"[{_utc_timestamp()}] Completed: {section}{suffix}")


def log_progress(section: str, message: str, **fields: Any) -> None:
    """
    Log an in-progress update for a section.

    Args:
        section (str): Description of the section that is running.
        message (str): Progress message to display for the section.
        **fields: Optional structured context appended to the line.
    """
    context = format_fields(**fields)
    suffix = f" | {context}" if context else ""
    print(f"[{_utc_timestamp()}] {section}: {message}{suffix}", flush=True)


def log_warning(section: str, message: str) -> None:
    """Log a recoverable problem that did not stop the section."""
    print(f"[{_utc_timestamp()}] Warning in {section}: {message}")


def log_error(section: str, error: Exception | str) -> None:
    """
    Log an error that occurred during a section.

    Args:
        section (str): Description of the section where the error occurred.
        error (Exception | str): Exception instance or error message to record.
    """
    print(f"[{_utc_timestamp()}] Error in {section}: {error}")
