"""Utility functions for pyftpush."""

from datetime import datetime, timezone
from typing import Optional

# =============================================================================
# Constants for file operations
# =============================================================================

# Chunk size used when copying a local file into an FTP data connection (256 KB)
DEFAULT_CHUNK_SIZE: int = 256 * 1024

# Number of background connections used for uploads
DEFAULT_PARALLEL: int = 5

# Socket timeout for FTP connections
DEFAULT_TIMEOUT: float = 30.0

# Retry configuration for transient server failures
DEFAULT_MAX_ATTEMPTS: int = 30
DEFAULT_FIRST_RETRY_DELAY: float = 0.5  # seconds
DEFAULT_RETRY_DELAY: float = 1.0  # seconds


# =============================================================================
# Timestamp utilities
# =============================================================================


def truncate_to_minutes(value: datetime) -> datetime:
    """Drop seconds and sub-second precision from a datetime.

    Args:
        value: Datetime to truncate

    Returns:
        Datetime with second and microsecond set to zero
    """
    return value.replace(second=0, microsecond=0)


def local_minute_from_timestamp(timestamp: float) -> datetime:
    """Convert a Unix timestamp to a naive local datetime truncated to minutes."""
    return truncate_to_minutes(datetime.fromtimestamp(timestamp))


def local_minute_from_datetime(value: datetime) -> datetime:
    """Convert a (possibly aware) datetime to naive local time truncated to minutes.

    Naive datetimes are assumed to be UTC, which is what FTP servers report.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return truncate_to_minutes(value.astimezone().replace(tzinfo=None))


def utc_from_timestamp(timestamp: float) -> datetime:
    """Convert a Unix timestamp to an aware UTC datetime."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def parse_ftp_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an FTP timestamp fact (YYYYMMDDHHMMSS[.sss]) as UTC.

    Args:
        value: Timestamp string from MLSD/MLST/MDTM

    Returns:
        Aware UTC datetime or None if parsing fails

    Examples:
        >>> parse_ftp_timestamp("20240105143000")
        datetime.datetime(2024, 1, 5, 14, 30, tzinfo=datetime.timezone.utc)
    """
    if not value:
        return None

    whole, _, fraction = value.strip().partition(".")
    try:
        parsed = datetime.strptime(whole, "%Y%m%d%H%M%S")
    except ValueError:
        return None

    if fraction.isdigit():
        microseconds = int(fraction[:6].ljust(6, "0"))
        parsed = parsed.replace(microsecond=microseconds)
    return parsed.replace(tzinfo=timezone.utc)


def format_ftp_timestamp(value: datetime) -> str:
    """Format a datetime as an FTP timestamp (YYYYMMDDHHMMSS) in UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y%m%d%H%M%S")


# =============================================================================
# Path utilities
# =============================================================================


def join_remote(parent: str, name: str) -> str:
    """Join a remote directory path and a child name with a single slash.

    Examples:
        >>> join_remote("/", "site")
        '/site'
        >>> join_remote("/site/", "index.html")
        '/site/index.html'
    """
    return f"{parent.rstrip('/')}/{name}"


def split_remote(path: str) -> tuple[str, str]:
    """Split a remote path into (parent, name).

    Examples:
        >>> split_remote("/site/index.html")
        ('/site', 'index.html')
        >>> split_remote("/site")
        ('/', 'site')
    """
    stripped = path.rstrip("/") or "/"
    parent, _, name = stripped.rpartition("/")
    return (parent or "/", name)
