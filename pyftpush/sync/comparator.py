"""Comparison logic deciding how to reconcile one local item with the remote side."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from ..utils import local_minute_from_datetime, local_minute_from_timestamp
from .paths import LocalEntry, RemoteEntry, RemoteKind


class SyncAction(str, Enum):
    """Actions reported while synchronizing."""

    ADD = "add"
    """Create a directory or upload a file that does not exist remotely"""

    REPLACE = "replace"
    """Upload a file over a different remote item"""

    DELETE = "delete"
    """Delete a remote item with no local counterpart"""

    SKIP = "skip"
    """Leave the item alone (unchanged or excluded)"""

    SYNCHRONIZE = "synchronize"
    """Reconcile an existing remote directory recursively"""


@dataclass(frozen=True)
class SyncDecision:
    """Represents a decision about how to reconcile one local item."""

    action: SyncAction
    """Action to take"""

    reason: Optional[str] = None
    """Human-readable reason, shown next to the item"""

    delete_remote: bool = False
    """Whether the remote counterpart must be deleted first (type conflict)"""


def timestamps_match(local_mtime: Optional[float], remote: Optional[datetime]) -> bool:
    """Compare modification times at whole-minute granularity in local time.

    Many FTP servers only report minutes, so finer differences are ignored.

    Args:
        local_mtime: Local modification time (Unix timestamp)
        remote: Remote modification time (aware UTC datetime)

    Returns:
        True if both times fall into the same minute
    """
    if local_mtime is None or remote is None:
        return False
    return local_minute_from_timestamp(local_mtime) == local_minute_from_datetime(
        remote
    )


def decide(local: LocalEntry, remote: Optional[RemoteEntry]) -> SyncDecision:
    """Decide how to reconcile a local item with its remote counterpart.

    Exclusions are handled by the caller before asking for a decision.

    Args:
        local: Local file or directory
        remote: Same-named remote entry, if any

    Returns:
        SyncDecision for the item
    """
    if remote is None:
        return SyncDecision(SyncAction.ADD)

    if local.is_directory:
        if remote.kind is RemoteKind.DIRECTORY:
            return SyncDecision(SyncAction.SYNCHRONIZE)
        # A file or link occupies the directory's name
        return SyncDecision(SyncAction.ADD, delete_remote=True)

    if remote.kind is RemoteKind.DIRECTORY:
        return SyncDecision(
            SyncAction.REPLACE, reason="remote is a directory", delete_remote=True
        )

    if remote.kind is RemoteKind.LINK:
        return SyncDecision(
            SyncAction.REPLACE, reason="remote is a link", delete_remote=True
        )

    if not timestamps_match(local.mtime, remote.modified):
        return SyncDecision(SyncAction.REPLACE)

    return SyncDecision(SyncAction.SKIP)
