"""Sync engine for pyftpush - one-directional local to FTP mirroring."""

from .comparator import SyncAction, SyncDecision, decide
from .engine import SyncEngine, synchronize
from .excludes import ExclusionMatcher, ExclusionRule, compile_excludes
from .operations import SyncOperations
from .paths import LocalEntry, LocalKind, RemoteEntry, RemoteKind, RemotePath
from .pool import ConnectionLease, ConnectionPool
from .retry import RetryDecision, RetryPolicy, classify_failure

__all__ = [
    "SyncEngine",
    "synchronize",
    "SyncAction",
    "SyncDecision",
    "decide",
    "SyncOperations",
    "ExclusionMatcher",
    "ExclusionRule",
    "compile_excludes",
    "LocalEntry",
    "LocalKind",
    "RemoteEntry",
    "RemoteKind",
    "RemotePath",
    "ConnectionLease",
    "ConnectionPool",
    "RetryDecision",
    "RetryPolicy",
    "classify_failure",
]
