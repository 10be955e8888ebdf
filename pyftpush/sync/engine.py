"""Core sync engine mirroring a local tree onto an FTP server."""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, TypeVar, Union

from ..exceptions import FtpCommandError, PoolError
from ..output import OutputFormatter
from ..utils import DEFAULT_CHUNK_SIZE, DEFAULT_PARALLEL
from .comparator import SyncAction, decide
from .excludes import ExclusionMatcher, compile_excludes
from .operations import SyncOperations
from .paths import LocalEntry, RemoteEntry, RemotePath
from .pool import ConnectionPool
from .retry import NOT_FOUND_CODE, RetryPolicy, classify_probe_failure

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncEngine:
    """Makes a remote directory tree converge to a local one.

    Directory traversal runs depth-first on one dedicated main session,
    which performs every listing, directory change, directory create/remove
    and delete. File uploads are dispatched to a thread pool and run on
    sessions leased from the connection pool. Uploads started for one
    directory are awaited before that directory's extra remote entries are
    deleted.
    """

    def __init__(
        self,
        session: Any,
        pool: ConnectionPool[Any],
        excludes: Union[ExclusionMatcher, Iterable[str], None] = None,
        output: Optional[OutputFormatter] = None,
        retry: Optional[RetryPolicy] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """Initialize sync engine.

        Args:
            session: Connected main session, used only for traversal
            pool: Pool of background sessions used for uploads
            excludes: Exclusion matcher or glob patterns
            output: Output formatter receiving item events
            retry: Retry policy wrapping every protocol call
            chunk_size: Buffer size for copying file contents
        """
        self.session = session
        self.pool = pool
        if isinstance(excludes, ExclusionMatcher):
            self.excludes = excludes
        else:
            self.excludes = compile_excludes(excludes)
        self.output = output or OutputFormatter()
        self.retry = retry or RetryPolicy()
        self.operations = SyncOperations(pool, self.retry, chunk_size)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._stats = self._create_empty_stats()

    def synchronize(self, local: Union[Path, str], remote: str) -> dict:
        """Synchronize a local file or directory to a remote path.

        Args:
            local: Local file or directory
            remote: Absolute remote target path

        Returns:
            Dictionary with counts of adds, replaces, deletes and skips

        Examples:
            >>> engine = SyncEngine(session, pool, excludes=["*.log"])
            >>> stats = engine.synchronize(Path("site"), "/public_html")
            >>> print(f"Uploaded {stats['adds']} new item(s)")
        """
        local = Path(local)
        if not local.exists():
            raise ValueError(f"Local path does not exist: {local}")

        remote_root = RemotePath.root(remote)
        self._stats = self._create_empty_stats()
        start = time.time()
        logger.debug("Synchronizing %s -> %s", local, remote_root.absolute)

        executor = ThreadPoolExecutor(
            max_workers=self.pool.capacity, thread_name_prefix="pyftpush-upload"
        )
        self._executor = executor
        try:
            self._report(0, SyncAction.SYNCHRONIZE, local.name or str(local))
            exists = self._remote_directory_exists(remote_root)

            if local.is_dir():
                root = LocalEntry.from_path(local)
                if exists:
                    self._synchronize_directory(root, remote_root)
                else:
                    self._create_root_directory(root, remote_root)
            else:
                root = LocalEntry.from_path(local, relative_path=local.name)
                if exists:
                    self._synchronize_single_file(root, remote_root)
                else:
                    self._upload_root_file(root, remote_root)
        finally:
            self._executor = None
            executor.shutdown(wait=True, cancel_futures=True)

        logger.debug("Synchronization took %.2fs", time.time() - start)
        return dict(self._stats)

    # ------------------------------------------------------------------
    # Top-level cases
    # ------------------------------------------------------------------

    def _remote_directory_exists(self, remote: RemotePath) -> bool:
        """Probe the target by entering it; "not found" means it is missing."""
        try:
            self._call(
                None,
                lambda s: s.change_working_directory(remote.absolute),
                classify=classify_probe_failure,
            )
        except FtpCommandError as e:
            if e.code == NOT_FOUND_CODE:
                logger.debug("Remote directory %s does not exist", remote.absolute)
                return False
            raise
        return True

    def _create_root_directory(self, local: LocalEntry, remote: RemotePath) -> None:
        existing = self._lookup_root(remote)
        if existing is not None and not existing.is_directory:
            self._delete_file(remote)
        self._push_directory(local, remote)

    def _lookup_root(self, remote: RemotePath) -> Optional[RemoteEntry]:
        """Find what occupies the target path when it is not a directory.

        Uses MLST when the server supports it. Otherwise the parent directory
        is listed; a missing parent means there is nothing to replace.
        """
        if self.session.has_capability("MLST"):
            return self._call(None, lambda s: s.get_object_info(remote.absolute))

        try:
            listing = self._call(
                remote.parent,
                lambda s: s.list_directory(),
                classify=classify_probe_failure,
            )
        except FtpCommandError as e:
            if e.code == NOT_FOUND_CODE:
                return None
            raise
        return next((entry for entry in listing if entry.name == remote.name), None)

    def _upload_root_file(self, local: LocalEntry, remote: RemotePath) -> None:
        rule = self.excludes.match(local.relative_path)
        if rule is not None:
            self._report(1, SyncAction.SKIP, local.name, f"excluded ({rule.pattern})")
            return
        self._report(1, SyncAction.ADD, remote.name)
        future = self._dispatch_upload(local, remote.parent, remote.name)
        self._wait_for_uploads([future])

    def _synchronize_single_file(self, local: LocalEntry, remote: RemotePath) -> None:
        listing = self._list(remote)
        remote_entry = next(
            (e for e in listing if e.name.lower() == local.name.lower()), None
        )
        rule = self.excludes.match(local.relative_path)
        if rule is not None:
            self._report(1, SyncAction.SKIP, local.name, f"excluded ({rule.pattern})")
            return

        futures: list[Future] = []
        self._reconcile_child(local, remote_entry, remote, futures, depth=1)
        self._wait_for_uploads(futures)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _synchronize_directory(self, local: LocalEntry, remote: RemotePath) -> None:
        """Reconcile one existing remote directory with a local directory.

        The remote directory is listed exactly once; every decision for this
        level is made against that snapshot.
        """
        remote_by_name = {e.name.lower(): e for e in self._list(remote)}
        found: set[str] = set()
        futures: list[Future] = []

        for child in local.iter_children():
            key = child.name.lower()
            remote_entry = remote_by_name.get(key)
            if remote_entry is not None:
                found.add(key)

            rule = self.excludes.match(child.relative_path)
            if rule is not None:
                self._report(
                    child.depth, SyncAction.SKIP, child.name, f"excluded ({rule.pattern})"
                )
                continue

            self._reconcile_child(child, remote_entry, remote, futures, child.depth)

        self._wait_for_uploads(futures)

        for key, entry in remote_by_name.items():
            if key in found:
                continue
            entry_path = remote.child(entry.name)
            rule = self.excludes.match(entry_path.relative)
            if rule is not None:
                self._report(
                    entry_path.depth,
                    SyncAction.SKIP,
                    entry.name,
                    f"excluded ({rule.pattern})",
                )
                continue
            self._delete_any(entry, entry_path)

    def _reconcile_child(
        self,
        local: LocalEntry,
        remote_entry: Optional[RemoteEntry],
        remote_directory: RemotePath,
        futures: list[Future],
        depth: int,
    ) -> None:
        """Apply the decision for one local item inside a remote directory."""
        decision = decide(local, remote_entry)

        if decision.action is SyncAction.SKIP:
            self._report(depth, SyncAction.SKIP, local.name)
            return

        if decision.action is SyncAction.SYNCHRONIZE and remote_entry is not None:
            self._report(depth, SyncAction.SYNCHRONIZE, local.name)
            self._synchronize_directory(
                local, remote_directory.child(remote_entry.name)
            )
            return

        if decision.delete_remote and remote_entry is not None:
            deleted = self._delete_any(
                remote_entry, remote_directory.child(remote_entry.name)
            )
            if not deleted:
                self._report(
                    depth, SyncAction.SKIP, local.name, "remote directory retained"
                )
                return

        self._report(depth, decision.action, local.name, decision.reason)
        if local.is_directory:
            self._push_directory(local, remote_directory.child(local.name))
        else:
            futures.append(self._dispatch_upload(local, remote_directory.absolute))

    def _push_directory(self, local: LocalEntry, remote: RemotePath) -> None:
        """Create a remote directory and upload the full local contents."""
        self._call(remote.parent, lambda s: s.create_directory(remote.name))

        futures: list[Future] = []
        for child in local.iter_children():
            rule = self.excludes.match(child.relative_path)
            if rule is not None:
                self._report(
                    child.depth, SyncAction.SKIP, child.name, f"excluded ({rule.pattern})"
                )
                continue

            self._report(child.depth, SyncAction.ADD, child.name)
            if child.is_directory:
                self._push_directory(child, remote.child(child.name))
            else:
                futures.append(self._dispatch_upload(child, remote.absolute))

        self._wait_for_uploads(futures)

    # ------------------------------------------------------------------
    # Remote deletion
    # ------------------------------------------------------------------

    def _delete_any(self, entry: RemoteEntry, path: RemotePath) -> bool:
        """Delete a remote file or directory.

        Returns:
            True if the item was removed, False if a directory was kept
            because excluded items remain inside it
        """
        if entry.is_directory:
            return self._delete_directory(path)
        self._delete_file(path)
        return True

    def _delete_file(self, path: RemotePath) -> None:
        self._report(path.depth, SyncAction.DELETE, path.name)
        self._call(path.parent, lambda s: s.delete_file(path.name))
        self._stats["deletes"] += 1

    def _delete_directory(self, path: RemotePath) -> bool:
        self._report(path.depth, SyncAction.DELETE, path.name)

        items_remain = False
        for child in self._list(path):
            child_path = path.child(child.name)
            rule = self.excludes.match(child_path.relative)
            if rule is not None:
                self._report(
                    child_path.depth,
                    SyncAction.SKIP,
                    child.name,
                    f"excluded ({rule.pattern})",
                )
                items_remain = True
                continue
            if not self._delete_any(child, child_path):
                items_remain = True

        if items_remain:
            self._report(
                path.depth, SyncAction.SKIP, path.name, "not deleted (items remain)"
            )
            return False

        self._call(path.parent, lambda s: s.remove_directory(path.name))
        self._stats["deletes"] += 1
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _call(
        self,
        working_directory: Optional[str],
        operation: Callable[[Any], T],
        **kwargs: Any,
    ) -> T:
        """Run a control-plane operation on the main session with retries."""
        return self.retry.call(self.session, working_directory, operation, **kwargs)

    def _list(self, remote: RemotePath) -> list[RemoteEntry]:
        return self._call(remote.absolute, lambda s: s.list_directory())

    def _dispatch_upload(
        self,
        local: LocalEntry,
        remote_directory: str,
        remote_name: Optional[str] = None,
    ) -> Future:
        if self._executor is None:
            raise RuntimeError("Uploads can only be dispatched during synchronize()")
        return self._executor.submit(
            self.operations.upload_file, local, remote_directory, remote_name
        )

    def _wait_for_uploads(self, futures: list[Future]) -> None:
        """Wait for every upload, then raise the first failure (if any)."""
        if not futures:
            return
        wait(futures)
        for future in futures:
            future.result()

    def _report(
        self,
        depth: int,
        action: SyncAction,
        name: str,
        reason: Optional[str] = None,
    ) -> None:
        if action is SyncAction.ADD:
            self._stats["adds"] += 1
        elif action is SyncAction.REPLACE:
            self._stats["replaces"] += 1
        elif action is SyncAction.SKIP:
            self._stats["skips"] += 1
        self.output.item(depth, action, name, reason)

    def _create_empty_stats(self) -> dict:
        """Create an empty statistics dictionary.

        Returns:
            Dictionary with zero counts for all stat categories
        """
        return {
            "adds": 0,
            "replaces": 0,
            "deletes": 0,
            "skips": 0,
        }


def synchronize(
    session_factory: Callable[[], Any],
    local: Union[Path, str],
    remote: str,
    excludes: Union[ExclusionMatcher, Iterable[str], None] = None,
    parallel: int = DEFAULT_PARALLEL,
    output: Optional[OutputFormatter] = None,
    retry: Optional[RetryPolicy] = None,
    main_session: Optional[Any] = None,
) -> dict:
    """Run one synchronization with a main session and a fresh connection pool.

    The main session and every pooled session are closed afterwards, also
    when the run fails.

    Args:
        session_factory: Zero-argument callable building a connected session
        local: Local file or directory
        remote: Absolute remote target path
        excludes: Exclusion matcher or glob patterns
        parallel: Number of background connections for uploads
        output: Output formatter receiving item events
        retry: Retry policy (default: 30 attempts)
        main_session: Already connected main session (built with
            ``session_factory`` if omitted)

    Returns:
        Dictionary with sync statistics
    """
    if parallel < 1:
        raise ValueError(f"parallel must be at least 1, got {parallel}")

    if not isinstance(excludes, ExclusionMatcher):
        excludes = compile_excludes(excludes)
    if main_session is None:
        main_session = session_factory()
    try:
        pool: ConnectionPool[Any] = ConnectionPool(session_factory, parallel)
        engine = SyncEngine(main_session, pool, excludes, output, retry)
        try:
            stats = engine.synchronize(local, remote)
        except BaseException:
            try:
                pool.dispose()
            except PoolError as e:
                logger.debug("Pool disposal failed after an aborted run: %s", e)
            raise
        pool.dispose()
        return stats
    finally:
        main_session.close()
