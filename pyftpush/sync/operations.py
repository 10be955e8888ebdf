"""Upload operations executed on leased background sessions."""

import logging
import shutil
import time
from typing import Any, Optional

from ..exceptions import FtpushUploadError, PoolError
from ..utils import DEFAULT_CHUNK_SIZE, utc_from_timestamp
from .paths import LocalEntry
from .pool import ConnectionPool
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class SyncOperations:
    """Data-plane operations: file uploads and modified-time stamping.

    Each upload leases its own session from the pool, so the number of
    simultaneous transfers never exceeds the pool capacity.
    """

    def __init__(
        self,
        pool: ConnectionPool[Any],
        retry: RetryPolicy,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """Initialize sync operations.

        Args:
            pool: Pool of background sessions
            retry: Retry policy wrapping every protocol call
            chunk_size: Buffer size used when copying file contents
        """
        self.pool = pool
        self.retry = retry
        self.chunk_size = chunk_size

    def upload_file(
        self,
        local_file: LocalEntry,
        remote_directory: str,
        remote_name: Optional[str] = None,
    ) -> None:
        """Upload a local file and stamp its modification time.

        Args:
            local_file: Local file to upload
            remote_directory: Absolute remote directory the file belongs in
            remote_name: Remote file name (defaults to the local name)

        Raises:
            FtpushUploadError: If the upload fails, with the file's relative
                path and the original error as ``__cause__``
        """
        name = remote_name or local_file.name
        start = time.time()
        try:
            with self.pool.lease() as lease:
                session = lease.session
                with local_file.path.open("rb") as source:
                    stream = self.retry.call(
                        session, remote_directory, lambda s: s.open_write(name)
                    )
                    with stream:
                        shutil.copyfileobj(source, stream, self.chunk_size)

                if local_file.mtime is not None:
                    modified = utc_from_timestamp(local_file.mtime)
                    self.retry.call(
                        session,
                        remote_directory,
                        lambda s: s.set_modified_time(name, modified),
                    )
        except PoolError:
            raise
        except Exception as e:
            raise FtpushUploadError(local_file.relative_path or name, e) from e

        logger.debug(
            "Upload of %s took %.2fs", local_file.relative_path, time.time() - start
        )
