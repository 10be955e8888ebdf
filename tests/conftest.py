"""Shared fixtures: an in-memory FTP server and sessions talking to it."""

import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pytest

from pyftpush.exceptions import TIMEOUT_ERRORS, FtpCommandError, FtpConnectionLostError
from pyftpush.output import OutputFormatter
from pyftpush.sync.paths import RemoteEntry, RemoteKind
from pyftpush.sync.retry import RetryPolicy
from pyftpush.utils import join_remote, split_remote

# Invalidates the session the same way FtpSession does
_DISCONNECTING = (FtpConnectionLostError, *TIMEOUT_ERRORS)


@dataclass
class FakeFile:
    data: bytes = b""
    modified: Optional[datetime] = None


@dataclass
class Failure:
    operation: str
    error: BaseException
    path: Optional[str] = None
    times: int = 1


@dataclass
class FakeFtpServer:
    """Thread-safe in-memory FTP server.

    Directories are stored as a set of absolute paths, files and links as
    dicts keyed by absolute path. Every mutating operation is appended to
    ``log`` as ``(operation, path)``.
    """

    features: set = field(default_factory=lambda: {"MLST", "MFMT"})
    directories: set = field(default_factory=lambda: {"/"})
    files: dict = field(default_factory=dict)
    links: dict = field(default_factory=dict)
    log: list = field(default_factory=list)
    failures: list = field(default_factory=list)
    connects: int = 0
    active_uploads: int = 0
    max_active_uploads: int = 0
    upload_delay: float = 0.0

    def __post_init__(self) -> None:
        self.lock = threading.RLock()

    # -- setup helpers -------------------------------------------------

    def add_dir(self, path: str) -> None:
        with self.lock:
            parent, name = split_remote(path)
            if parent != path and parent not in self.directories:
                self.add_dir(parent)
            self.directories.add(path)

    def add_file(
        self, path: str, data: bytes = b"", modified: Optional[datetime] = None
    ) -> None:
        with self.lock:
            self.add_dir(split_remote(path)[0])
            self.files[path] = FakeFile(data, modified)

    def add_link(self, path: str, target: str = "/elsewhere") -> None:
        with self.lock:
            self.add_dir(split_remote(path)[0])
            self.links[path] = target

    def fail(
        self,
        operation: str,
        error: BaseException,
        path: Optional[str] = None,
        times: int = 1,
    ) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        with self.lock:
            self.failures.append(Failure(operation, error, path, times))

    def operations(self, name: str) -> list:
        with self.lock:
            return [path for operation, path in self.log if operation == name]

    def exists(self, path: str) -> bool:
        with self.lock:
            return path in self.directories or path in self.files or path in self.links

    # -- internals -----------------------------------------------------

    def check(self, operation: str, path: Optional[str]) -> None:
        with self.lock:
            for failure in self.failures:
                if failure.operation != operation or failure.times <= 0:
                    continue
                if failure.path is not None and failure.path != path:
                    continue
                failure.times -= 1
                raise failure.error

    def children(self, directory: str) -> list:
        with self.lock:
            entries = []
            for path in sorted(self.directories):
                if path != "/" and split_remote(path)[0] == directory:
                    entries.append(
                        RemoteEntry(
                            split_remote(path)[1], RemoteKind.DIRECTORY, None, path
                        )
                    )
            for path, item in sorted(self.files.items()):
                if split_remote(path)[0] == directory:
                    entries.append(
                        RemoteEntry(
                            split_remote(path)[1], RemoteKind.FILE, item.modified, path
                        )
                    )
            for path in sorted(self.links):
                if split_remote(path)[0] == directory:
                    entries.append(
                        RemoteEntry(split_remote(path)[1], RemoteKind.LINK, None, path)
                    )
            return entries


class FakeWriter:
    """Binary sink committing its content to the server on close."""

    def __init__(self, session: "FakeFtpSession", path: str):
        self.session = session
        self.path = path
        self.chunks: list = []
        server = session.server
        with server.lock:
            server.active_uploads += 1
            server.max_active_uploads = max(
                server.max_active_uploads, server.active_uploads
            )

    def write(self, data: bytes) -> int:
        self.chunks.append(bytes(data))
        return len(data)

    def _finish(self) -> None:
        with self.session.server.lock:
            self.session.server.active_uploads -= 1

    def close(self) -> None:
        server = self.session.server
        if server.upload_delay:
            time.sleep(server.upload_delay)
        self._finish()
        with server.lock:
            server.check("close_write", self.path)
            previous = server.files.get(self.path)
            server.files[self.path] = FakeFile(
                b"".join(self.chunks), previous.modified if previous else None
            )
            server.log.append(("upload", self.path))

    def __enter__(self) -> "FakeWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self._finish()
            self.session.connected = False
            self.session.working_directory = None


class FakeFtpSession:
    """Session double implementing the operations the sync engine needs."""

    def __init__(self, server: FakeFtpServer, connect: bool = True):
        self.server = server
        self.connected = False
        self.closed = False
        self.working_directory: Optional[str] = None
        if connect:
            self.connect()

    def _run(self, operation: str, path: Optional[str] = None) -> None:
        if not self.connected:
            raise FtpConnectionLostError("Not connected")
        try:
            self.server.check(operation, path)
        except _DISCONNECTING:
            self.connected = False
            self.working_directory = None
            raise
        except FtpCommandError as e:
            if e.code == "421":
                self.connected = False
                self.working_directory = None
            raise

    def _resolve(self, name: str) -> str:
        if name.startswith("/"):
            return name
        return join_remote(self.working_directory or "/", name)

    def connect(self) -> None:
        self.connected = True
        self.working_directory = None
        with self.server.lock:
            self.server.connects += 1
        self._run("connect")

    def is_connected(self) -> bool:
        return self.connected

    def close(self) -> None:
        self.closed = True
        self.connected = False
        self.working_directory = None
        self.server.check("close", None)

    def has_capability(self, flag: str) -> bool:
        return flag.upper() in self.server.features

    def change_working_directory(self, path: str) -> None:
        self._run("cwd", path)
        if path not in self.server.directories:
            raise FtpCommandError("550", f"{path}: No such file or directory")
        self.working_directory = path

    def list_directory(self, path: Optional[str] = None) -> list:
        directory = path or self.working_directory or "/"
        self._run("list", directory)
        with self.server.lock:
            self.server.log.append(("list", directory))
            return self.server.children(directory)

    def create_directory(self, name: str) -> None:
        path = self._resolve(name)
        self._run("mkdir", path)
        with self.server.lock:
            if self.server.exists(path):
                raise FtpCommandError("550", f"{name}: File exists")
            self.server.directories.add(path)
            self.server.log.append(("mkdir", path))

    def remove_directory(self, name: str) -> None:
        path = self._resolve(name)
        self._run("rmdir", path)
        with self.server.lock:
            if path not in self.server.directories:
                raise FtpCommandError("550", f"{name}: No such directory")
            if self.server.children(path):
                raise FtpCommandError("550", f"{name}: Directory not empty")
            self.server.directories.discard(path)
            self.server.log.append(("rmdir", path))

    def delete_file(self, name: str) -> None:
        path = self._resolve(name)
        self._run("delete", path)
        with self.server.lock:
            if path in self.server.files:
                del self.server.files[path]
            elif path in self.server.links:
                del self.server.links[path]
            else:
                raise FtpCommandError("550", f"{name}: No such file")
            self.server.log.append(("delete", path))

    def get_object_info(self, path: str) -> Optional[RemoteEntry]:
        self._run("mlst", path)
        with self.server.lock:
            name = split_remote(path)[1]
            if path in self.server.directories:
                return RemoteEntry(name, RemoteKind.DIRECTORY, None, path)
            if path in self.server.files:
                item = self.server.files[path]
                return RemoteEntry(name, RemoteKind.FILE, item.modified, path)
            if path in self.server.links:
                return RemoteEntry(name, RemoteKind.LINK, None, path)
            return None

    def open_write(self, name: str) -> FakeWriter:
        path = self._resolve(name)
        self._run("stor", path)
        return FakeWriter(self, path)

    def set_modified_time(self, name: str, when: datetime) -> None:
        path = self._resolve(name)
        self._run("mfmt", path)
        with self.server.lock:
            self.server.files[path].modified = when
            self.server.log.append(("mfmt", path))


def _set_mtime(path: Path, when: datetime) -> None:
    timestamp = when.timestamp()
    os.utime(path, (timestamp, timestamp))


@pytest.fixture
def server():
    """Create an empty in-memory FTP server."""
    return FakeFtpServer()


@pytest.fixture
def session_factory(server):
    """Factory building connected sessions for the fake server."""
    sessions = []

    def factory():
        session = FakeFtpSession(server)
        sessions.append(session)
        return session

    factory.sessions = sessions
    return factory


@pytest.fixture
def new_session(server):
    """Build an untracked connected session, e.g. for use as a main session."""
    return lambda: FakeFtpSession(server)


@pytest.fixture
def no_sleep_retry():
    """Retry policy that never sleeps, recording requested delays."""
    delays = []
    policy = RetryPolicy(sleep=delays.append)
    policy.delays = delays
    return policy


@pytest.fixture
def quiet_output():
    """Output formatter that prints nothing."""
    return OutputFormatter(quiet=True)


@pytest.fixture
def set_mtime():
    """Function setting a local file's modification time."""
    return _set_mtime


@pytest.fixture
def fixed_time():
    """A whole-minute UTC timestamp usable as a local file mtime."""
    return datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)
