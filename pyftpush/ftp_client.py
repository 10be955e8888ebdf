"""FTP session used by the sync engine.

Wraps :mod:`ftplib` and exposes the small set of operations the engine
needs. Server errors are translated into :class:`FtpCommandError` carrying
the FTP status code so the retry policy can classify them.

Each session remembers the last directory it was told to enter in
``working_directory``. The value is reset to None whenever the connection
is (re)established or dropped, because the server position is then unknown.
"""

import ftplib
import logging
import re
import ssl
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from .exceptions import (
    TIMEOUT_ERRORS,
    FtpCapabilityError,
    FtpCommandError,
    FtpConnectionLostError,
)
from .sync.paths import RemoteEntry, RemoteKind
from .utils import (
    DEFAULT_TIMEOUT,
    format_ftp_timestamp,
    join_remote,
    parse_ftp_timestamp,
    split_remote,
)

logger = logging.getLogger(__name__)

_MONTHS = {
    name: index
    for index, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun",
         "jul", "aug", "sep", "oct", "nov", "dec"],
        start=1,
    )
}

# drwxr-xr-x   2 owner group     4096 Jan  5 14:30 name
_UNIX_LIST_RE = re.compile(
    r"^(?P<type>[-dlbcps])\S{9}\S*\s+\d+\s+\S+\s+\S+\s+\d+\s+"
    r"(?P<month>[A-Za-z]{3})\s+(?P<day>\d{1,2})\s+(?P<time>\d{1,2}:\d{2}|\d{4})\s"
    r"(?P<name>.+)$"
)


def parse_facts(text: str) -> dict[str, str]:
    """Parse MLSx facts ("type=file;modify=20240105143000;") into a dict."""
    facts: dict[str, str] = {}
    for fact in text.split(";"):
        key, sep, value = fact.partition("=")
        if sep:
            facts[key.strip().lower()] = value
    return facts


def entry_from_facts(
    name: str, facts: dict[str, str], full_path: str
) -> Optional[RemoteEntry]:
    """Build a RemoteEntry from MLSx facts.

    Returns:
        RemoteEntry, or None for the "." and ".." pseudo entries
    """
    fact_type = facts.get("type", "file").lower()
    if fact_type in ("cdir", "pdir") or name in (".", ".."):
        return None

    if fact_type == "dir":
        kind = RemoteKind.DIRECTORY
    elif fact_type.startswith("os.unix=sl") or fact_type.startswith("os.unix=symlink"):
        kind = RemoteKind.LINK
    else:
        kind = RemoteKind.FILE

    return RemoteEntry(
        name=name,
        kind=kind,
        modified=parse_ftp_timestamp(facts.get("modify")),
        full_path=full_path,
    )


def parse_list_line(
    line: str, directory: str, now: Optional[datetime] = None
) -> Optional[RemoteEntry]:
    """Parse one line of a Unix-style LIST response.

    Args:
        line: Raw listing line
        directory: Absolute path of the listed directory
        now: Current time, used to infer the year of recent entries

    Returns:
        RemoteEntry, or None if the line is not an entry (e.g. "total 12")
    """
    match = _UNIX_LIST_RE.match(line.rstrip("\r\n"))
    if not match:
        return None

    name = match.group("name")
    type_char = match.group("type")
    if type_char == "l":
        name = name.split(" -> ", 1)[0]
        kind = RemoteKind.LINK
    elif type_char == "d":
        kind = RemoteKind.DIRECTORY
    else:
        kind = RemoteKind.FILE

    if name in (".", ".."):
        return None

    return RemoteEntry(
        name=name,
        kind=kind,
        modified=_parse_list_date(match, now or datetime.now(timezone.utc)),
        full_path=join_remote(directory, name),
    )


def _parse_list_date(match: re.Match, now: datetime) -> Optional[datetime]:
    month = _MONTHS.get(match.group("month").lower())
    if month is None:
        return None
    day = int(match.group("day"))
    when = match.group("time")
    try:
        if ":" in when:
            hour, minute = (int(part) for part in when.split(":"))
            parsed = datetime(now.year, month, day, hour, minute, tzinfo=timezone.utc)
            # Recent entries omit the year; a date in the future is last year's.
            if parsed > now:
                parsed = parsed.replace(year=now.year - 1)
            return parsed
        return datetime(int(when), month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


class FtpWriteStream:
    """Binary sink for one STOR data connection.

    Closing the stream completes the transfer and waits for the server's
    final reply. If the transfer is aborted by an exception, the control
    connection is abandoned so the session reconnects before its next use.
    """

    def __init__(self, session: "FtpSession", conn: Any):
        self._session = session
        self._conn = conn
        self._file = conn.makefile("wb")
        self._closed = False

    def write(self, data: bytes) -> int:
        return self._file.write(data)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._file.close()
            if isinstance(self._conn, ssl.SSLSocket):
                self._conn.unwrap()
            self._conn.close()
        except Exception:
            self._conn.close()
            self._session._abandon()
            raise
        self._session._complete_transfer()

    def abort(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._file.close()
            self._conn.close()
        except OSError as e:
            logger.debug("Ignoring error while aborting transfer: %s", e)
        self._session._abandon()

    def __enter__(self) -> "FtpWriteStream":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()


class FtpSession:
    """One authenticated, stateful connection to an FTP server."""

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        port: int = 21,
        use_tls: bool = False,
        active: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        debug_level: int = 0,
    ):
        """Initialize an FTP session (does not connect).

        Args:
            host: Server host name
            username: Login user name
            password: Login password
            port: Server port (default: 21)
            use_tls: Use explicit FTPS (AUTH TLS) with a protected data channel
            active: Use active mode data connections instead of passive
            timeout: Socket timeout in seconds
            debug_level: ftplib debug level (1 prints the protocol exchange)
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.active = active
        self.timeout = timeout
        self.debug_level = debug_level

        self.working_directory: Optional[str] = None
        self._ftp: Optional[ftplib.FTP] = None
        self._features: frozenset[str] = frozenset()

    def __repr__(self) -> str:
        return f"FtpSession({self.username}@{self.host}:{self.port})"

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Connect, log in and read the server's capabilities.

        Any previous connection is closed first.
        """
        self._abandon()

        ftp: ftplib.FTP = ftplib.FTP_TLS() if self.use_tls else ftplib.FTP()
        ftp.set_debuglevel(self.debug_level)
        self._ftp = ftp
        logger.debug("Connecting to %s:%d", self.host, self.port)

        with self._translate_errors():
            ftp.connect(self.host, self.port, timeout=self.timeout)
            ftp.login(self.username, self.password)
            if isinstance(ftp, ftplib.FTP_TLS):
                ftp.prot_p()
            ftp.set_pasv(not self.active)
            self._features = self._read_features(ftp)

        logger.debug(
            "Connected to %s (features: %s)",
            self.host,
            ", ".join(sorted(self._features)) or "none",
        )

    def is_connected(self) -> bool:
        return self._ftp is not None and self._ftp.sock is not None

    def close(self) -> None:
        """Log out and close the connection."""
        ftp = self._ftp
        if ftp is None:
            return
        self._ftp = None
        self.working_directory = None
        logger.debug("Closing connection to %s", self.host)
        try:
            ftp.quit()
        except (ftplib.Error, OSError, EOFError) as e:
            logger.debug("QUIT failed (%s), closing connection", e)
            ftp.close()

    def __enter__(self) -> "FtpSession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _abandon(self) -> None:
        """Drop the connection without talking to the server."""
        ftp = self._ftp
        self._ftp = None
        self.working_directory = None
        if ftp is not None:
            try:
                ftp.close()
            except OSError as e:
                logger.debug("Ignoring error while closing connection: %s", e)

    def _require(self) -> ftplib.FTP:
        if self._ftp is None:
            raise FtpConnectionLostError(f"Not connected to {self.host}")
        return self._ftp

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        try:
            yield
        except ftplib.Error as e:
            error = FtpCommandError.from_reply(str(e))
            if error.code == "421":
                self._abandon()
            raise error from e
        except TIMEOUT_ERRORS:
            self._abandon()
            raise
        except (EOFError, ConnectionError) as e:
            self._abandon()
            raise FtpConnectionLostError(
                f"Connection to {self.host} was lost: {e or type(e).__name__}"
            ) from e

    @staticmethod
    def _read_features(ftp: ftplib.FTP) -> frozenset[str]:
        try:
            reply = ftp.sendcmd("FEAT")
        except ftplib.error_perm:
            return frozenset()
        features = set()
        for line in reply.splitlines()[1:]:
            if line.startswith(" ") and line.strip():
                features.add(line.split()[0].upper())
        return frozenset(features)

    def has_capability(self, flag: str) -> bool:
        """Check whether the server advertised a FEAT capability (e.g. "MLST")."""
        return flag.upper() in self._features

    # ------------------------------------------------------------------
    # Directory operations
    # ------------------------------------------------------------------

    def change_working_directory(self, path: str) -> None:
        ftp = self._require()
        with self._translate_errors():
            ftp.cwd(path)
        self.working_directory = path

    def list_directory(self, path: Optional[str] = None) -> list[RemoteEntry]:
        """List a directory (the working directory if path is None).

        Uses MLSD when the server supports it and falls back to LIST.

        Returns:
            Entries of the directory, without "." and ".."
        """
        ftp = self._require()
        directory = path or self.working_directory or ""
        entries: list[RemoteEntry] = []

        with self._translate_errors():
            if self.has_capability("MLST"):
                for name, facts in ftp.mlsd(path or ""):
                    entry = entry_from_facts(
                        name, facts, join_remote(directory, name)
                    )
                    if entry is not None:
                        entries.append(entry)
            else:
                lines: list[str] = []
                command = f"LIST {path}" if path else "LIST"
                ftp.retrlines(command, lines.append)
                for line in lines:
                    entry = parse_list_line(line, directory)
                    if entry is not None:
                        entries.append(entry)

        logger.debug("Listed %s: %d entries", directory or "<cwd>", len(entries))
        return entries

    def create_directory(self, name: str) -> None:
        ftp = self._require()
        with self._translate_errors():
            ftp.mkd(name)

    def remove_directory(self, name: str) -> None:
        ftp = self._require()
        with self._translate_errors():
            ftp.rmd(name)

    def get_object_info(self, path: str) -> Optional[RemoteEntry]:
        """Look up a single path with MLST.

        Returns:
            RemoteEntry, or None if the path does not exist

        Raises:
            FtpCapabilityError: If the server does not support MLST
        """
        if not self.has_capability("MLST"):
            raise FtpCapabilityError(f"{self.host} does not support MLST")

        ftp = self._require()
        try:
            with self._translate_errors():
                reply = ftp.sendcmd(f"MLST {path}")
        except FtpCommandError as e:
            if e.code == "550":
                return None
            raise

        for line in reply.splitlines()[1:]:
            if line.startswith(" "):
                facts_text, _, listed = line.strip().partition(" ")
                listed = listed or path
                _, name = split_remote(listed)
                return entry_from_facts(name, parse_facts(facts_text), listed)
        return None

    # ------------------------------------------------------------------
    # File operations
    # ------------------------------------------------------------------

    def delete_file(self, name: str) -> None:
        ftp = self._require()
        with self._translate_errors():
            ftp.delete(name)

    def open_write(self, name: str) -> FtpWriteStream:
        """Start a binary STOR transfer.

        Returns:
            FtpWriteStream; closing it completes the upload
        """
        ftp = self._require()
        with self._translate_errors():
            ftp.voidcmd("TYPE I")
            conn = ftp.transfercmd(f"STOR {name}")
        return FtpWriteStream(self, conn)

    def _complete_transfer(self) -> None:
        ftp = self._require()
        with self._translate_errors():
            ftp.voidresp()

    def set_modified_time(self, name: str, when: datetime) -> None:
        """Set the modification time of a remote file.

        Uses MFMT when advertised and the MDTM variant with a timestamp
        argument otherwise.
        """
        ftp = self._require()
        command = "MFMT" if self.has_capability("MFMT") else "MDTM"
        with self._translate_errors():
            ftp.voidcmd(f"{command} {format_ftp_timestamp(when)} {name}")
