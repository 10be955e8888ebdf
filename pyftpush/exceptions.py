"""Exception hierarchy for pyftpush."""

import re
import socket
from typing import Optional

# "550 No such file", or the first line of a multi-line reply "421-Closing"
_REPLY_RE = re.compile(r"(\d{3})(?:[ -]|$)(.*)", re.DOTALL)

# socket.timeout only became an alias of TimeoutError in Python 3.10
TIMEOUT_ERRORS = (TimeoutError, socket.timeout)


class FtpushError(Exception):
    """Base exception for all pyftpush errors."""


class FtpushConfigError(FtpushError):
    """Raised when the run configuration is invalid or incomplete."""


class FtpCommandError(FtpushError):
    """Raised when the FTP server answers a command with an error status.

    Attributes:
        code: Three-digit FTP status code (e.g. "550")
        message: Server message without the status code
    """

    def __init__(self, code: str, message: str = ""):
        self.code = code
        self.message = message
        super().__init__(f"{code} {message}".strip())

    @classmethod
    def from_reply(cls, reply: str) -> "FtpCommandError":
        """Build an error from a raw server reply like "550 No such file".

        Multi-line replies ("421-Too many users" up to "421 Closing") take
        the code of their first line. Replies without a status code get code "000".
        """
        reply = reply.strip()
        match = _REPLY_RE.match(reply)
        if match is None:
            return cls("000", reply)
        return cls(match.group(1), match.group(2).strip())


class FtpConnectionLostError(FtpushError):
    """Raised when the control connection was closed by the server or network."""


class FtpCapabilityError(FtpushError):
    """Raised when an operation needs a capability the server does not advertise."""


class ExclusionPatternError(FtpushError, ValueError):
    """Raised when an exclusion pattern cannot be compiled."""


class PoolError(FtpushError):
    """Raised when the connection pool's lease invariants are violated.

    These are programming errors and are never retried.
    """


class PoolDisposalError(PoolError):
    """Raised when the pool cannot be disposed cleanly.

    Attributes:
        errors: Failures collected while closing the pooled sessions
    """

    def __init__(self, message: str, errors: Optional[list[Exception]] = None):
        self.errors = list(errors or [])
        if self.errors:
            details = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
            message = f"{message} ({details})"
        super().__init__(message)


class FtpushUploadError(FtpushError):
    """Raised when uploading a single file fails.

    Attributes:
        relative_path: Path of the local file relative to the source root
    """

    def __init__(self, relative_path: str, cause: Exception):
        self.relative_path = relative_path
        super().__init__(f"Failed to upload '{relative_path}': {cause}")
