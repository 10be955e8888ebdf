"""pyftpush - CLI tool for mirroring a local directory to an FTP server."""

from .exceptions import (
    ExclusionPatternError,
    FtpCapabilityError,
    FtpCommandError,
    FtpConnectionLostError,
    FtpushConfigError,
    FtpushError,
    FtpushUploadError,
    PoolDisposalError,
    PoolError,
)
from .ftp_client import FtpSession

__version__ = "0.1.0"

__all__ = [
    "FtpSession",
    "ExclusionPatternError",
    "FtpCapabilityError",
    "FtpCommandError",
    "FtpConnectionLostError",
    "FtpushConfigError",
    "FtpushError",
    "FtpushUploadError",
    "PoolDisposalError",
    "PoolError",
]
