"""Run configuration for pyftpush."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, NamedTuple, Optional
from urllib.parse import unquote, urlsplit

from .exceptions import FtpushConfigError
from .ftp_client import FtpSession
from .utils import DEFAULT_PARALLEL, DEFAULT_TIMEOUT

SUPPORTED_SCHEMES = ("ftp", "ftps")
DEFAULT_FTP_PORT = 21


class FtpTarget(NamedTuple):
    """Parsed target URL."""

    scheme: str
    host: str
    port: int
    path: str

    @property
    def use_tls(self) -> bool:
        return self.scheme == "ftps"


def parse_target(url: str) -> FtpTarget:
    """Parse an ``ftp://`` or ``ftps://`` target URL.

    Args:
        url: Target URL, e.g. ``ftp://example.com/public_html``

    Returns:
        FtpTarget with the path defaulting to "/"

    Raises:
        FtpushConfigError: If the scheme is unsupported or the host is missing
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme not in SUPPORTED_SCHEMES:
        raise FtpushConfigError(
            f"Unsupported URL scheme '{parts.scheme}': "
            f"expected one of {', '.join(SUPPORTED_SCHEMES)}"
        )
    if not parts.hostname:
        raise FtpushConfigError(f"Target URL has no host: {url}")

    try:
        port = parts.port or DEFAULT_FTP_PORT
    except ValueError as e:
        raise FtpushConfigError(f"Invalid port in target URL: {url}") from e

    path = unquote(parts.path) or "/"
    return FtpTarget(scheme, parts.hostname, port, path)


def read_password(
    variable: str, environ: Optional[Mapping[str, str]] = None
) -> str:
    """Read the FTP password from an environment variable of this process.

    Args:
        variable: Name of the environment variable
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        The password

    Raises:
        FtpushConfigError: If the variable is not set or empty
    """
    if environ is None:
        environ = os.environ
    password = environ.get(variable)
    if not password:
        raise FtpushConfigError(
            f"Password environment variable '{variable}' is not set"
        )
    return password


@dataclass
class SyncSettings:
    """Settings for one synchronization run."""

    target_url: str
    username: str
    password: str
    source: Path
    excludes: list[str] = field(default_factory=list)
    parallel: int = DEFAULT_PARALLEL
    active: bool = False
    timeout: float = DEFAULT_TIMEOUT
    verbose: bool = False

    def __post_init__(self) -> None:
        self.source = Path(self.source)
        if self.parallel < 1:
            raise FtpushConfigError(
                f"Parallel connection count must be at least 1, got {self.parallel}"
            )
        if self.timeout <= 0:
            raise FtpushConfigError(
                f"Timeout must be positive, got {self.timeout}"
            )
        # Fails early on a bad scheme
        self.target = parse_target(self.target_url)

    def create_session(self) -> FtpSession:
        """Build a session for the target (not connected)."""
        return FtpSession(
            host=self.target.host,
            username=self.username,
            password=self.password,
            port=self.target.port,
            use_tls=self.target.use_tls,
            active=self.active,
            timeout=self.timeout,
            debug_level=1 if self.verbose else 0,
        )

    def session_factory(self) -> Callable[[], FtpSession]:
        """Return a zero-argument callable building connected sessions."""

        def factory() -> FtpSession:
            session = self.create_session()
            session.connect()
            return session

        return factory
