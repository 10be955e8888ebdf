"""CLI interface for pyftpush."""

import logging
from pathlib import Path
from typing import Any

import click

from .config import SyncSettings, read_password
from .exceptions import FtpushError
from .output import OutputFormatter
from .sync.engine import synchronize
from .sync.excludes import compile_excludes
from .utils import DEFAULT_PARALLEL, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)


def format_error(error: BaseException) -> str:
    """Format an error together with its chain of causes.

    Args:
        error: Exception to format

    Returns:
        One line per exception, causes indented below the error
    """
    lines = [str(error) or type(error).__name__]
    seen = {id(error)}
    cause = error.__cause__
    while cause is not None and id(cause) not in seen:
        seen.add(id(cause))
        text = str(cause)
        # Upload errors already embed their cause's message
        if text and text not in lines[-1]:
            lines.append(f"  caused by {type(cause).__name__}: {text}")
        cause = cause.__cause__
    return "\n".join(lines)


@click.command()
@click.option("--target", "-t", required=True, help="Target URL (ftp:// or ftps://)")
@click.option("--username", "-u", required=True, help="FTP user name")
@click.option(
    "--passvar",
    "-p",
    required=True,
    help="Name of the environment variable holding the FTP password",
)
@click.option(
    "--source",
    "-s",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Local file or directory to push",
)
@click.option("--active", is_flag=True, help="Use active mode data connections")
@click.option(
    "--exclude",
    "-x",
    "excludes",
    multiple=True,
    help="Glob pattern of paths to leave alone (can be given multiple times)",
)
@click.option(
    "--parallel",
    type=click.IntRange(min=1),
    default=DEFAULT_PARALLEL,
    show_default=True,
    help="Number of parallel upload connections",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=DEFAULT_TIMEOUT,
    show_default=True,
    help="Connection timeout in seconds",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output, including the FTP exchange",
)
@click.version_option(package_name="pyftpush")
@click.pass_context
def main(
    ctx: Any,
    target: str,
    username: str,
    passvar: str,
    source: Path,
    active: bool,
    excludes: tuple[str, ...],
    parallel: int,
    timeout: float,
    quiet: bool,
    verbose: bool,
) -> None:
    """pyftpush - Mirror a local directory to an FTP server.

    Remote items that do not exist locally are deleted, unless they match
    an exclusion pattern.

    Examples:

        pyftpush -t ftp://example.com/www -u deploy -p FTP_PASSWORD -s ./site

        pyftpush -t ftps://example.com/ -u deploy -p FTP_PASSWORD -s ./site \\
            -x "**/.git" -x "/uploads"
    """
    # Configure logging based on verbose flag
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pyftpush").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    out = OutputFormatter(quiet=quiet)

    try:
        settings = SyncSettings(
            target_url=target,
            username=username,
            password=read_password(passvar),
            source=source,
            excludes=list(excludes),
            parallel=parallel,
            active=active,
            timeout=timeout,
            verbose=verbose,
        )
        matcher = compile_excludes(settings.excludes)
        factory = settings.session_factory()

        main_session = factory()
        out.info(f"Connected to {settings.target.host}.")

        stats = synchronize(
            factory,
            settings.source,
            settings.target.path,
            excludes=matcher,
            parallel=settings.parallel,
            output=out,
            main_session=main_session,
        )
    except KeyboardInterrupt:
        out.warning("\nSync cancelled by user")
        ctx.exit(130)  # Standard exit code for SIGINT
    except (FtpushError, OSError) as e:
        if verbose:
            logger.debug("Sync failed", exc_info=True)
        out.error(format_error(e))
        ctx.exit(1)

    out.summary(stats)


if __name__ == "__main__":
    main()
