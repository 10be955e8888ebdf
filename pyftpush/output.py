"""Console output for pyftpush."""

import logging
from typing import Optional

from rich.console import Console
from rich.markup import escape

from .sync.comparator import SyncAction

logger = logging.getLogger(__name__)

# prefix and rich style per reported action
ACTION_STYLES: dict[SyncAction, tuple[str, str]] = {
    SyncAction.ADD: ("+ ", "green"),
    SyncAction.REPLACE: ("* ", "yellow"),
    SyncAction.DELETE: ("- ", "red"),
    SyncAction.SKIP: ("", "bright_black"),
    SyncAction.SYNCHRONIZE: ("", "default"),
}


class OutputFormatter:
    """Formats progress and status messages for the console.

    Also acts as the reporter for the sync engine: ``item()`` receives one
    event per reconciled item.
    """

    def __init__(
        self,
        quiet: bool = False,
        no_color: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        """Initialize output formatter.

        Args:
            quiet: Suppress item lines and informational messages
            no_color: Disable colored output
            console: Console for regular output
            err_console: Console for errors and warnings
        """
        self.quiet = quiet
        self.console = console or Console(no_color=no_color, highlight=False)
        self.err_console = err_console or Console(
            stderr=True, no_color=no_color, highlight=False
        )

    def item(
        self,
        depth: int,
        action: SyncAction,
        name: str,
        reason: Optional[str] = None,
    ) -> None:
        """Report one reconciled item.

        Args:
            depth: Nesting depth (indentation level)
            action: What happened to the item
            name: Item name
            reason: Optional explanation shown after the name
        """
        logger.debug(
            "%s %s%s", action.value, name, f" ({reason})" if reason else ""
        )
        if self.quiet:
            return

        prefix, style = ACTION_STYLES[action]
        line = f"{'  ' * depth}{prefix}{name}"
        if reason:
            line = f"{line}: {reason}"
        self.console.print(escape(line), style=style)

    def summary(self, stats: dict) -> None:
        """Display a sync summary.

        Args:
            stats: Statistics dictionary returned by the sync engine
        """
        self.print("")
        self.success("Sync complete!")

        total_actions = stats["adds"] + stats["replaces"] + stats["deletes"]
        if total_actions > 0:
            self.info(f"Total actions: {total_actions}")
            if stats["adds"] > 0:
                self.info(f"  Added: {stats['adds']}")
            if stats["replaces"] > 0:
                self.info(f"  Replaced: {stats['replaces']}")
            if stats["deletes"] > 0:
                self.info(f"  Deleted: {stats['deletes']}")
        else:
            self.info("No changes needed - everything is in sync!")

    def print(self, message: str = "") -> None:
        if not self.quiet:
            self.console.print(message)

    def info(self, message: str) -> None:
        if not self.quiet:
            self.console.print(escape(message))

    def success(self, message: str) -> None:
        if not self.quiet:
            self.console.print(escape(message), style="green")

    def warning(self, message: str) -> None:
        self.err_console.print(escape(message), style="yellow")

    def error(self, message: str) -> None:
        self.err_console.print(escape(message), style="red")
