"""Path model shared by local enumeration, remote listings and exclusion matching."""

import os
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from ..utils import join_remote, split_remote


class LocalKind(str, Enum):
    """Kind tag of a local entry."""

    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class LocalEntry:
    """A local file or directory.

    A directory read is always a fresh snapshot: entries are produced by
    enumerating one directory's immediate children and never cached.
    """

    kind: LocalKind
    """Whether this is a file or a directory"""

    path: Path
    """Absolute path on the local filesystem"""

    relative_path: str
    """Path relative to the source root, using forward slashes"""

    depth: int
    """Nesting depth (source root = 0)"""

    mtime: Optional[float] = None
    """Last modification time (Unix timestamp), files only"""

    @property
    def name(self) -> str:
        """Name of the file or directory."""
        return self.path.name

    @property
    def is_directory(self) -> bool:
        return self.kind is LocalKind.DIRECTORY

    @classmethod
    def from_path(
        cls, path: Path, relative_path: str = "", depth: int = 0
    ) -> "LocalEntry":
        """Create a LocalEntry for a path.

        Args:
            path: Path to a file or directory
            relative_path: Path relative to the source root
            depth: Nesting depth

        Returns:
            LocalEntry instance
        """
        if path.is_dir():
            return cls(LocalKind.DIRECTORY, path, relative_path, depth)
        return cls(
            LocalKind.FILE,
            path,
            relative_path,
            depth,
            mtime=path.stat().st_mtime,
        )

    def iter_children(self) -> Iterator["LocalEntry"]:
        """Enumerate immediate children of a directory, sorted by name.

        Yields:
            LocalEntry for each child
        """
        if not self.is_directory:
            raise NotADirectoryError(str(self.path))

        with os.scandir(self.path) as scan:
            items = sorted(scan, key=lambda item: item.name)

        for item in items:
            relative_path = (
                f"{self.relative_path}/{item.name}" if self.relative_path else item.name
            )
            child_path = self.path / item.name
            if item.is_dir():
                yield LocalEntry(
                    LocalKind.DIRECTORY, child_path, relative_path, self.depth + 1
                )
            else:
                yield LocalEntry(
                    LocalKind.FILE,
                    child_path,
                    relative_path,
                    self.depth + 1,
                    mtime=item.stat().st_mtime,
                )


@dataclass(frozen=True)
class RemotePath:
    """Identity of an item on the remote side.

    Child paths are derived from their parent, so absolute path, relative
    path and depth always stay consistent.
    """

    name: str
    """Name of the item"""

    absolute: str
    """Absolute path on the server"""

    relative: str
    """Path relative to the synchronization root (used for exclusion matching)"""

    depth: int
    """Nesting depth (synchronization root = 0)"""

    @classmethod
    def root(cls, absolute: str) -> "RemotePath":
        """Create the path of a synchronization root."""
        absolute = "/" + absolute.strip("/") if absolute.strip("/") else "/"
        _, name = split_remote(absolute)
        return cls(name=name, absolute=absolute, relative="", depth=0)

    @property
    def parent(self) -> str:
        """Absolute path of the containing directory."""
        return split_remote(self.absolute)[0]

    def child(self, name: str) -> "RemotePath":
        """Derive the path of a child item."""
        relative = f"{self.relative}/{name}" if self.relative else name
        return RemotePath(
            name=name,
            absolute=join_remote(self.absolute, name),
            relative=relative,
            depth=self.depth + 1,
        )


class RemoteKind(str, Enum):
    """Type of an entry in a remote listing."""

    FILE = "file"
    DIRECTORY = "directory"
    LINK = "link"


@dataclass(frozen=True)
class RemoteEntry:
    """One entry of a remote directory listing."""

    name: str
    kind: RemoteKind
    modified: Optional[datetime]
    """Modification time (aware UTC) if the server reported one"""

    full_path: str

    @property
    def is_directory(self) -> bool:
        return self.kind is RemoteKind.DIRECTORY
