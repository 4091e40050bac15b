#!/usr/bin/env python3
"""
PSModels - Shared Data Types

Value types exchanged between the PairSync services: endpoints, directory
entries, connection states, sync requests and sync runs, plus the exceptions
raised across the package.

 Author: Gino Bogo
License: MIT
Version: 1.0
"""

from __future__ import annotations

import threading
import time
import uuid

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Union


# ============================================================================
# CONSTANTS
# ============================================================================

DELETION_FLAGS = ("--delete", "--force-delete")
NO_VALUE = "—"


# ============================================================================
# EXCEPTIONS
# ============================================================================


class PairSyncError(Exception):
    """Base class for all PairSync errors."""


class SyncConfigurationError(PairSyncError):
    """Raised when the panes do not describe a runnable sync."""


class SyncBusyError(PairSyncError):
    """Raised when a sync is requested while another one is running."""


class ConnectionStateError(PairSyncError):
    """Raised on a connection transition that is not valid from the current state."""


class RemoteCommandError(PairSyncError):
    """Raised when a remote command exits non-zero or cannot be executed."""

    def __init__(self, message: str, exit_status: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_status = exit_status
        self.stderr = stderr


# ============================================================================
# ENDPOINTS
# ============================================================================


class EndpointKind(Enum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class Endpoint:
    """One side of a transfer: a local path or a (host, remote path) pair."""

    kind: EndpointKind
    path: str
    host: str = ""

    def __post_init__(self):
        if self.kind is EndpointKind.REMOTE and not self.host:
            raise ValueError("Remote endpoints require a host.")
        if self.kind is EndpointKind.LOCAL and self.host:
            raise ValueError("Local endpoints cannot carry a host.")

    @classmethod
    def local(cls, path: str) -> "Endpoint":
        return cls(EndpointKind.LOCAL, path)

    @classmethod
    def remote(cls, host: str, path: str) -> "Endpoint":
        return cls(EndpointKind.REMOTE, path, host)

    @property
    def is_remote(self) -> bool:
        return self.kind is EndpointKind.REMOTE

    def with_path(self, path: str) -> "Endpoint":
        """Return a copy of this endpoint pointing at another path."""
        return Endpoint(self.kind, path, self.host)

    def render(self, path: Optional[str] = None) -> str:
        """Render `path` (default: own path) the way rsync expects it.

        Args:
            path: Optional path on the same side, e.g. a selected item

        Returns:
            "host:path" for remote endpoints, the bare path otherwise
        """
        path = self.path if path is None else path
        if self.is_remote:
            return f"{self.host}:{path}"
        return path

    def __str__(self) -> str:
        return self.render()


# ============================================================================
# DIRECTORY ENTRIES
# ============================================================================


def format_size(size_bytes: Union[int, float]) -> str:
    """Format file size to be readable.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string
    """
    for unit in [" B", "KB", "MB", "GB", "TB"]:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"


@dataclass(frozen=True, eq=False)
class DirectoryEntry:
    """One listed item. Two entries are the same item iff their full paths match."""

    name: str
    full_path: str
    is_directory: bool
    size_bytes: int = 0
    modified_at: Optional[datetime] = None

    def __eq__(self, other) -> bool:
        if not isinstance(other, DirectoryEntry):
            return NotImplemented
        return self.full_path == other.full_path

    def __hash__(self) -> int:
        return hash(self.full_path)

    @property
    def formatted_size(self) -> str:
        if self.is_directory:
            return NO_VALUE
        return format_size(self.size_bytes)

    @property
    def formatted_date(self) -> str:
        if self.modified_at is None:
            return NO_VALUE
        return self.modified_at.strftime("%Y-%m-%d %H:%M")


def entry_sort_key(entry: DirectoryEntry) -> tuple:
    """Directories first, then case-insensitive by name."""
    return (not entry.is_directory, entry.name.casefold(), entry.name)


def sort_entries(entries: Iterable[DirectoryEntry]) -> list:
    return sorted(entries, key=entry_sort_key)


# ============================================================================
# CONNECTION STATE
# ============================================================================


class ConnectionStatus(Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    FAILED = "Failed"


@dataclass(frozen=True)
class ConnectionState:
    status: ConnectionStatus
    reason: str = ""

    @classmethod
    def failed(cls, reason: str) -> "ConnectionState":
        return cls(ConnectionStatus.FAILED, reason)

    def __str__(self) -> str:
        if self.status is ConnectionStatus.FAILED:
            return f"Failed: {self.reason}"
        return self.status.value


DISCONNECTED = ConnectionState(ConnectionStatus.DISCONNECTED)
CONNECTING = ConnectionState(ConnectionStatus.CONNECTING)
CONNECTED = ConnectionState(ConnectionStatus.CONNECTED)


# ============================================================================
# SYNC REQUEST
# ============================================================================


class SyncMode(Enum):
    FORCE = "Force"
    SLURP = "Slurp"

    @property
    def flags(self) -> tuple:
        if self is SyncMode.FORCE:
            return ("-haz", "--info=name,del") + DELETION_FLAGS
        return ("-haz", "--info=name")

    @property
    def description(self) -> str:
        if self is SyncMode.FORCE:
            return "Mirror source → destination (deletes extra files)"
        return "Copy new/changed files (preserves destination)"


class SyncDirection(Enum):
    LEFT_TO_RIGHT = "left_to_right"
    RIGHT_TO_LEFT = "right_to_left"

    @property
    def label(self) -> str:
        if self is SyncDirection.LEFT_TO_RIGHT:
            return "LEFT → RIGHT"
        return "RIGHT → LEFT"

    def reversed(self) -> "SyncDirection":
        if self is SyncDirection.LEFT_TO_RIGHT:
            return SyncDirection.RIGHT_TO_LEFT
        return SyncDirection.LEFT_TO_RIGHT


@dataclass(frozen=True)
class SyncRequest:
    sources: tuple
    destination: str
    flags: tuple

    def argv(self) -> list:
        """Positional arguments for rsync: flags, sources, destination."""
        return list(self.flags) + list(self.sources) + [self.destination]


# ============================================================================
# SYNC RUN
# ============================================================================


class RunStatus(Enum):
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


@dataclass(frozen=True)
class LogLine:
    timestamp: float
    wall_time: datetime
    text: str
    is_error: bool = False

    @property
    def formatted_time(self) -> str:
        return self.wall_time.strftime("%H:%M:%S")


@dataclass(eq=False)
class SyncRun:
    """One rsync invocation and its observable outcome.

    Only the SyncExecutor mutates a run; everybody else reads it.
    """

    request: SyncRequest
    direction: Optional[SyncDirection] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: RunStatus = RunStatus.RUNNING
    exit_code: Optional[int] = None
    cancelled: bool = False
    progress: str = ""
    log_lines: list = field(default_factory=list)
    _done: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def is_running(self) -> bool:
        return self.status is RunStatus.RUNNING

    def add_log(self, text: str, is_error: bool = False) -> LogLine:
        line = LogLine(time.monotonic(), datetime.now(), text, is_error)
        self.log_lines.append(line)
        return line

    def finish(self, status: RunStatus, exit_code: Optional[int] = None):
        self.status = status
        self.exit_code = exit_code
        self._done.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the run reaches a terminal state.

        Returns:
            True if the run finished within `timeout`
        """
        return self._done.wait(timeout)
