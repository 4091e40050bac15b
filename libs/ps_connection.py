#!/usr/bin/env python3
"""
PSConnection - Per-Pane Remote Connection State Machine

Disconnected -> Connecting -> Connected | Failed(reason), with explicit
disconnect and retry. Probes and listings run on worker threads; their results
come back through `dispatch` and are dropped if the pane was reconnected or
disconnected in the meantime.

 Author: Gino Bogo
License: MIT
Version: 1.0
"""

from __future__ import annotations

import posixpath
import threading

from typing import Callable, Optional

from libs.ps_log import console_log
from libs.ps_models import (
    CONNECTED,
    CONNECTING,
    DISCONNECTED,
    ConnectionState,
    ConnectionStateError,
    ConnectionStatus,
    Endpoint,
)
from libs.ps_remote import RemoteDirectoryService, RemoteProbe, describe_failure


ROOT_PATH = "/"


def _call_now(func: Callable, *args):
    func(*args)


def _start_thread(func: Callable, *args):
    threading.Thread(target=func, args=args, daemon=True).start()


# ============================================================================
# CONNECTION CONTROLLER CLASS
# ============================================================================


class ConnectionController:
    """Connection lifecycle and remote navigation for one pane."""

    def __init__(
        self,
        probe: RemoteProbe,
        directory_service: RemoteDirectoryService,
        default_endpoint: Endpoint,
        logger_func=None,
        dispatch: Optional[Callable] = None,
        spawn: Optional[Callable] = None,
    ):
        """Initialize the ConnectionController.

        Args:
            probe: Runs the connection diagnostics.
            directory_service: Lists and deletes remote paths.
            default_endpoint: Local endpoint the pane reverts to on disconnect.
            logger_func: A function to call for logging messages.
            dispatch: `dispatch(func, *args)` runs func on the control thread.
            spawn: `spawn(func, *args)` runs func off the control thread.
        """
        self.probe = probe
        self.directory_service = directory_service
        self.default_endpoint = default_endpoint
        self.log = logger_func or console_log
        self._dispatch = dispatch or _call_now
        self._spawn = spawn or _start_thread

        self.state: ConnectionState = DISCONNECTED
        self.host = ""
        self.endpoint: Optional[Endpoint] = default_endpoint
        self.entries = []
        self.home_directory: Optional[str] = None
        self.remote_tool_path: Optional[str] = None

        # Bumped on connect/disconnect; stale worker results are discarded.
        self._generation = 0
        self._listing_seq = 0

        # Event callbacks.
        self.on_state_changed: Optional[Callable] = None  # (state)
        self.on_listing: Optional[Callable] = None  # (endpoint, entries)
        self.on_error: Optional[Callable] = None  # (message)

    # ==========================================================================
    # STATE TRANSITIONS
    # ==========================================================================

    @property
    def is_connected(self) -> bool:
        return self.state.status is ConnectionStatus.CONNECTED

    def connect(self, host: str):
        """Start connecting to `host`.

        Raises:
            ConnectionStateError: Unless Disconnected or Failed
            ValueError: If `host` is empty
        """
        if self.state.status not in (ConnectionStatus.DISCONNECTED, ConnectionStatus.FAILED):
            raise ConnectionStateError(f"Cannot connect while {self.state}")
        host = host.strip()
        if not host:
            raise ValueError("Host is required.")

        self.host = host
        self._reset_remote_state()
        self.endpoint = None
        self._generation += 1
        self._set_state(CONNECTING)
        self.log(f"Testing SSH {host}...")
        self._spawn(self._check_worker, self._generation, host)

    def retry(self):
        """Reconnect to the last host after a failure."""
        if self.state.status is not ConnectionStatus.FAILED:
            raise ConnectionStateError(f"Nothing to retry while {self.state}")
        self.connect(self.host)

    def disconnect(self):
        """Drop the remote side and fall back to the default local endpoint."""
        self._generation += 1
        self._reset_remote_state()
        self.endpoint = self.default_endpoint
        if self.host:
            self.log(f"Disconnected from {self.host}")
        self._set_state(DISCONNECTED)

    def _reset_remote_state(self):
        self.entries = []
        self.home_directory = None
        self.remote_tool_path = None

    def _set_state(self, state: ConnectionState):
        self.state = state
        if self.on_state_changed:
            self.on_state_changed(state)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    # ==========================================================================
    # CONNECT WORKFLOW
    # ==========================================================================

    def _check_worker(self, generation: int, host: str):
        outcome = self.probe.check(host)
        self._dispatch(self._on_checked, generation, host, outcome)

    def _on_checked(self, generation: int, host: str, outcome):
        if not self._is_current(generation):
            return
        if not outcome.reachable:
            self.log(f"✗ SSH connection failed for {host}: {outcome.reason}")
            self._set_state(ConnectionState.failed(outcome.reason))
            return

        self.log(f"✓ SSH {host} connected")
        self._set_state(CONNECTED)
        self._spawn(self._tool_worker, generation, host)
        self._spawn(self._home_worker, generation, self._next_listing(), host)

    def _tool_worker(self, generation: int, host: str):
        tool_path = self.probe.detect_sync_tool_path(host)
        self._dispatch(self._on_tool_detected, generation, tool_path)

    def _on_tool_detected(self, generation: int, tool_path: Optional[str]):
        if self._is_current(generation):
            self.remote_tool_path = tool_path

    def _home_worker(self, generation: int, seq: int, host: str):
        home = self.probe.discover_home_directory(host)
        self._dispatch(self._on_home_discovered, generation, home)
        self._list_worker(generation, seq, host, home or ROOT_PATH)

    def _on_home_discovered(self, generation: int, home: Optional[str]):
        if self._is_current(generation):
            self.home_directory = home

    # ==========================================================================
    # REMOTE NAVIGATION
    # ==========================================================================

    def _require_connected(self, action: str):
        if not self.is_connected:
            raise ConnectionStateError(f"Cannot {action} while {self.state}")

    def _next_listing(self) -> int:
        self._listing_seq += 1
        return self._listing_seq

    def navigate(self, path: str):
        """List `path` on the connected host; the endpoint moves there on success."""
        self._require_connected("navigate")
        self._spawn(
            self._list_worker, self._generation, self._next_listing(), self.host, path
        )

    def navigate_up(self):
        current = self.endpoint.path if self.endpoint else ROOT_PATH
        self.navigate(posixpath.dirname(current.rstrip("/")) or ROOT_PATH)

    def navigate_home(self):
        self.navigate(self.home_directory or ROOT_PATH)

    def refresh(self):
        if self.endpoint is not None:
            self.navigate(self.endpoint.path)
        else:
            self.navigate_home()

    def _list_worker(self, generation: int, seq: int, host: str, path: str):
        try:
            entries = self.directory_service.list_directory(host, path)
        except Exception as e:
            self.log(f"Error listing {host}:{path}: {e}")
            self._dispatch(self._on_list_failed, generation, seq, path, e)
            return
        self._dispatch(self._on_listed, generation, seq, path, entries)

    def _on_listed(self, generation: int, seq: int, path: str, entries: list):
        if not self._is_current(generation) or seq != self._listing_seq:
            return
        self.endpoint = Endpoint.remote(self.host, path)
        self.entries = entries
        if self.on_listing:
            self.on_listing(self.endpoint, entries)

    def _on_list_failed(self, generation: int, seq: int, path: str, error: Exception):
        if not self._is_current(generation) or seq != self._listing_seq:
            return
        self._emit_error(f"Cannot open {path}: {describe_failure(error)}")

    def delete(self, paths: list):
        """Remove remote paths, then re-list the current directory."""
        self._require_connected("delete")
        self._spawn(self._delete_worker, self._generation, self.host, list(paths))

    def _delete_worker(self, generation: int, host: str, paths: list):
        failures = []
        for path in paths:
            try:
                self.directory_service.delete(host, path)
            except Exception as e:
                failures.append(f"{path}: {describe_failure(e)}")
        self._dispatch(self._on_deleted, generation, failures)

    def _on_deleted(self, generation: int, failures: list):
        if not self._is_current(generation):
            return
        for failure in failures:
            self._emit_error(f"Delete failed for {failure}")
        self.refresh()

    def _emit_error(self, message: str):
        self.log(message)
        if self.on_error:
            self.on_error(message)
