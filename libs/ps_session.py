#!/usr/bin/env python3
"""
PSSession - Panes and the Sync Action

A Pane is one browsing context (local directory or connected remote host)
with its listing and selection. A SyncSession binds the left and right panes
to the planner and the single executor.

 Author: Gino Bogo
License: MIT
Version: 1.0
"""

from __future__ import annotations

import os
import posixpath
import threading

from typing import Callable, Optional

from libs.ps_connection import ConnectionController
from libs.ps_local import LocalLister, home_directory
from libs.ps_log import console_log
from libs.ps_models import (
    ConnectionState,
    ConnectionStatus,
    Endpoint,
    SyncBusyError,
    SyncConfigurationError,
    SyncDirection,
    SyncMode,
    SyncRun,
)
from libs.ps_executor import SyncExecutor
from libs.ps_planner import plan_sync


def _call_now(func: Callable, *args):
    func(*args)


def _start_thread(func: Callable, *args):
    threading.Thread(target=func, args=args, daemon=True).start()


class UserPrompt:
    """Interface of the directory picker supplied by the front-end."""

    def pick_directory(self, starting_at: str) -> Optional[str]:
        raise NotImplementedError


# ============================================================================
# PANE CLASS
# ============================================================================


class Pane:
    """One side of the window: local browsing, or remote through its controller."""

    def __init__(
        self,
        name: str,
        controller: ConnectionController,
        local_lister: LocalLister,
        logger_func=None,
        dispatch: Optional[Callable] = None,
        spawn: Optional[Callable] = None,
    ):
        self.name = name
        self.controller = controller
        self.local_lister = local_lister
        self.log = logger_func or console_log
        self._dispatch = dispatch or _call_now
        self._spawn = spawn or _start_thread

        self.local_endpoint: Endpoint = controller.default_endpoint
        self.entries = []
        self.selection = set()
        self._local_seq = 0

        # Event callbacks.
        self.on_changed: Optional[Callable] = None  # (pane)
        self.on_state_changed: Optional[Callable] = None  # (pane, state)
        self.on_error: Optional[Callable] = None  # (pane, message)

        controller.on_listing = self._on_remote_listing
        controller.on_state_changed = self._on_connection_state
        controller.on_error = self._on_remote_error

    # ==========================================================================
    # MODE AND ENDPOINT
    # ==========================================================================

    @property
    def is_remote(self) -> bool:
        return self.controller.state.status is not ConnectionStatus.DISCONNECTED

    @property
    def state(self) -> ConnectionState:
        return self.controller.state

    @property
    def endpoint(self) -> Optional[Endpoint]:
        """Where a sync would read from or write to; None until a remote pane is listed."""
        if self.is_remote:
            if not self.controller.is_connected:
                return None
            return self.controller.endpoint
        return self.local_endpoint

    @property
    def remote_tool_path(self) -> Optional[str]:
        if self.controller.is_connected:
            return self.controller.remote_tool_path
        return None

    def connect(self, host: str):
        self.controller.connect(host)

    def retry(self):
        self.controller.retry()

    def disconnect(self):
        self.controller.disconnect()

    def _on_connection_state(self, state: ConnectionState):
        if state.status in (ConnectionStatus.DISCONNECTED, ConnectionStatus.CONNECTING):
            self._set_entries([])
        if self.on_state_changed:
            self.on_state_changed(self, state)
        if state.status is ConnectionStatus.DISCONNECTED:
            self.local_endpoint = self.controller.default_endpoint
            self.refresh()

    # ==========================================================================
    # NAVIGATION
    # ==========================================================================

    @property
    def can_browse(self) -> bool:
        """False while a remote pane is connecting or has failed."""
        return not self.is_remote or self.controller.is_connected

    def navigate(self, path: str):
        if not self.can_browse:
            self.log(f"{self.name}: cannot browse while {self.state}")
            return
        if self.is_remote:
            self.controller.navigate(path)
            return
        self._local_seq += 1
        self._spawn(self._local_worker, self._local_seq, path)

    def _local_worker(self, seq: int, path: str):
        entries = self.local_lister.list(path)
        self._dispatch(self._on_local_listing, seq, path, entries)

    def _on_local_listing(self, seq: int, path: str, entries: list):
        if seq != self._local_seq or self.is_remote:
            return
        self.local_endpoint = Endpoint.local(path)
        self._set_entries(entries)

    def _on_remote_listing(self, endpoint: Endpoint, entries: list):
        self._set_entries(entries)

    def _on_remote_error(self, message: str):
        if self.on_error:
            self.on_error(self, message)

    def refresh(self):
        if not self.can_browse:
            return
        if self.is_remote:
            self.controller.refresh()
        else:
            self.navigate(self.local_endpoint.path)

    def navigate_up(self):
        if not self.can_browse:
            return
        if self.is_remote:
            self.controller.navigate_up()
        else:
            current = self.local_endpoint.path
            self.navigate(os.path.dirname(current.rstrip(os.sep)) or os.sep)

    def navigate_home(self):
        if not self.can_browse:
            return
        if self.is_remote:
            self.controller.navigate_home()
        else:
            self.navigate(home_directory())

    def pick_directory(self, prompt: UserPrompt):
        """Let the operator choose a local directory and open it."""
        if self.is_remote:
            return
        chosen = prompt.pick_directory(self.local_endpoint.path)
        if chosen:
            self.navigate(chosen)

    def breadcrumbs(self) -> list:
        """Path prefixes from the root down to the current directory."""
        endpoint = self.endpoint
        if endpoint is None:
            return []
        path_module = posixpath if endpoint.is_remote else os.path
        crumbs = []
        current = endpoint.path
        while True:
            crumbs.insert(0, current)
            parent = path_module.dirname(current)
            if not parent or parent == current:
                break
            current = parent
        return crumbs

    # ==========================================================================
    # SELECTION
    # ==========================================================================

    def _set_entries(self, entries: list):
        self.entries = list(entries)
        self.selection.clear()
        if self.on_changed:
            self.on_changed(self)

    def select(self, paths):
        known = {entry.full_path for entry in self.entries}
        self.selection = {path for path in paths if path in known}

    def toggle(self, path: str):
        if path in self.selection:
            self.selection.discard(path)
        elif any(entry.full_path == path for entry in self.entries):
            self.selection.add(path)

    def select_all(self):
        self.selection = {entry.full_path for entry in self.entries}

    def clear_selection(self):
        self.selection.clear()

    def selected_paths(self) -> list:
        """Selected full paths in display order."""
        return [e.full_path for e in self.entries if e.full_path in self.selection]

    def delete_selected(self):
        """Delete the selected items of a connected remote pane."""
        paths = self.selected_paths()
        if paths and self.controller.is_connected:
            self.controller.delete(paths)


# ============================================================================
# SYNC SESSION CLASS
# ============================================================================


class SyncSession:
    """Turns the panes' state into rsync runs on the shared executor."""

    def __init__(self, left: Pane, right: Pane, executor: SyncExecutor, logger_func=None):
        self.left = left
        self.right = right
        self.executor = executor
        self.log = logger_func or console_log

        # Event callbacks.
        self.on_notice: Optional[Callable] = None  # (message, is_error)
        self.on_complete: Optional[Callable] = None  # (run)

        executor.on_complete = self._on_run_complete

    def source_pane(self, direction: SyncDirection) -> Pane:
        return self.left if direction is SyncDirection.LEFT_TO_RIGHT else self.right

    def destination_pane(self, direction: SyncDirection) -> Pane:
        return self.right if direction is SyncDirection.LEFT_TO_RIGHT else self.left

    def remote_tool_path(self) -> Optional[str]:
        return self.left.remote_tool_path or self.right.remote_tool_path

    def sync(
        self,
        mode: SyncMode,
        direction: SyncDirection,
        confirm: Optional[Callable] = None,
    ) -> Optional[SyncRun]:
        """Run rsync for the current selection of the source pane.

        With nothing selected the whole directory is synced, but only after
        `confirm(directory_name)` returns True.

        Returns:
            The started run, or None if nothing was started

        Raises:
            SyncBusyError: If a run is already active
        """
        if self.executor.is_running:
            raise SyncBusyError("A sync is already running")

        source = self.source_pane(direction)
        selection = source.selected_paths()

        try:
            request = plan_sync(
                self.left.endpoint,
                self.right.endpoint,
                direction,
                mode,
                selection,
                self.remote_tool_path(),
            )
        except SyncConfigurationError as e:
            self._notice(str(e), True)
            return None

        if not selection:
            path = source.endpoint.path
            dir_name = posixpath.basename(path.rstrip("/")) or path
            if confirm is None or not confirm(dir_name):
                self._notice("Whole-directory sync not confirmed", False)
                return None

        preamble = [f"Direction: {direction.label}"]
        if selection:
            preamble.append(f"Syncing {len(selection)} selected item(s)")
            preamble.extend(f"  → {source.endpoint.render(p)}" for p in selection)
        else:
            preamble.append("Syncing entire directory")

        return self.executor.run(
            request, direction, title=f"Starting {mode.value} sync", preamble=preamble
        )

    def cancel(self) -> bool:
        return self.executor.cancel()

    def _notice(self, message: str, is_error: bool):
        self.log(message)
        if self.on_notice:
            self.on_notice(message, is_error)

    def _on_run_complete(self, run: SyncRun):
        if run.direction is not None:
            target = self.destination_pane(run.direction)
            if target.endpoint is not None:
                target.refresh()
        if self.on_complete:
            self.on_complete(run)
