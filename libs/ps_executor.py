#!/usr/bin/env python3
"""
PSExecutor - rsync Process Runner

Spawns rsync for a planned SyncRequest, streams stdout and stderr into the
run log line by line, and reports the outcome. Only one run may be active.

Reader and waiter threads never touch a run directly: every update goes
through `dispatch`, which the GUI points at `root.after(0, ...)` so that runs
are only mutated on the Tk thread.

 Author: Gino Bogo
License: MIT
Version: 1.0
"""

from __future__ import annotations

import os
import posixpath
import subprocess
import threading

from typing import Callable, Iterable, Optional

from libs.ps_log import console_log
from libs.ps_models import (
    RunStatus,
    SyncBusyError,
    SyncDirection,
    SyncRequest,
    SyncRun,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Prefer a full-featured rsync over the system one (macOS ships openrsync).
LOCAL_RSYNC_CANDIDATES = (
    "/opt/homebrew/bin/rsync",
    "/usr/local/bin/rsync",
    "/usr/bin/rsync",
)
DEFAULT_RSYNC = "/usr/bin/rsync"
LOG_SEPARATOR = "───"
CANCELLED_MESSAGE = "Sync cancelled"


def _call_now(func: Callable, *args):
    func(*args)


# ============================================================================
# SYNC EXECUTOR CLASS
# ============================================================================


class SyncExecutor:
    """Owns the single in-flight rsync run."""

    def __init__(
        self,
        logger_func=None,
        dispatch: Optional[Callable] = None,
        candidates: Iterable[str] = LOCAL_RSYNC_CANDIDATES,
        default_binary: str = DEFAULT_RSYNC,
        on_log: Optional[Callable] = None,
        on_complete: Optional[Callable] = None,
    ):
        """Initialize the SyncExecutor.

        Args:
            logger_func: A function to call for console messages.
            dispatch: `dispatch(func, *args)` runs func on the control thread.
            candidates: Local rsync locations, tried in order.
            default_binary: rsync used when no candidate exists.
            on_log: Called as on_log(run, line) for every appended log line.
            on_complete: Called as on_complete(run) once a run is terminal.
        """
        self.log = logger_func or console_log
        self._dispatch = dispatch or _call_now
        self.candidates = tuple(candidates)
        self.default_binary = default_binary
        self.on_log = on_log
        self.on_complete = on_complete

        self._lock = threading.RLock()
        self._run: Optional[SyncRun] = None
        self._process: Optional[subprocess.Popen] = None

    # ==========================================================================
    # STATE
    # ==========================================================================

    @property
    def current_run(self) -> Optional[SyncRun]:
        return self._run

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._run is not None and self._run.is_running

    def select_binary(self) -> str:
        """Return the first existing rsync candidate, else the default."""
        for candidate in self.candidates:
            if os.path.exists(candidate):
                return candidate
        return self.default_binary

    def clear(self) -> bool:
        """Forget the finished run. Does nothing while a run is active."""
        with self._lock:
            if self.is_running:
                return False
            self._run = None
            return True

    # ==========================================================================
    # RUN / CANCEL
    # ==========================================================================

    def run(
        self,
        request: SyncRequest,
        direction: Optional[SyncDirection] = None,
        title: str = "Starting sync",
        preamble: Iterable[str] = (),
    ) -> SyncRun:
        """Start rsync for `request`.

        Args:
            request: Planned sources, destination and flags
            direction: Carried to the completion event
            title: Log line announcing the run
            preamble: Context lines logged before the title

        Returns:
            The new run; it is already terminal if rsync could not be spawned

        Raises:
            SyncBusyError: If a run is already active (nothing is spawned)
        """
        events = []
        with self._lock:
            if self.is_running:
                raise SyncBusyError("A sync is already running")

            run = SyncRun(request, direction)
            self._run = run
            run.progress = f"{title}..."
            for text in preamble:
                self._append(run, text, False, events)
            self._write_header(run, title, events)

            argv = [self.select_binary()] + request.argv()
            self.log(f"Running: {' '.join(argv)}")
            try:
                process = subprocess.Popen(
                    argv,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    bufsize=1,
                )
            except OSError as e:
                self._append(run, f"Failed: {e}", True, events)
                run.progress = "Sync failed"
                run.finish(RunStatus.FAILED)
                events.append((self.on_complete, run))
                process = None
            else:
                self._process = process

        self._emit(events)
        if process is not None:
            self._start_threads(run, process)
        return run

    def cancel(self) -> bool:
        """Terminate the active run.

        Returns:
            True if a run was cancelled, False if nothing was running
        """
        events = []
        with self._lock:
            run = self._run
            if run is None or not run.is_running:
                return False

            process, self._process = self._process, None
            if process is not None and process.poll() is None:
                process.terminate()

            run.cancelled = True
            self._append(run, CANCELLED_MESSAGE, True, events)
            run.progress = CANCELLED_MESSAGE
            run.finish(RunStatus.FAILED)
            events.append((self.on_complete, run))

        self.log("Sync cancelled by user")
        self._emit(events)
        return True

    # ==========================================================================
    # STREAMING
    # ==========================================================================

    def _start_threads(self, run: SyncRun, process: subprocess.Popen):
        readers = [
            threading.Thread(
                target=self._read_stream,
                args=(run, process.stdout, False),
                daemon=True,
            ),
            threading.Thread(
                target=self._read_stream,
                args=(run, process.stderr, True),
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()
        threading.Thread(
            target=self._wait_for_exit, args=(run, process, readers), daemon=True
        ).start()

    def _read_stream(self, run: SyncRun, stream, is_error: bool):
        try:
            for raw_line in stream:
                text = raw_line.rstrip("\r\n")
                if text:
                    self._dispatch(self._on_line, run, text, is_error)
        finally:
            stream.close()

    def _wait_for_exit(self, run: SyncRun, process: subprocess.Popen, readers: list):
        exit_code = process.wait()
        # Lines must reach the log before the outcome does.
        for reader in readers:
            reader.join()
        self._dispatch(self._on_exit, run, process, exit_code)

    def _on_line(self, run: SyncRun, text: str, is_error: bool):
        events = []
        with self._lock:
            if not run.is_running:
                return
            self._append(run, text, is_error, events)
            if not is_error:
                run.progress = text
        self._emit(events)

    def _on_exit(self, run: SyncRun, process: subprocess.Popen, exit_code: int):
        events = []
        with self._lock:
            if self._process is process:
                self._process = None
            if not run.is_running:
                return

            self._append(run, LOG_SEPARATOR, False, events)
            if exit_code == 0:
                self._append(run, "✓ Sync completed successfully", False, events)
                run.progress = "Sync completed"
                run.finish(RunStatus.SUCCEEDED, exit_code)
            else:
                self._append(run, f"✗ Sync failed (exit: {exit_code})", True, events)
                run.progress = "Sync failed"
                run.finish(RunStatus.FAILED, exit_code)
            events.append((self.on_complete, run))

        self.log(f"Sync finished: {run.status.value} (exit: {exit_code})")
        self._emit(events)

    # ==========================================================================
    # HELPER METHODS
    # ==========================================================================

    def _write_header(self, run: SyncRun, title: str, events: list):
        request = run.request
        self._append(run, title, False, events)
        if len(request.sources) == 1:
            self._append(run, f"Source: {request.sources[0]}", False, events)
        else:
            self._append(run, f"Sources: {len(request.sources)} items", False, events)
            for source in request.sources:
                name = posixpath.basename(source.rstrip("/")) or source
                self._append(run, f"  • {name}", False, events)
        self._append(run, f"Destination: {request.destination}", False, events)
        self._append(run, LOG_SEPARATOR, False, events)

    def _append(self, run: SyncRun, text: str, is_error: bool, events: list):
        line = run.add_log(text, is_error)
        events.append((self.on_log, run, line))

    @staticmethod
    def _emit(events: list):
        for callback, *args in events:
            if callback is not None:
                callback(*args)
