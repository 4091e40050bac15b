#!/usr/bin/env python3
"""
PSRemote - SSH Transport, Probes and Remote Directory Access

Pooled paramiko connections keyed by host, the short diagnostic commands used
while connecting a pane (reachability, home directory, rsync location), and
the listing/delete commands used while browsing a remote pane.

Every call here is a blocking round trip; callers run them off the UI thread.

 Author: Gino Bogo
License: MIT
Version: 1.0
"""

from __future__ import annotations

import os
import re
import shlex
import socket
import threading

from contextlib import contextmanager
from queue import Empty, Full, Queue
from typing import Iterator, NamedTuple, Optional

from libs.ps_listing import parse_listing
from libs.ps_log import console_log
from libs.ps_models import RemoteCommandError

# Third-party imports.
import paramiko


# ============================================================================
# CONSTANTS
# ============================================================================

DEFAULT_SSH_PORT = 22
DEFAULT_POOL_SIZE = 2
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_COMMAND_TIMEOUT = 15.0
SSH_CONFIG_FILE = "~/.ssh/config"

REMOTE_RSYNC_CANDIDATES = (
    "/opt/homebrew/bin/rsync",
    "/usr/local/bin/rsync",
    "/usr/bin/rsync",
    "/bin/rsync",
)
MIN_RSYNC_MAJOR = 3

RSYNC_BANNER_PATTERN = re.compile(r"^rsync\s+version\s+v?(\d+)\.(\d+)", re.MULTILINE)
WORKING_DIRECTORY_PATTERN = re.compile(r"^Remote working directory:\s*(/.*)$")


# ============================================================================
# HELPER UTILITIES
# ============================================================================


def _posix_quote(path: str) -> str:
    """Return a POSIX-shell-quoted version of `path` for safe exec_command use."""
    return shlex.quote(path)


def describe_failure(error: BaseException) -> str:
    """Map a transport exception onto a human-readable connection failure.

    Args:
        error: Exception raised while connecting or running a command

    Returns:
        "authentication failed", "timed out", "unreachable" or the raw text
    """
    if isinstance(error, paramiko.AuthenticationException):
        return "authentication failed"
    if isinstance(error, (socket.timeout, TimeoutError)):
        return "timed out"
    if isinstance(error, (paramiko.ssh_exception.NoValidConnectionsError, OSError)):
        return "unreachable"
    if isinstance(error, RemoteCommandError) and error.stderr:
        return error.stderr.strip()
    return str(error) or error.__class__.__name__


def extract_working_directory(text: str) -> Optional[str]:
    """Find the path in the output of a "print working directory" command.

    Accepts a bare absolute path line (shell `pwd`) or an sftp-style
    "Remote working directory: /path" line.
    """
    for line in text.splitlines():
        line = line.strip()
        match = WORKING_DIRECTORY_PATTERN.match(line)
        if match:
            return match.group(1).strip()
        if line.startswith("/"):
            return line
    return None


def is_supported_rsync_banner(text: str) -> bool:
    """Check that a `--version` banner comes from rsync 3.x or later.

    openrsync and rsync 2.x lack `--info`, which the log output depends on.
    """
    match = RSYNC_BANNER_PATTERN.search(text)
    if not match:
        return False
    return int(match.group(1)) >= MIN_RSYNC_MAJOR


class CommandResult(NamedTuple):
    exit_status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class ProbeOutcome(NamedTuple):
    reachable: bool
    reason: str = ""


# ============================================================================
# REMOTE SHELL CLASS
# ============================================================================


class RemoteShell:
    """Runs single commands on remote hosts over pooled SSH connections.

    Authentication is key or agent based only; no password is ever sent and no
    TTY is requested, so a host that would prompt fails fast instead.
    """

    def __init__(
        self,
        logger_func=None,
        pool_size: int = DEFAULT_POOL_SIZE,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        ssh_config_file: str = SSH_CONFIG_FILE,
    ):
        """Initialize the RemoteShell.

        Args:
            logger_func: A function to call for logging messages.
            pool_size: Number of idle connections kept per host.
            connect_timeout: Seconds allowed for TCP, banner and auth.
            command_timeout: Default seconds allowed for one command.
            ssh_config_file: OpenSSH client config consulted for host aliases.
        """
        self._pools = {}  # {host: Queue of connections}.
        self._lock = threading.Lock()
        self.log = logger_func or console_log
        self.pool_size = pool_size
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self._ssh_config = self._load_ssh_config(ssh_config_file)

    def _load_ssh_config(self, config_file: str) -> Optional[paramiko.SSHConfig]:
        path = os.path.expanduser(config_file)
        if not os.path.exists(path):
            return None
        try:
            return paramiko.SSHConfig.from_path(path)
        except Exception as e:
            self.log(f"Warning: could not read {path}: {e}")
            return None

    def resolve_host(self, host: str) -> dict:
        """Split a `[user@]host` string and apply ~/.ssh/config settings.

        Args:
            host: Host as typed by the operator (also passed verbatim to rsync)

        Returns:
            Keyword arguments for paramiko.SSHClient.connect
        """
        user, _, hostname = host.rpartition("@")
        options = self._ssh_config.lookup(hostname) if self._ssh_config else {}

        params = {
            "hostname": options.get("hostname", hostname),
            "port": int(options.get("port", DEFAULT_SSH_PORT)),
            "username": user or options.get("user") or None,
        }
        identity_files = options.get("identityfile")
        if identity_files:
            params["key_filename"] = [os.path.expanduser(f) for f in identity_files]
        return params

    def _create_connection(self, host: str) -> paramiko.SSHClient:
        """Create a new SSH connection.

        Raises:
            paramiko.AuthenticationException: If the keys are rejected
            OSError: If the host cannot be reached
        """
        params = self.resolve_host(host)
        self.log(f"Creating new SSH connection for {host}")
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
                allow_agent=True,
                look_for_keys=True,
                **params,
            )
        except Exception:
            client.close()
            raise
        return client

    @staticmethod
    def _is_alive(client: Optional[paramiko.SSHClient]) -> bool:
        transport = client.get_transport() if client else None
        return bool(transport and transport.is_active())

    @contextmanager
    def get_connection(self, host: str) -> Iterator[paramiko.SSHClient]:
        """Get a connection from the pool as a context manager.

        Yields:
            An active paramiko.SSHClient instance
        """
        with self._lock:
            pool = self._pools.setdefault(host, Queue(maxsize=self.pool_size))

        conn = None
        try:
            conn = pool.get_nowait()
        except Empty:
            pass

        if not self._is_alive(conn):
            if conn:
                self.log(f"Connection for {host} is dead, creating new one")
                conn.close()
            conn = self._create_connection(host)

        try:
            yield conn
        finally:
            # Return connection to pool.
            if self._is_alive(conn):
                try:
                    pool.put_nowait(conn)
                except Full:
                    conn.close()
            else:
                conn.close()

    def run(self, host: str, command: str, timeout: Optional[float] = None) -> CommandResult:
        """Execute one command string on `host`.

        Args:
            host: Remote host
            command: Shell command line
            timeout: Seconds to wait for output (default: command_timeout)

        Returns:
            CommandResult with exit status and decoded output
        """
        timeout = self.command_timeout if timeout is None else timeout
        with self.get_connection(host) as client:
            stdin, stdout, stderr = client.exec_command(command, timeout=timeout)
            stdin.close()

            # Drain stderr alongside stdout so neither stream can fill the
            # channel window while the other is being read.
            err_chunks = []
            err_reader = threading.Thread(
                target=lambda: err_chunks.append(stderr.read()), daemon=True
            )
            err_reader.start()
            out = stdout.read().decode("utf-8", errors="replace")
            err_reader.join(timeout)
            err = b"".join(err_chunks).decode("utf-8", errors="replace")
            status = stdout.channel.recv_exit_status()
        return CommandResult(status, out, err)

    def get_pool_status(self) -> dict:
        """Get number of idle pooled connections per host."""
        with self._lock:
            return {host: pool.qsize() for host, pool in self._pools.items()}

    def close_host(self, host: str):
        """Close every pooled connection for one host."""
        with self._lock:
            pool = self._pools.pop(host, None)
        if pool is not None:
            self._drain(pool)

    def close_all(self):
        """Close all managed SSH connections."""
        with self._lock:
            pools = list(self._pools.items())
            self._pools.clear()
        for host, pool in pools:
            self.log(f"Closing SSH pool {host}")
            self._drain(pool)

    @staticmethod
    def _drain(pool: Queue):
        while True:
            try:
                pool.get_nowait().close()
            except Empty:
                return


# ============================================================================
# REMOTE PROBE CLASS
# ============================================================================


class RemoteProbe:
    """Short-lived diagnostic commands used while connecting a pane."""

    def __init__(
        self,
        shell: RemoteShell,
        logger_func=None,
        candidates=REMOTE_RSYNC_CANDIDATES,
        timeout: Optional[float] = None,
    ):
        self.shell = shell
        self.log = logger_func or console_log
        self.candidates = tuple(candidates)
        self.timeout = timeout

    def check(self, host: str) -> ProbeOutcome:
        """Run a minimal round trip and explain why it failed, if it did."""
        try:
            result = self.shell.run(host, "pwd", self.timeout)
        except Exception as e:
            self.log(f"✗ SSH check failed for {host}: {e}")
            return ProbeOutcome(False, describe_failure(e))

        if not result.ok:
            reason = result.stderr.strip() or f"exit status {result.exit_status}"
            return ProbeOutcome(False, reason)
        if extract_working_directory(result.stdout) is None:
            return ProbeOutcome(False, f"unexpected response: {result.stdout.strip()!r}")
        return ProbeOutcome(True)

    def test_reachable(self, host: str) -> bool:
        return self.check(host).reachable

    def discover_home_directory(self, host: str) -> Optional[str]:
        """Return the remote login directory, or None if it cannot be read."""
        try:
            result = self.shell.run(host, "pwd", self.timeout)
        except Exception as e:
            self.log(f"Home directory lookup failed for {host}: {e}")
            return None
        if not result.ok:
            return None
        return extract_working_directory(result.stdout)

    def detect_sync_tool_path(self, host: str) -> Optional[str]:
        """Find a remote rsync that supports `--info`.

        Candidates are tried in order and the first accepted one wins. None
        means rsync must resolve its remote counterpart itself.
        """
        for candidate in self.candidates:
            try:
                result = self.shell.run(
                    host, f"{_posix_quote(candidate)} --version", self.timeout
                )
            except Exception as e:
                self.log(f"rsync probe {candidate} on {host} failed: {e}")
                continue
            if result.ok and is_supported_rsync_banner(result.stdout):
                self.log(f"Remote rsync on {host}: {candidate}")
                return candidate
        self.log(f"No compatible remote rsync found on {host}, using default")
        return None


# ============================================================================
# REMOTE DIRECTORY SERVICE CLASS
# ============================================================================


class RemoteDirectoryService:
    """Lists and deletes remote paths for a connected pane."""

    def __init__(self, shell: RemoteShell, logger_func=None, timeout: Optional[float] = None):
        self.shell = shell
        self.log = logger_func or console_log
        self.timeout = timeout

    def list_directory(self, host: str, path: str) -> list:
        """List `path` on `host`.

        Raises:
            RemoteCommandError: If the directory cannot be listed
        """
        command = f"cd {_posix_quote(path)} && LC_ALL=C ls -la"
        result = self.shell.run(host, command, self.timeout)
        if not result.ok:
            raise RemoteCommandError(
                f"Cannot list {host}:{path}", result.exit_status, result.stderr
            )
        entries = parse_listing(result.stdout, path)
        self.log(f"Listed {len(entries)} items in {host}:{path}")
        return entries

    def delete(self, host: str, path: str):
        """Remove a remote file or directory tree.

        Raises:
            ValueError: If `path` is empty or the filesystem root
            RemoteCommandError: If the remote command fails
        """
        if path.strip().rstrip("/") == "":
            raise ValueError(f"Refusing to delete {path!r} on {host}")
        self.log(f"Deleting remote {host}:{path}")
        result = self.shell.run(host, f"rm -rf -- {_posix_quote(path)}", self.timeout)
        if not result.ok:
            raise RemoteCommandError(
                f"Cannot delete {host}:{path}", result.exit_status, result.stderr
            )
