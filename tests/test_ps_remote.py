import os
import socket
import sys
import threading
from unittest.mock import MagicMock, patch

import paramiko
import pytest
from termcolor import cprint

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from libs.ps_models import RemoteCommandError
from libs.ps_remote import (
    CommandResult,
    RemoteDirectoryService,
    RemoteProbe,
    RemoteShell,
    describe_failure,
    extract_working_directory,
    is_supported_rsync_banner,
)


NOT_FOUND = CommandResult(127, "", "sh: 1: rsync: not found\n")


class FakeShell:
    """Answers commands from a table; unknown commands behave like `not found`."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.commands = []

    def run(self, host, command, timeout=None):
        self.commands.append((host, command))
        response = self.responses.get(command, NOT_FOUND)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def ssh_config(tmp_path):
    """Write an OpenSSH client config with one alias."""
    path = tmp_path / "config"
    path.write_text(
        "Host box\n"
        "    HostName 10.0.0.5\n"
        "    User deploy\n"
        "    Port 2222\n"
        "    IdentityFile ~/.ssh/id_box\n"
    )
    return str(path)


class TestOutputHelpers:
    """Test suite for parsing probe output and describing failures."""

    # ===========================================================================
    # Parsing Test Methods
    # ===========================================================================

    def test_extract_working_directory(self):
        """Test both the sftp banner and a bare pwd line."""
        cprint(f"\n--- {self.test_extract_working_directory.__doc__}", "yellow")
        assert extract_working_directory("Remote working directory: /home/u\n") == "/home/u"
        assert extract_working_directory("sftp> pwd\nRemote working directory: /srv\n") == "/srv"
        assert extract_working_directory("/home/u\n") == "/home/u"
        assert extract_working_directory("") is None
        assert extract_working_directory("Welcome!\n") is None

    def test_rsync_banner(self):
        """Test that only rsync 3.x or later banners are accepted."""
        cprint(f"\n--- {self.test_rsync_banner.__doc__}", "yellow")
        assert is_supported_rsync_banner("rsync  version 3.2.7  protocol version 31\n")
        assert is_supported_rsync_banner("rsync  version v3.4.1  protocol version 32\n")
        assert not is_supported_rsync_banner("rsync  version 2.6.9  protocol version 29\n")
        assert not is_supported_rsync_banner(
            "openrsync: protocol version 29\nrsync version 2.6.9 compatible\n"
        )
        assert not is_supported_rsync_banner("")

    def test_describe_failure(self):
        """Test that transport errors map onto short connection reasons."""
        cprint(f"\n--- {self.test_describe_failure.__doc__}", "yellow")
        assert describe_failure(paramiko.AuthenticationException("denied")) == (
            "authentication failed"
        )
        assert describe_failure(socket.timeout("timed out")) == "timed out"
        refused = paramiko.ssh_exception.NoValidConnectionsError(
            {("10.0.0.5", 22): ConnectionRefusedError()}
        )
        assert describe_failure(refused) == "unreachable"
        assert describe_failure(socket.gaierror("Name or service not known")) == "unreachable"
        assert describe_failure(
            RemoteCommandError("failed", 1, "Permission denied\n")
        ) == "Permission denied"
        assert describe_failure(paramiko.SSHException("Error reading SSH protocol banner")) == (
            "Error reading SSH protocol banner"
        )


class TestRemoteProbe:
    """Test suite for reachability, home directory and rsync detection."""

    def test_check_reachable(self):
        """Test a successful round trip."""
        cprint(f"\n--- {self.test_check_reachable.__doc__}", "cyan")
        probe = RemoteProbe(
            FakeShell({"pwd": CommandResult(0, "/home/u\n", "")}),
            logger_func=lambda m: None,
        )
        outcome = probe.check("box")
        assert outcome.reachable
        assert outcome.reason == ""
        assert probe.test_reachable("box")

    def test_check_failures(self):
        """Test that every failure comes back with a reason."""
        cprint(f"\n--- {self.test_check_failures.__doc__}", "cyan")
        log = lambda m: None
        auth = RemoteProbe(
            FakeShell({"pwd": paramiko.AuthenticationException("no keys")}), log
        )
        assert auth.check("box") == (False, "authentication failed")

        refused = RemoteProbe(FakeShell({"pwd": CommandResult(1, "", "boom\n")}), log)
        assert refused.check("box") == (False, "boom")

        garbled = RemoteProbe(FakeShell({"pwd": CommandResult(0, "hello\n", "")}), log)
        outcome = garbled.check("box")
        assert not outcome.reachable
        assert "unexpected response" in outcome.reason

    def test_discover_home_directory(self):
        """Test home discovery and its None fallbacks."""
        cprint(f"\n--- {self.test_discover_home_directory.__doc__}", "cyan")
        log = lambda m: None
        ok = RemoteProbe(FakeShell({"pwd": CommandResult(0, "/home/u\n", "")}), log)
        assert ok.discover_home_directory("box") == "/home/u"

        broken = RemoteProbe(FakeShell({"pwd": OSError("reset")}), log)
        assert broken.discover_home_directory("box") is None

        odd = RemoteProbe(FakeShell({"pwd": CommandResult(0, "nonsense\n", "")}), log)
        assert odd.discover_home_directory("box") is None

    def test_detect_sync_tool_first_match(self):
        """Test that candidates are probed in order and probing stops at the first match."""
        cprint(f"\n--- {self.test_detect_sync_tool_first_match.__doc__}", "cyan")
        shell = FakeShell(
            {
                "/usr/local/bin/rsync --version": CommandResult(
                    0, "rsync  version 2.6.9  protocol version 29\n", ""
                ),
                "/usr/bin/rsync --version": CommandResult(
                    0, "rsync  version 3.2.7  protocol version 31\n", ""
                ),
                "/bin/rsync --version": CommandResult(
                    0, "rsync  version 3.2.7  protocol version 31\n", ""
                ),
            }
        )
        probe = RemoteProbe(
            shell,
            logger_func=lambda m: None,
            candidates=[
                "/opt/homebrew/bin/rsync",
                "/usr/local/bin/rsync",
                "/usr/bin/rsync",
                "/bin/rsync",
            ],
        )
        assert probe.detect_sync_tool_path("box") == "/usr/bin/rsync"
        assert [command for _, command in shell.commands] == [
            "/opt/homebrew/bin/rsync --version",
            "/usr/local/bin/rsync --version",
            "/usr/bin/rsync --version",
        ]

    def test_detect_sync_tool_none(self):
        """Test that no acceptable candidate gives None."""
        cprint(f"\n--- {self.test_detect_sync_tool_none.__doc__}", "cyan")
        shell = FakeShell({"/usr/bin/rsync --version": socket.timeout("slow")})
        probe = RemoteProbe(shell, logger_func=lambda m: None, candidates=["/usr/bin/rsync"])
        assert probe.detect_sync_tool_path("box") is None


class TestRemoteDirectoryService:
    """Test suite for remote listing and deletion commands."""

    def test_list_directory_quotes_path(self):
        """Test that the listing command quotes the path and parses the output."""
        cprint(f"\n--- {self.test_list_directory_quotes_path.__doc__}", "magenta")
        output = (
            "total 8\n"
            "drwxr-xr-x 2 u g 64 Jan  1 12:00 .\n"
            "drwxr-xr-x 2 u g 64 Jan  1 12:00 sub\n"
            "-rw-r--r-- 1 u g 10 Jan  1 12:00 a.txt\n"
        )
        shell = FakeShell(
            {"cd '/srv/my dir' && LC_ALL=C ls -la": CommandResult(0, output, "")}
        )
        service = RemoteDirectoryService(shell, logger_func=lambda m: None)

        entries = service.list_directory("box", "/srv/my dir")
        assert [e.full_path for e in entries] == ["/srv/my dir/sub", "/srv/my dir/a.txt"]

    def test_list_directory_failure(self):
        """Test that a failed listing raises with the remote stderr."""
        cprint(f"\n--- {self.test_list_directory_failure.__doc__}", "magenta")
        shell = FakeShell(
            {
                "cd /root && LC_ALL=C ls -la": CommandResult(
                    1, "", "cd: /root: Permission denied\n"
                )
            }
        )
        service = RemoteDirectoryService(shell, logger_func=lambda m: None)
        with pytest.raises(RemoteCommandError) as info:
            service.list_directory("box", "/root")
        assert info.value.exit_status == 1
        assert "Permission denied" in info.value.stderr

    def test_delete(self):
        """Test the delete command and refusal of the root."""
        cprint(f"\n--- {self.test_delete.__doc__}", "magenta")
        shell = FakeShell({"rm -rf -- /srv/b/old": CommandResult(0, "", "")})
        service = RemoteDirectoryService(shell, logger_func=lambda m: None)

        service.delete("box", "/srv/b/old")
        assert shell.commands == [("box", "rm -rf -- /srv/b/old")]

        for path in ("/", "", "//"):
            with pytest.raises(ValueError):
                service.delete("box", path)
        assert len(shell.commands) == 1

        with pytest.raises(RemoteCommandError):
            service.delete("box", "/srv/b/missing")


class TestRemoteShell:
    """Test suite for host resolution and the connection pool."""

    def test_resolve_host_with_config(self, ssh_config):
        """Test that ~/.ssh/config aliases fill in hostname, port, user and key."""
        cprint(f"\n--- {self.test_resolve_host_with_config.__doc__}", "blue")
        shell = RemoteShell(logger_func=lambda m: None, ssh_config_file=ssh_config)

        params = shell.resolve_host("box")
        assert params["hostname"] == "10.0.0.5"
        assert params["port"] == 2222
        assert params["username"] == "deploy"
        assert params["key_filename"] == [os.path.expanduser("~/.ssh/id_box")]

        assert shell.resolve_host("alice@box")["username"] == "alice"

    def test_resolve_host_without_config(self, tmp_path):
        """Test plain hosts when no config file exists."""
        cprint(f"\n--- {self.test_resolve_host_without_config.__doc__}", "blue")
        shell = RemoteShell(
            logger_func=lambda m: None, ssh_config_file=str(tmp_path / "missing")
        )
        assert shell.resolve_host("bob@server") == {
            "hostname": "server",
            "port": 22,
            "username": "bob",
        }
        assert shell.resolve_host("server")["username"] is None

    def test_run_reuses_pooled_connection(self, tmp_path):
        """Test that a command result is decoded and the connection pooled."""
        cprint(f"\n--- {self.test_run_reuses_pooled_connection.__doc__}", "blue")
        client = MagicMock()
        client.get_transport.return_value.is_active.return_value = True
        stdout = MagicMock()
        stdout.read.return_value = b"/home/u\n"
        stdout.channel.recv_exit_status.return_value = 0
        stderr = MagicMock()
        stderr.read.return_value = b""
        client.exec_command.return_value = (MagicMock(), stdout, stderr)

        shell = RemoteShell(
            logger_func=lambda m: None, ssh_config_file=str(tmp_path / "missing")
        )
        with patch.object(RemoteShell, "_create_connection", return_value=client) as create:
            first = shell.run("box", "pwd")
            second = shell.run("box", "pwd")

        assert first == CommandResult(0, "/home/u\n", "")
        assert second.ok
        create.assert_called_once_with("box")
        assert shell.get_pool_status() == {"box": 1}

        shell.close_all()
        client.close.assert_called_once()
        assert shell.get_pool_status() == {}

    def test_stderr_drained_while_stdout_blocks(self, tmp_path):
        """Test that stderr is read while stdout is still waiting for the command."""
        cprint(f"\n--- {self.test_stderr_drained_while_stdout_blocks.__doc__}", "blue")
        stderr_drained = threading.Event()

        def read_stderr():
            stderr_drained.set()
            return b"warning: noisy\n"

        def read_stdout():
            # A remote command blocked on a full stderr window never closes stdout.
            assert stderr_drained.wait(5)
            return b"done\n"

        client = MagicMock()
        client.get_transport.return_value.is_active.return_value = True
        stdout = MagicMock()
        stdout.read.side_effect = read_stdout
        stdout.channel.recv_exit_status.return_value = 0
        stderr = MagicMock()
        stderr.read.side_effect = read_stderr
        client.exec_command.return_value = (MagicMock(), stdout, stderr)

        shell = RemoteShell(
            logger_func=lambda m: None, ssh_config_file=str(tmp_path / "missing")
        )
        with patch.object(RemoteShell, "_create_connection", return_value=client):
            result = shell.run("box", "ls")

        assert result == CommandResult(0, "done\n", "warning: noisy\n")

    def test_dead_connection_replaced(self, tmp_path):
        """Test that a pooled connection with a dead transport is not reused."""
        cprint(f"\n--- {self.test_dead_connection_replaced.__doc__}", "blue")
        dead = MagicMock()
        dead.get_transport.return_value.is_active.return_value = True
        fresh = MagicMock()
        fresh.get_transport.return_value.is_active.return_value = True

        shell = RemoteShell(
            logger_func=lambda m: None, ssh_config_file=str(tmp_path / "missing")
        )
        with patch.object(
            RemoteShell, "_create_connection", side_effect=[dead, fresh]
        ) as create:
            with shell.get_connection("box") as conn:
                assert conn is dead
            dead.get_transport.return_value.is_active.return_value = False
            with shell.get_connection("box") as conn:
                assert conn is fresh

        assert create.call_count == 2
        dead.close.assert_called()
