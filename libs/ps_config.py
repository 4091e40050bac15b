#!/usr/bin/env python3
"""
PSConfig - Application Settings

Loads and saves `pair_sync.json`: window geometry, last paths and hosts per
pane, host history, default sync direction, rsync search paths and SSH
timeouts.

 Author: Gino Bogo
License: MIT
Version: 1.0
"""

from __future__ import annotations

import json
import os

from dataclasses import dataclass, field

from libs.ps_executor import LOCAL_RSYNC_CANDIDATES
from libs.ps_log import console_log
from libs.ps_models import SyncDirection
from libs.ps_remote import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_POOL_SIZE,
    REMOTE_RSYNC_CANDIDATES,
)


# ============================================================================
# CONSTANTS
# ============================================================================

CONFIG_FILE = "pair_sync.json"
HISTORY_LENGTH = 10


@dataclass
class PairSyncConfig:
    geometry: str = ""
    left_path: str = ""
    left_host: str = ""
    right_path: str = ""
    right_host: str = ""
    hosts: list = field(default_factory=list)
    direction: str = SyncDirection.LEFT_TO_RIGHT.value
    local_candidates: list = field(default_factory=lambda: list(LOCAL_RSYNC_CANDIDATES))
    remote_candidates: list = field(default_factory=lambda: list(REMOTE_RSYNC_CANDIDATES))
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    pool_size: int = DEFAULT_POOL_SIZE

    @property
    def sync_direction(self) -> SyncDirection:
        try:
            return SyncDirection(self.direction)
        except ValueError:
            return SyncDirection.LEFT_TO_RIGHT

    def remember_host(self, host: str):
        """Update host history (most-recent-first, deduped)."""
        if not host:
            return
        self.hosts = [h for h in self.hosts if h != host]
        self.hosts.insert(0, host)
        self.hosts = self.hosts[:HISTORY_LENGTH]

    def to_dict(self) -> dict:
        return {
            "WINDOW": {"geometry": self.geometry},
            "LEFT": {"path": self.left_path, "host": self.left_host},
            "RIGHT": {"path": self.right_path, "host": self.right_host},
            "HOSTS": self.hosts,
            "SYNC": {"direction": self.direction},
            "RSYNC": {
                "local_candidates": self.local_candidates,
                "remote_candidates": self.remote_candidates,
            },
            "SSH": {
                "connect_timeout": self.connect_timeout,
                "command_timeout": self.command_timeout,
                "pool_size": self.pool_size,
            },
        }


def _apply(config: PairSyncConfig, data: dict):
    window = data.get("WINDOW", {})
    config.geometry = window.get("geometry", config.geometry)

    left = data.get("LEFT", {})
    config.left_path = left.get("path", config.left_path)
    config.left_host = left.get("host", config.left_host)

    right = data.get("RIGHT", {})
    config.right_path = right.get("path", config.right_path)
    config.right_host = right.get("host", config.right_host)

    hosts = data.get("HOSTS", [])
    config.hosts = [h for h in hosts if isinstance(h, str) and h][:HISTORY_LENGTH]

    sync = data.get("SYNC", {})
    config.direction = sync.get("direction", config.direction)

    rsync = data.get("RSYNC", {})
    config.local_candidates = list(rsync.get("local_candidates", config.local_candidates))
    config.remote_candidates = list(rsync.get("remote_candidates", config.remote_candidates))

    ssh = data.get("SSH", {})
    config.connect_timeout = float(ssh.get("connect_timeout", config.connect_timeout))
    config.command_timeout = float(ssh.get("command_timeout", config.command_timeout))
    config.pool_size = int(ssh.get("pool_size", config.pool_size))


def load_config(path: str = CONFIG_FILE, logger_func=None) -> PairSyncConfig:
    """Load configuration from file.

    A missing file gives the defaults; an unreadable one logs a warning and
    gives the defaults too.
    """
    log = logger_func or console_log
    config = PairSyncConfig()
    if not os.path.exists(path):
        return config

    try:
        with open(path, "r") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("top level is not an object")
        _apply(config, data)
    except (json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
        log(f"Warning: Could not parse {path} ({e}). Using defaults.")
        return PairSyncConfig()
    return config


def save_config(config: PairSyncConfig, path: str = CONFIG_FILE):
    """Save configuration to file."""
    with open(path, "w") as f:
        json.dump(config.to_dict(), f, indent=4)
