#!/usr/bin/env python3
"""
PSLocal - Local Directory Listing

 Author: Gino Bogo
License: MIT
Version: 1.0
"""

from __future__ import annotations

import os

from datetime import datetime

from libs.ps_log import console_log
from libs.ps_models import DirectoryEntry, sort_entries


class LocalLister:
    """Lists one local directory level for display in a pane."""

    def __init__(self, logger_func=None, show_hidden: bool = False):
        self.log = logger_func or console_log
        self.show_hidden = show_hidden

    def list(self, path: str) -> list:
        """List the entries of a local directory.

        Never raises: unreadable directories yield an empty list and unreadable
        entries are left out.

        Args:
            path: Local directory

        Returns:
            Entries sorted directories first, then case-insensitively by name
        """
        entries = []
        try:
            with os.scandir(path) as it:
                for item in it:
                    if not self.show_hidden and item.name.startswith("."):
                        continue
                    try:
                        is_dir = item.is_dir()
                        stat_info = item.stat()
                    except OSError as e:
                        self.log(f"Error accessing {item.path}: {str(e)}")
                        continue
                    entries.append(
                        DirectoryEntry(
                            name=item.name,
                            full_path=item.path,
                            is_directory=is_dir,
                            size_bytes=0 if is_dir else stat_info.st_size,
                            modified_at=datetime.fromtimestamp(stat_info.st_mtime),
                        )
                    )
        except OSError as e:
            self.log(f"Error scanning folder {path}: {str(e)}")
            return []
        return sort_entries(entries)


def home_directory() -> str:
    return os.path.expanduser("~")
