#!/usr/bin/env python3
"""
PSLog - Console Logging Helper

Default logger function shared by the PairSync services.

 Author: Gino Bogo
License: MIT
Version: 1.0
"""

from datetime import datetime


def console_log(message: str):
    """Log message to console.

    Args:
        message: Message to log
    """
    print(f"[{datetime.now().strftime('%H:%M:%S')}] {message}")
