#!/usr/bin/env python3
"""
PSTheme - Centralized Color Definitions

Defines the color palette used by the PairSync window.

 Author: Gino Bogo
License: MIT
Version: 1.0
"""


def get_theme_colors():
    """Return a dictionary containing all color definitions used in the application."""
    return {
        "modes": {
            "Force": {"bg": "#FFCC80", "fg": "black"},
            "Slurp": {"bg": "#87CEFA", "fg": "black"},
        },
        "connection": {
            "Disconnected": "gray",
            "Connecting": "orange",
            "Connected": "green",
            "Failed": "red",
        },
        "log": {
            "background": "#101018",
            "text": "#E6E6E6",
            "error": "#FF6B6B",
            "time": "#808080",
        },
        "entries": {
            "directory": "#0077AA",
            "file": "black",
        },
    }
