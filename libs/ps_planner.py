#!/usr/bin/env python3
"""
PSPlanner - Sync Planning

Turns the state of both panes into the exact rsync arguments for one run.
Deterministic and free of I/O: the same inputs always give the same request.

Trailing slashes matter to rsync. "src/" means "the contents of src" while
"src" means "src itself", so a whole-directory sync ends both sides with one
slash and a selection sync passes each selected item without one.

 Author: Gino Bogo
License: MIT
Version: 1.0
"""

from __future__ import annotations

from typing import Iterable, Optional

from libs.ps_models import (
    Endpoint,
    SyncConfigurationError,
    SyncDirection,
    SyncMode,
    SyncRequest,
)


REMOTE_TOOL_FLAG = "--rsync-path"


def with_trailing_slash(path: str) -> str:
    """Return `path` ending in exactly one '/'."""
    return path.rstrip("/") + "/"


def without_trailing_slash(path: str) -> str:
    """Return `path` with trailing '/' removed; the root stays '/'."""
    return path.rstrip("/") or "/"


def resolve_sides(
    left: Optional[Endpoint], right: Optional[Endpoint], direction: SyncDirection
) -> tuple:
    """Order the endpoints as (source, destination) for `direction`.

    Raises:
        SyncConfigurationError: If either side is missing, or both are remote
    """
    if direction is SyncDirection.LEFT_TO_RIGHT:
        source, destination = left, right
    else:
        source, destination = right, left

    if source is None or not source.path:
        raise SyncConfigurationError("No source selected")
    if destination is None or not destination.path:
        raise SyncConfigurationError("No destination selected")
    if source.is_remote and destination.is_remote:
        raise SyncConfigurationError("Source and destination cannot both be remote")
    return source, destination


def plan_sync(
    left: Optional[Endpoint],
    right: Optional[Endpoint],
    direction: SyncDirection,
    mode: SyncMode,
    selection: Iterable[str] = (),
    remote_tool_path: Optional[str] = None,
) -> SyncRequest:
    """Build the rsync request for one sync action.

    Args:
        left: Endpoint of the left pane
        right: Endpoint of the right pane
        direction: Which pane is the source
        mode: Force (mirror, deletes extras) or Slurp (copy only)
        selection: Absolute paths selected on the source side, in order
        remote_tool_path: rsync location detected on the remote side, if any

    Returns:
        The SyncRequest to hand to the executor

    Raises:
        SyncConfigurationError: If the endpoints cannot form a sync
    """
    source, destination = resolve_sides(left, right, direction)
    selection = list(selection)

    if selection:
        sources = tuple(source.render(without_trailing_slash(p)) for p in selection)
    else:
        sources = (source.render(with_trailing_slash(source.path)),)

    target = destination.render(with_trailing_slash(destination.path))

    flags = list(mode.flags)
    if remote_tool_path and (source.is_remote or destination.is_remote):
        flags.append(f"{REMOTE_TOOL_FLAG}={remote_tool_path}")

    return SyncRequest(sources=sources, destination=target, flags=tuple(flags))
