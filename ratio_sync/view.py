"""Status projection: runtime flags and lifecycle states to (message, type, icon)."""

from __future__ import annotations

from typing import Optional

from .models.summary import STATE_IDLE, STATE_PAUSED, STATE_RUNNING

Status = tuple[str, str, Optional[str]]

READY = ("Ready to start faking", "idle", None)
PAUSED = ("Paused", "idle", "pause")
IDLING = ("Idling - No peers available", "idling", "moon")
RUNNING = ("Actively faking ratio...", "running", "rocket")
NO_TORRENT = ("Select a torrent file to begin", "warning", None)
TORRENT_UNAVAILABLE = ("Torrent data unavailable", "warning", None)
TORRENT_MISSING = ("Torrent file not found - please select again", "warning", None)
REUPLOAD = ("Please re-upload your torrent file", "warning", None)
FROM_GRID = ("Loaded from grid view", "idle", None)

ORIGIN_SERVER = "server"
ORIGIN_WATCH_FOLDER = "watch_folder"

_SERVER_WORDING = {
    ORIGIN_SERVER: ("restored from server", "Ready to start faking"),
    ORIGIN_WATCH_FOLDER: (
        "added from watch folder",
        "Ready to start - added from watch folder",
    ),
}


def server_status(state: str, origin: str) -> Status:
    """Status for a record built from a full backend instance."""
    suffix, ready = _SERVER_WORDING[origin]
    if state == STATE_RUNNING:
        return (f"Running - {suffix}", "running", None)
    if state == STATE_PAUSED:
        return (f"Paused - {suffix}", "idle", None)
    return (ready, "idle", None)


def status_for_state(state: str | None) -> Status | None:
    """Status for a grid lifecycle state, or None when the state says "not running".

    Callers decide what a stopped record shows (ready vs. missing torrent).
    """
    s = (state or "").lower()
    if s == STATE_PAUSED:
        return PAUSED
    if s == STATE_IDLE:
        return IDLING
    if s in {STATE_RUNNING, "starting"}:
        return RUNNING
    return None


def status_for_flags(is_running: bool | None, is_paused: bool | None) -> Status | None:
    """Status for confirmed runtime flags; None if neither flag is known."""
    if is_paused:
        return PAUSED
    if is_running:
        return RUNNING
    if is_running is False:
        return READY
    return None
