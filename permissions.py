"""Playlist access decisions: owner, then collaborator level, then public view."""

from typing import Optional

from errors import PermissionDenied
from schemas import Collaborator, Playlist

LEVELS = {"view": 1, "edit": 2, "admin": 3}


def find_collaborator(playlist: Playlist, user_id: Optional[str]) -> Optional[Collaborator]:
    if user_id is None:
        return None
    for collaborator in playlist.collaborators:
        if collaborator.user_id == user_id:
            return collaborator
    return None


def has_permission(playlist: Playlist, user_id: Optional[str], required: str) -> bool:
    if required not in LEVELS:
        raise ValueError(f"Unknown permission level: {required}")
    if user_id is not None and user_id == playlist.owner:
        return True
    collaborator = find_collaborator(playlist, user_id)
    if collaborator is not None:
        return LEVELS[collaborator.permission] >= LEVELS[required]
    return required == "view" and playlist.privacy == "public"


def require_permission(playlist: Playlist, user_id: Optional[str], required: str) -> None:
    if not has_permission(playlist, user_id, required):
        raise PermissionDenied("Access denied to this playlist")
