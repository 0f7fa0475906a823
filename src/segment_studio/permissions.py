"""Authorization hooks consulted before mutating segments or spending on transcription."""

from __future__ import annotations

from typing import Protocol

from .exceptions import PermissionDeniedError

__all__ = ["AllowAll", "PermissionChecker", "require_edit", "require_transcribe"]


class PermissionChecker(Protocol):
    def can_edit(self, episode_id: str) -> bool: ...

    def can_transcribe(self) -> bool: ...


class AllowAll:
    """Single-user default: every caller may edit and transcribe."""

    def can_edit(self, episode_id: str) -> bool:
        return True

    def can_transcribe(self) -> bool:
        return True


def require_edit(checker: PermissionChecker, episode_id: str) -> None:
    if not checker.can_edit(episode_id):
        raise PermissionDeniedError(f"Not allowed to edit episode {episode_id}.")


def require_transcribe(checker: PermissionChecker) -> None:
    if not checker.can_transcribe():
        raise PermissionDeniedError("Not allowed to generate transcripts.")
