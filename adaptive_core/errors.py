"""Typed failures surfaced by the adaptive testing core.

Numerical edge cases (zero information, empty histories) are absorbed by
clamping and defaults and never show up here; only structural misuse does.
"""
from __future__ import annotations

from typing import Tuple


class AdaptiveTestingError(Exception):
    """Base class for adaptive testing errors."""


class SessionNotFound(AdaptiveTestingError):
    def __init__(self, key: Tuple[str, str]):
        self.key = key
        super().__init__(f"no adaptive session for user={key[0]!r} assessment={key[1]!r}")


class SessionAlreadyComplete(AdaptiveTestingError):
    def __init__(self, key: Tuple[str, str]):
        self.key = key
        super().__init__(f"adaptive session user={key[0]!r} assessment={key[1]!r} is already complete")


class DuplicateResponse(AdaptiveTestingError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"item {item_id!r} was already answered in this session")


class NoCandidateItems(AdaptiveTestingError):
    """Raised by the selector when nothing is left to ask.

    The engine treats this as forced termination rather than a failure.
    """


class InvalidConfig(AdaptiveTestingError, ValueError):
    pass


__all__ = [
    "AdaptiveTestingError",
    "SessionNotFound",
    "SessionAlreadyComplete",
    "DuplicateResponse",
    "NoCandidateItems",
    "InvalidConfig",
]
