"""Exception types raised at the adapter boundaries."""

from typing import Optional


class VoiceChatError(Exception):
    """Base class for voice chat errors."""


class ServiceError(VoiceChatError):
    """
    The reasoning call failed: transport error, timeout, non-2xx status,
    or a payload without a string ``response``.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class PlaybackError(VoiceChatError):
    """Speech synthesis could not produce audio."""
