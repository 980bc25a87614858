"""Speech playback contract consumed by the ConversationController."""

from typing import Callable, Protocol


class PlaybackSession(Protocol):
    """Text-to-speech for a single utterance at a time."""

    def speak(
        self,
        text: str,
        on_start: Callable[[], None],
        on_finish: Callable[[], None],
    ) -> None:
        """
        Begin vocalizing ``text`` without blocking.

        ``on_start`` fires once when audio begins. ``on_finish`` fires once
        when the utterance completes, and never if it was cancelled.
        """

    def cancel(self) -> None:
        """Halt audio output immediately. No-op when nothing is speaking."""
