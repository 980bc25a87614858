"""Speech capture contract consumed by the ConversationController."""

from typing import Callable, Protocol


class CaptureSession(Protocol):
    """Continuous speech-to-text stream for one turn at a time."""

    async def open(
        self,
        on_update: Callable[[str], None],
        on_end: Callable[[], None],
    ) -> None:
        """
        Begin continuous recognition.

        Args:
            on_update: Called with the full accumulated transcript so far
                (a snapshot, not a delta) every time it changes
            on_end: Called exactly once when recognition stops for any reason
        """

    async def close(self) -> None:
        """
        Request termination. Idempotent, never raises.

        ``on_end`` may be delivered before or after this returns.
        """
