"""
Conversation state for one voice session.

The state is immutable; every transition produces a new value. It is
created once per session and only the controller holds the current value.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class TurnPhase(str, Enum):
    """Where the current turn is.

    - IDLE: Nothing in flight, waiting for the user
    - CAPTURING: Microphone open, transcript updating
    - THINKING: Capture stopped, waiting for capture end or the reply
    - SPEAKING: Reply is being vocalized
    """

    IDLE = "idle"
    CAPTURING = "capturing"
    THINKING = "thinking"
    SPEAKING = "speaking"


class ConversationError(str, Enum):
    """Error kinds surfaced to the presentation layer."""

    CAPTURE_UNAVAILABLE = "capture_unavailable"
    CAPTURE_INTERRUPTED = "capture_interrupted"
    SERVICE_ERROR = "service_error"


class ConversationState(BaseModel):
    """Authoritative snapshot owned by the ConversationController."""

    model_config = ConfigDict(frozen=True)

    phase: TurnPhase = TurnPhase.IDLE
    microphone_authorized: bool = False
    capture_active: bool = False
    transcript: str = ""
    reply: str = ""
    speaking: bool = False
    muted: bool = False
    turn_id: int = 0
    error: Optional[ConversationError] = None

    @property
    def is_listening(self) -> bool:
        return self.phase == TurnPhase.CAPTURING

    @property
    def awaiting_capture_end(self) -> bool:
        """Capture was stopped by the user but its end has not arrived yet."""
        return self.phase == TurnPhase.THINKING and self.capture_active

    @property
    def reasoning_in_flight(self) -> bool:
        return self.phase == TurnPhase.THINKING and not self.capture_active

    def snapshot(self) -> dict:
        """Fields read by the presentation layer, JSON-ready."""
        return {
            "note": self.transcript,
            "reply": self.reply,
            "is_listening": self.is_listening,
            "is_assistant_speaking": self.speaking,
            "is_muted": self.muted,
            "has_microphone_access": self.microphone_authorized,
            "phase": self.phase.value,
            "turn_id": self.turn_id,
            "error": self.error.value if self.error else None,
        }
