"""
Messages flowing in and out of the conversation reducer.

Events are everything that can happen to a session: user intents, the
permission answer, and callbacks from the capture, reasoning and playback
adapters. Asynchronous callbacks carry the turn_id they were issued for.

Effects are the adapter calls a transition asks the controller to make.
"""

from dataclasses import dataclass
from typing import Union


# Events

@dataclass(frozen=True)
class MicrophoneAccessResolved:
    granted: bool


@dataclass(frozen=True)
class ToggleCapture:
    pass


@dataclass(frozen=True)
class ToggleMute:
    pass


@dataclass(frozen=True)
class CaptureUpdated:
    text: str
    turn_id: int


@dataclass(frozen=True)
class CaptureEnded:
    turn_id: int


@dataclass(frozen=True)
class ReasoningSucceeded:
    reply: str
    turn_id: int


@dataclass(frozen=True)
class ReasoningFailed:
    message: str
    turn_id: int


@dataclass(frozen=True)
class PlaybackStarted:
    turn_id: int


@dataclass(frozen=True)
class PlaybackFinished:
    turn_id: int


Event = Union[
    MicrophoneAccessResolved,
    ToggleCapture,
    ToggleMute,
    CaptureUpdated,
    CaptureEnded,
    ReasoningSucceeded,
    ReasoningFailed,
    PlaybackStarted,
    PlaybackFinished,
]


# Effects

@dataclass(frozen=True)
class OpenCapture:
    turn_id: int


@dataclass(frozen=True)
class CloseCapture:
    turn_id: int


@dataclass(frozen=True)
class AskReasoning:
    prompt: str
    turn_id: int


@dataclass(frozen=True)
class StartPlayback:
    text: str
    turn_id: int


@dataclass(frozen=True)
class CancelPlayback:
    turn_id: int


Effect = Union[OpenCapture, CloseCapture, AskReasoning, StartPlayback, CancelPlayback]
