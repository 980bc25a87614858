"""
Turn state machine as a pure function.

    reduce(state, event) -> Transition(state, effects)

State Flow:
IDLE → CAPTURING → THINKING → SPEAKING → IDLE
          ↓ (capture lost)  ↓ (failure / muted / empty reply)
         IDLE              IDLE

Rules worth knowing:
- Results from adapters carry the turn_id they were issued for. Anything
  whose turn_id is not the current one is stale and dropped.
- After the user stops capture, the reasoning call is only issued once the
  capture session reports its end, so the submitted prompt is the last
  transcript the session delivered.
- Muting while speaking cancels playback exactly once; a finish callback
  arriving afterwards finds the phase already IDLE and does nothing.
"""

import logging
from typing import NamedTuple

from voicechat.conversation.events import (
    AskReasoning,
    CancelPlayback,
    CaptureEnded,
    CaptureUpdated,
    CloseCapture,
    Effect,
    Event,
    MicrophoneAccessResolved,
    OpenCapture,
    PlaybackFinished,
    PlaybackStarted,
    ReasoningFailed,
    ReasoningSucceeded,
    StartPlayback,
    ToggleCapture,
    ToggleMute,
)
from voicechat.conversation.state import ConversationError, ConversationState, TurnPhase

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_ERROR_REPLY = "Sorry, I couldn't reach the assistant. Please try again."


class Transition(NamedTuple):
    state: ConversationState
    effects: tuple[Effect, ...] = ()


def reduce(
    state: ConversationState,
    event: Event,
    service_error_reply: str = DEFAULT_SERVICE_ERROR_REPLY,
) -> Transition:
    """
    Apply one event to the conversation state.

    Args:
        state: Current state
        event: Intent or adapter callback
        service_error_reply: Text placed in ``reply`` when reasoning fails

    Returns:
        New state plus the adapter calls to make, in order
    """
    if isinstance(event, ToggleCapture):
        return _toggle_capture(state)
    if isinstance(event, ToggleMute):
        return _toggle_mute(state)
    if isinstance(event, CaptureUpdated):
        return _capture_updated(state, event)
    if isinstance(event, CaptureEnded):
        return _capture_ended(state, event)
    if isinstance(event, ReasoningSucceeded):
        return _reasoning_succeeded(state, event)
    if isinstance(event, ReasoningFailed):
        return _reasoning_failed(state, event, service_error_reply)
    if isinstance(event, PlaybackStarted):
        return _playback_started(state, event)
    if isinstance(event, PlaybackFinished):
        return _playback_finished(state, event)
    if isinstance(event, MicrophoneAccessResolved):
        return _microphone_access(state, event)
    raise TypeError(f"Unknown conversation event: {event!r}")


def _toggle_capture(state: ConversationState) -> Transition:
    if not state.microphone_authorized:
        logger.warning("Capture toggled without microphone access - ignoring")
        return Transition(state)

    if state.phase == TurnPhase.CAPTURING:
        if not state.transcript.strip():
            logger.info(f"Turn {state.turn_id}: stopped with empty transcript")
            new_state = state.model_copy(update={
                "phase": TurnPhase.IDLE,
                "capture_active": False,
            })
            return Transition(new_state, (CloseCapture(state.turn_id),))

        logger.info(f"Turn {state.turn_id}: capture stopped, waiting for final transcript")
        new_state = state.model_copy(update={"phase": TurnPhase.THINKING})
        return Transition(new_state, (CloseCapture(state.turn_id),))

    if state.awaiting_capture_end:
        logger.info(f"Turn {state.turn_id}: capture still closing - ignoring toggle")
        return Transition(state)

    if state.phase == TurnPhase.IDLE or state.reasoning_in_flight:
        if state.reasoning_in_flight:
            logger.info(f"Turn {state.turn_id}: abandoned while waiting for reply")
        turn_id = state.turn_id + 1
        new_state = state.model_copy(update={
            "phase": TurnPhase.CAPTURING,
            "capture_active": True,
            "transcript": "",
            "turn_id": turn_id,
            "error": None,
        })
        logger.info(f"Turn {turn_id}: capture started")
        return Transition(new_state, (OpenCapture(turn_id),))

    logger.info(f"Capture toggled in {state.phase.value} - ignoring")
    return Transition(state)


def _toggle_mute(state: ConversationState) -> Transition:
    muted = not state.muted
    if muted and state.phase == TurnPhase.SPEAKING:
        logger.info(f"Turn {state.turn_id}: muted while speaking - cancelling playback")
        new_state = state.model_copy(update={
            "muted": True,
            "speaking": False,
            "phase": TurnPhase.IDLE,
        })
        return Transition(new_state, (CancelPlayback(state.turn_id),))

    return Transition(state.model_copy(update={"muted": muted}))


def _capture_updated(state: ConversationState, event: CaptureUpdated) -> Transition:
    if event.turn_id != state.turn_id or not state.capture_active:
        logger.debug(f"Dropping transcript update for closed turn {event.turn_id}")
        return Transition(state)
    if event.text == state.transcript:
        return Transition(state)
    return Transition(state.model_copy(update={"transcript": event.text}))


def _capture_ended(state: ConversationState, event: CaptureEnded) -> Transition:
    if event.turn_id != state.turn_id or not state.capture_active:
        logger.debug(f"Dropping capture end for closed turn {event.turn_id}")
        return Transition(state)

    if state.phase == TurnPhase.CAPTURING:
        logger.warning(f"Turn {state.turn_id}: capture ended unexpectedly - abandoning turn")
        new_state = state.model_copy(update={
            "phase": TurnPhase.IDLE,
            "capture_active": False,
            "error": ConversationError.CAPTURE_INTERRUPTED,
        })
        return Transition(new_state)

    prompt = state.transcript.strip()
    if not prompt:
        logger.info(f"Turn {state.turn_id}: final transcript empty - no request")
        new_state = state.model_copy(update={
            "phase": TurnPhase.IDLE,
            "capture_active": False,
        })
        return Transition(new_state)

    logger.info(f"Turn {state.turn_id}: capture closed, asking: {prompt[:50]}")
    new_state = state.model_copy(update={"capture_active": False})
    return Transition(new_state, (AskReasoning(state.transcript, state.turn_id),))


def _reasoning_succeeded(state: ConversationState, event: ReasoningSucceeded) -> Transition:
    if event.turn_id != state.turn_id or not state.reasoning_in_flight:
        logger.info(f"Discarding stale reply for turn {event.turn_id} (current {state.turn_id})")
        return Transition(state)

    if state.muted or not event.reply.strip():
        new_state = state.model_copy(update={
            "phase": TurnPhase.IDLE,
            "reply": event.reply,
        })
        return Transition(new_state)

    new_state = state.model_copy(update={
        "phase": TurnPhase.SPEAKING,
        "reply": event.reply,
        "speaking": True,
    })
    return Transition(new_state, (StartPlayback(event.reply, state.turn_id),))


def _reasoning_failed(
    state: ConversationState,
    event: ReasoningFailed,
    service_error_reply: str,
) -> Transition:
    if event.turn_id != state.turn_id or not state.reasoning_in_flight:
        logger.info(f"Discarding stale failure for turn {event.turn_id} (current {state.turn_id})")
        return Transition(state)

    logger.error(f"Turn {state.turn_id}: reasoning failed: {event.message}")
    new_state = state.model_copy(update={
        "phase": TurnPhase.IDLE,
        "reply": service_error_reply,
        "error": ConversationError.SERVICE_ERROR,
    })
    return Transition(new_state)


def _playback_started(state: ConversationState, event: PlaybackStarted) -> Transition:
    if event.turn_id == state.turn_id and state.phase == TurnPhase.SPEAKING:
        logger.debug(f"Turn {state.turn_id}: playback audible")
    return Transition(state)


def _playback_finished(state: ConversationState, event: PlaybackFinished) -> Transition:
    if event.turn_id != state.turn_id or state.phase != TurnPhase.SPEAKING:
        logger.debug(f"Ignoring playback finish for turn {event.turn_id}")
        return Transition(state)

    new_state = state.model_copy(update={
        "phase": TurnPhase.IDLE,
        "speaking": False,
    })
    return Transition(new_state)


def _microphone_access(state: ConversationState, event: MicrophoneAccessResolved) -> Transition:
    if state.microphone_authorized:
        return Transition(state)
    if event.granted:
        logger.info("Microphone access granted")
        return Transition(state.model_copy(update={
            "microphone_authorized": True,
            "error": None,
        }))
    logger.warning("Microphone access denied")
    return Transition(state.model_copy(update={"error": ConversationError.CAPTURE_UNAVAILABLE}))
