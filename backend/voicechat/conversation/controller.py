"""
Conversation Controller - sequences capture, reasoning and playback.

Every change goes through dispatch(): the reducer decides the new state and
which adapter calls to make, the controller stores the state, notifies the
presentation layer and performs those calls. Adapter callbacks come back
as events tagged with the turn that issued them.

Everything runs on one asyncio loop; there are no locks because nothing
runs in parallel, only interleaved callbacks.
"""

import asyncio
import logging
from typing import Callable, Coroutine, Optional

from voicechat.capture.base import CaptureSession
from voicechat.config import settings
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
from voicechat.conversation.reducer import reduce
from voicechat.conversation.state import ConversationState, TurnPhase
from voicechat.errors import ServiceError
from voicechat.playback.base import PlaybackSession
from voicechat.reasoning.client import ReasoningClient

logger = logging.getLogger(__name__)


class ConversationController:
    """
    Owns the turn state machine for one voice session.

    Intents: toggle_capture(), toggle_mute().
    Permission: resolve_microphone_access(granted), once at startup.
    Observable: note, reply, is_listening, is_assistant_speaking,
    is_muted, has_microphone_access.
    """

    def __init__(
        self,
        capture: CaptureSession,
        playback: PlaybackSession,
        reasoning: ReasoningClient,
        on_state_change: Optional[Callable[[ConversationState], None]] = None,
        service_error_reply: Optional[str] = None,
        capture_end_timeout_s: Optional[float] = None,
    ):
        self.capture = capture
        self.playback = playback
        self.reasoning = reasoning
        self.on_state_change = on_state_change

        self.service_error_reply = service_error_reply or settings.service_error_reply
        self.capture_end_timeout_s = (
            capture_end_timeout_s
            if capture_end_timeout_s is not None
            else settings.capture_end_timeout_s
        )

        self._state = ConversationState()
        self._tasks: set[asyncio.Task] = set()
        # Last open/close call; the next one waits for it
        self._capture_op: Optional[asyncio.Task] = None
        self._closed = False

    # Observable state

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def phase(self) -> TurnPhase:
        return self._state.phase

    @property
    def turn_id(self) -> int:
        return self._state.turn_id

    @property
    def note(self) -> str:
        return self._state.transcript

    @property
    def reply(self) -> str:
        return self._state.reply

    @property
    def is_listening(self) -> bool:
        return self._state.is_listening

    @property
    def is_assistant_speaking(self) -> bool:
        return self._state.speaking

    @property
    def is_muted(self) -> bool:
        return self._state.muted

    @property
    def has_microphone_access(self) -> bool:
        return self._state.microphone_authorized

    # Intents

    def toggle_capture(self):
        """Start a turn, or stop capturing and submit what was said."""
        self.dispatch(ToggleCapture())

    def toggle_mute(self):
        """Flip the mute preference; muting silences any reply in progress."""
        self.dispatch(ToggleMute())

    def resolve_microphone_access(self, granted: bool):
        """Record the host's answer to the microphone permission request."""
        self.dispatch(MicrophoneAccessResolved(granted=granted))

    # State transitions

    def dispatch(self, event: Event):
        """
        Apply an event and perform the resulting adapter calls.

        Args:
            event: Intent or adapter callback
        """
        if self._closed:
            logger.debug(f"Controller shut down - dropping {type(event).__name__}")
            return

        previous = self._state
        transition = reduce(previous, event, service_error_reply=self.service_error_reply)
        self._state = transition.state

        if transition.state != previous:
            if transition.state.phase != previous.phase:
                logger.info(
                    f"Turn {transition.state.turn_id}: "
                    f"{previous.phase.value} → {transition.state.phase.value} "
                    f"({type(event).__name__})"
                )
            self._notify_state_change()

        for effect in transition.effects:
            self._run_effect(effect)

    def _notify_state_change(self):
        """Notify state change via callback."""
        if self.on_state_change is None:
            return
        try:
            self.on_state_change(self._state)
        except Exception as e:
            logger.error(f"Error in state change callback: {e}")

    def _run_effect(self, effect: Effect):
        if isinstance(effect, OpenCapture):
            self._chain_capture_op(self._open_capture, effect.turn_id)
        elif isinstance(effect, CloseCapture):
            self._chain_capture_op(self._close_capture, effect.turn_id)
        elif isinstance(effect, AskReasoning):
            self._spawn(self._ask(effect.prompt, effect.turn_id))
        elif isinstance(effect, StartPlayback):
            self._start_playback(effect.text, effect.turn_id)
        elif isinstance(effect, CancelPlayback):
            logger.info(f"Turn {effect.turn_id}: cancelling playback")
            self.playback.cancel()

    # Capture

    def _chain_capture_op(self, operation: Callable[[int], Coroutine], turn_id: int):
        """Run a capture open/close only after the previous one settles."""
        previous = self._capture_op

        async def run():
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            await operation(turn_id)

        self._capture_op = self._spawn(run())

    async def _open_capture(self, turn_id: int):
        try:
            await self.capture.open(
                on_update=lambda text: self.dispatch(CaptureUpdated(text=text, turn_id=turn_id)),
                on_end=lambda: self.dispatch(CaptureEnded(turn_id=turn_id)),
            )
        except Exception as e:
            logger.error(f"Turn {turn_id}: failed to open capture: {e}")
            self.dispatch(CaptureEnded(turn_id=turn_id))

    async def _close_capture(self, turn_id: int):
        try:
            await self.capture.close()
        except Exception as e:
            logger.warning(f"Turn {turn_id}: error while closing capture: {e}")

        if self._state.turn_id == turn_id and self._state.capture_active:
            self._spawn(self._capture_end_watchdog(turn_id))

    async def _capture_end_watchdog(self, turn_id: int):
        """Force the capture end if the session never reports it."""
        await asyncio.sleep(self.capture_end_timeout_s)
        if self._state.turn_id == turn_id and self._state.capture_active:
            logger.warning(
                f"Turn {turn_id}: no capture end after {self.capture_end_timeout_s}s - forcing it"
            )
            self.dispatch(CaptureEnded(turn_id=turn_id))

    # Reasoning

    async def _ask(self, prompt: str, turn_id: int):
        try:
            reply = await self.reasoning.ask(prompt)
        except ServiceError as e:
            self.dispatch(ReasoningFailed(message=str(e), turn_id=turn_id))
            return
        except Exception as e:
            logger.error(f"Turn {turn_id}: unexpected reasoning error: {e}", exc_info=True)
            self.dispatch(ReasoningFailed(message=str(e), turn_id=turn_id))
            return

        self.dispatch(ReasoningSucceeded(reply=reply, turn_id=turn_id))

    # Playback

    def _start_playback(self, text: str, turn_id: int):
        logger.info(f"Turn {turn_id}: speaking reply ({len(text)} chars)")
        try:
            self.playback.speak(
                text,
                on_start=lambda: self.dispatch(PlaybackStarted(turn_id=turn_id)),
                on_finish=lambda: self.dispatch(PlaybackFinished(turn_id=turn_id)),
            )
        except Exception as e:
            logger.error(f"Turn {turn_id}: failed to start playback: {e}")
            self.dispatch(PlaybackFinished(turn_id=turn_id))

    # Lifecycle

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def shutdown(self):
        """Release both sessions and drop anything still in flight."""
        if self._closed:
            return
        self._closed = True

        self.playback.cancel()

        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        try:
            await self.capture.close()
        except Exception as e:
            logger.warning(f"Error closing capture on shutdown: {e}")

        logger.info("ConversationController shut down")
