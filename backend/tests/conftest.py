import asyncio
from typing import Callable, Optional

import pytest
import pytest_asyncio

from voicechat.conversation.controller import ConversationController
from voicechat.errors import ServiceError


class FakeCapture:
    """Capture session driven by the test through update() / end()."""

    def __init__(self, fail_open: bool = False):
        self.fail_open = fail_open
        self.open_calls = 0
        self.close_calls = 0
        self.audio: list[bytes] = []
        self.on_update: Optional[Callable[[str], None]] = None
        self.on_end: Optional[Callable[[], None]] = None

    async def open(self, on_update, on_end):
        self.open_calls += 1
        if self.fail_open:
            raise OSError("microphone stream unavailable")
        self.on_update = on_update
        self.on_end = on_end

    async def close(self):
        self.close_calls += 1

    async def feed_audio(self, audio_data: bytes):
        self.audio.append(audio_data)

    def update(self, text: str):
        self.on_update(text)

    def end(self):
        self.on_end()


class FakePlayback:
    """Playback session that records calls; the test fires start/finish."""

    def __init__(self):
        self.spoken: list[str] = []
        self.cancel_calls = 0
        self.client_finished = 0
        self.live = 0
        self.max_live = 0
        self.on_start: Optional[Callable[[], None]] = None
        self.on_finish: Optional[Callable[[], None]] = None

    def speak(self, text, on_start, on_finish):
        self.spoken.append(text)
        self.on_start = on_start
        self.on_finish = on_finish
        self.live += 1
        self.max_live = max(self.max_live, self.live)

    def cancel(self):
        self.cancel_calls += 1
        if self.live:
            self.live -= 1

    def mark_client_finished(self):
        self.client_finished += 1

    def start(self):
        self.on_start()

    def finish(self):
        if self.live:
            self.live -= 1
        self.on_finish()


class FakeReasoning:
    """Reasoning client whose replies are released by the test."""

    def __init__(self):
        self.prompts: list[str] = []
        self.pending: list[asyncio.Future] = []

    async def ask(self, text: str) -> str:
        self.prompts.append(text)
        future = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        return await future

    def resolve(self, reply: str, index: int = -1):
        self.pending[index].set_result(reply)

    def fail(self, message: str = "boom", index: int = -1):
        self.pending[index].set_exception(ServiceError(message, status=502))


@pytest.fixture
def capture():
    return FakeCapture()


@pytest.fixture
def playback():
    return FakePlayback()


@pytest.fixture
def reasoning():
    return FakeReasoning()


@pytest.fixture
def settle():
    """Let spawned tasks run until the loop is quiet."""
    async def _settle():
        for _ in range(10):
            await asyncio.sleep(0)
    return _settle


@pytest_asyncio.fixture
async def controller(capture, playback, reasoning):
    """Controller with microphone access already granted."""
    states = []
    controller = ConversationController(
        capture=capture,
        playback=playback,
        reasoning=reasoning,
        on_state_change=states.append,
        service_error_reply="Something went wrong.",
        capture_end_timeout_s=0.05,
    )
    controller.states = states
    controller.resolve_microphone_access(True)
    yield controller
    await controller.shutdown()
