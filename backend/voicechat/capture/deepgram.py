"""
Deepgram streaming capture session.

One websocket per turn. Microphone audio arrives from the client through
feed_audio(); transcripts come back as interim and final segments and are
folded into full-text snapshots for the controller.

There is no reconnection: if the stream drops mid-turn the session ends and
the controller abandons the turn.
"""

import asyncio
import json
import logging
from typing import Callable, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import WebSocketException

from voicechat.config import settings

logger = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"


class DeepgramCaptureSession:
    """
    CaptureSession backed by Deepgram's streaming API.

    Features:
    - Interim results so the note updates while the user speaks
    - Audio queue with keepalive on silence
    - Exactly one on_end per open(), whatever stops the stream
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        sample_rate: int = 16000,
        close_timeout_s: float = 2.0,
    ):
        self.api_key = api_key if api_key is not None else settings.deepgram_api_key
        self.sample_rate = sample_rate
        self.close_timeout_s = close_timeout_s

        self.ws: Optional[ClientConnection] = None
        self.is_connected = False
        self.is_closing = False
        self._receive_task: Optional[asyncio.Task] = None
        self._send_task: Optional[asyncio.Task] = None
        self._audio_queue: asyncio.Queue = asyncio.Queue(maxsize=100)

        self._on_update: Optional[Callable[[str], None]] = None
        self._on_end: Optional[Callable[[], None]] = None
        self._final_segments: list[str] = []
        self._interim = ""

    async def open(
        self,
        on_update: Callable[[str], None],
        on_end: Callable[[], None],
    ) -> None:
        """
        Connect to Deepgram and start streaming.

        Raises:
            OSError, WebSocketException: If the connection cannot be made
        """
        if self.is_connected:
            logger.warning("Capture already open - closing previous stream first")
            await self.close()

        self._on_update = on_update
        self._on_end = on_end
        self._final_segments = []
        self._interim = ""
        self.is_closing = False
        self._audio_queue = asyncio.Queue(maxsize=100)

        params = {
            "encoding": "linear16",
            "sample_rate": self.sample_rate,
            "channels": 1,
            "interim_results": "true",
            "punctuate": "true",
        }
        query_string = "&".join(f"{k}={v}" for k, v in params.items())
        url = f"{DEEPGRAM_LISTEN_URL}?{query_string}"

        try:
            self.ws = await connect(
                url,
                additional_headers={"Authorization": f"Token {self.api_key}"},
                ping_interval=10,
                ping_timeout=5,
            )
        except Exception:
            self._on_update = None
            self._on_end = None
            raise

        self.is_connected = True
        logger.info("Connected to Deepgram streaming API")

        self._receive_task = asyncio.create_task(self._receive_loop())
        self._send_task = asyncio.create_task(self._send_loop())

    async def close(self) -> None:
        """
        Gracefully close the stream. Safe to call at any time.

        Deepgram answers CloseStream with the remaining final results and
        then closes its side; those are folded in before on_end fires.
        """
        if self.is_closing or not self.is_connected:
            return

        self.is_closing = True
        self.is_connected = False

        await self._stop_task(self._send_task)

        # Ask Deepgram to flush, then wait for it to hang up
        if self.ws:
            try:
                await self.ws.send(json.dumps({"type": "CloseStream"}))
            except Exception as e:
                logger.warning(f"Error sending CloseStream to Deepgram: {e}")

        receive_task = self._receive_task
        if receive_task and not receive_task.done() and receive_task is not asyncio.current_task():
            try:
                await asyncio.wait_for(asyncio.shield(receive_task), timeout=self.close_timeout_s)
            except asyncio.TimeoutError:
                logger.warning(f"Deepgram did not close within {self.close_timeout_s}s - dropping stream")

        if self.ws:
            try:
                await self.ws.close()
            except Exception as e:
                logger.warning(f"Error during Deepgram disconnect: {e}")

        await self._stop_task(receive_task)

        logger.info("Disconnected from Deepgram")
        self._finish()

    async def _stop_task(self, task: Optional[asyncio.Task]):
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def feed_audio(self, audio_data: bytes):
        """
        Queue a microphone chunk for Deepgram.

        Args:
            audio_data: Raw PCM audio bytes (16kHz mono)
        """
        if not self.is_connected:
            logger.debug("Dropping audio: capture not open")
            return

        try:
            await asyncio.wait_for(self._audio_queue.put(audio_data), timeout=0.1)
        except asyncio.TimeoutError:
            logger.warning("Audio queue full - dropping chunk to prevent blocking")

    @property
    def transcript(self) -> str:
        """Everything recognized so far in this stream."""
        parts = [*self._final_segments]
        if self._interim:
            parts.append(self._interim)
        return " ".join(parts)

    def _finish(self):
        on_end = self._on_end
        self._on_end = None
        self._on_update = None
        if on_end is not None:
            on_end()

    async def _send_loop(self):
        """Drain the audio queue; keep the stream alive during silence."""
        try:
            while not self.is_closing:
                try:
                    audio_data = await asyncio.wait_for(self._audio_queue.get(), timeout=5.0)
                    if self.ws and self.is_connected:
                        await self.ws.send(audio_data)
                except asyncio.TimeoutError:
                    if self.ws and self.is_connected:
                        await self.ws.send(json.dumps({"type": "KeepAlive"}))
        except asyncio.CancelledError:
            logger.debug("Send loop cancelled")
        except WebSocketException as e:
            logger.error(f"Error sending audio to Deepgram: {e}")
            await self._lost()

    async def _receive_loop(self):
        """Read transcript messages until the stream ends."""
        try:
            async for message in self.ws:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError as e:
                    logger.error(f"Invalid JSON from Deepgram: {e}")
                    continue
                self._handle_message(data)
        except asyncio.CancelledError:
            logger.debug("Receive loop cancelled")
            return
        except WebSocketException as e:
            logger.error(f"WebSocket error in receive loop: {e}")

        if not self.is_closing:
            await self._lost()

    async def _lost(self):
        """The stream ended without close() being requested."""
        if self.is_closing:
            return
        logger.warning("Deepgram stream ended unexpectedly")
        await self.close()

    def _handle_message(self, data: dict):
        """
        Fold one Deepgram message into the transcript snapshot.

        Args:
            data: Parsed JSON message from Deepgram
        """
        if "error" in data:
            logger.error(f"Deepgram error: {data['error']}")
            return

        channel = data.get("channel")
        if not isinstance(channel, dict) or not channel.get("alternatives"):
            return

        alternative = channel["alternatives"][0]
        text = alternative.get("transcript", "").strip()

        if data.get("is_final", False):
            if text:
                self._final_segments.append(text)
            self._interim = ""
        else:
            self._interim = text

        if self._on_update is not None:
            self._on_update(self.transcript)
