"""
ElevenLabs playback session.

Synthesizes the reply with ElevenLabs' streaming endpoint and relays the
audio to the client, which plays it. The utterance is finished when the
client reports playback_complete, or after a safety timeout.
"""

import asyncio
import logging
from typing import AsyncGenerator, Callable, Optional

import aiohttp

from voicechat.config import settings
from voicechat.errors import PlaybackError
from voicechat.utils.audio import encode_audio_chunk

logger = logging.getLogger(__name__)

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}/stream"


class ElevenLabsPlayback:
    """
    PlaybackSession that streams synthesized speech to the client.

    Args:
        send: Queues a message for the client (agent_audio_chunk,
            agent_audio_cancel)
    """

    def __init__(
        self,
        send: Callable[[dict], None],
        api_key: Optional[str] = None,
        voice_id: Optional[str] = None,
        model_id: Optional[str] = None,
        playback_timeout_s: Optional[float] = None,
    ):
        self.send = send
        self.api_key = api_key if api_key is not None else settings.elevenlabs_api_key
        self.voice_id = voice_id or settings.elevenlabs_voice_id
        self.model_id = model_id or settings.elevenlabs_model_id
        self.playback_timeout_s = (
            playback_timeout_s if playback_timeout_s is not None else settings.playback_timeout_s
        )

        self._task: Optional[asyncio.Task] = None
        self._client_done = asyncio.Event()
        self._utterance = 0

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def speak(
        self,
        text: str,
        on_start: Callable[[], None],
        on_finish: Callable[[], None],
    ) -> None:
        if self.is_active:
            logger.warning("speak() while previous utterance active - cancelling it")
            self.cancel()

        self._utterance += 1
        self._client_done = asyncio.Event()
        self._task = asyncio.create_task(
            self._run(text, self._utterance, on_start, on_finish)
        )

    def cancel(self) -> None:
        if not self.is_active:
            return
        logger.info(f"Cancelling utterance {self._utterance}")
        self._task.cancel()
        self._task = None
        self.send({"type": "agent_audio_cancel", "data": {"utterance": self._utterance}})

    def mark_client_finished(self):
        """Client reported that it played the last chunk."""
        if not self.is_active:
            logger.debug("Received playback_complete but nothing is playing - ignoring")
            return
        self._client_done.set()

    async def _run(
        self,
        text: str,
        utterance: int,
        on_start: Callable[[], None],
        on_finish: Callable[[], None],
    ):
        chunk_index = 0
        try:
            async for audio_chunk in self.synthesize(text):
                if chunk_index == 0:
                    on_start()
                self.send({
                    "type": "agent_audio_chunk",
                    "data": {
                        "audio": encode_audio_chunk(audio_chunk),
                        "chunk_index": chunk_index,
                        "is_final": False,
                        "utterance": utterance,
                    },
                })
                chunk_index += 1

            if chunk_index == 0:
                raise PlaybackError("Synthesis returned no audio")

            self.send({
                "type": "agent_audio_chunk",
                "data": {"audio": "", "chunk_index": chunk_index, "is_final": True, "utterance": utterance},
            })
            logger.info(f"TTS streaming done ({chunk_index} chunks sent) - waiting for client playback")

            try:
                await asyncio.wait_for(self._client_done.wait(), timeout=self.playback_timeout_s)
            except asyncio.TimeoutError:
                logger.warning(f"Playback timeout after {self.playback_timeout_s}s - finishing utterance")

        except asyncio.CancelledError:
            logger.info(f"Utterance {utterance} cancelled")
            raise
        except Exception as e:
            # Reply text stays on screen; the turn still completes
            logger.error(f"TTS streaming error: {e}")

        on_finish()

    async def synthesize(self, text: str) -> AsyncGenerator[bytes, None]:
        """
        Stream MP3 audio for ``text`` from ElevenLabs.

        Raises:
            PlaybackError: On a non-200 response
        """
        url = ELEVENLABS_TTS_URL.format(voice_id=self.voice_id)
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }
        payload = {"text": text, "model_id": self.model_id}

        timeout = aiohttp.ClientTimeout(total=30, connect=5)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(url, headers=headers, json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"ElevenLabs API error {response.status}: {error_text[:200]}")
                    raise PlaybackError(f"ElevenLabs returned {response.status}")

                async for chunk in response.content.iter_chunked(4096):
                    if chunk:
                        yield chunk
