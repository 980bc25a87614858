"""Base64 codec for audio chunks carried in websocket JSON messages."""

import base64
import binascii
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def decode_audio_chunk(audio_b64: str) -> Optional[bytes]:
    """
    Decode a base64 audio chunk sent by the client.

    Returns:
        Audio bytes, or None if the payload is empty or not valid base64
    """
    if not audio_b64:
        return None
    try:
        return base64.b64decode(audio_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.error(f"Failed to decode base64 audio: {e}")
        return None


def encode_audio_chunk(audio_bytes: bytes) -> str:
    """Encode synthesized audio for the client."""
    return base64.b64encode(audio_bytes).decode("ascii")
