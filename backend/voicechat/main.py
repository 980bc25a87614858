"""
FastAPI application entry point.
Sets up CORS, health check, and the voice WebSocket endpoint.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from voicechat.capture.deepgram import DeepgramCaptureSession
from voicechat.config import settings
from voicechat.conversation.controller import ConversationController
from voicechat.playback.elevenlabs import ElevenLabsPlayback
from voicechat.reasoning.client import ReasoningClient
from voicechat.utils.audio import decode_audio_chunk

VERSION = "0.1.0"

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# session_id -> controller
active_sessions: dict[str, ConversationController] = {}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.
    Handles startup and shutdown events.
    """
    logger.info("Voice chat backend starting...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Host: {settings.host}:{settings.port}")
    logger.info(f"Frontend URL: {settings.frontend_url}")
    logger.info(f"Reasoning service: {settings.reasoning_url}")

    yield

    logger.info("Voice chat backend shutting down...")
    for controller in list(active_sessions.values()):
        await controller.shutdown()
    active_sessions.clear()


# Create FastAPI application
app = FastAPI(
    title="Voice Chat API",
    description="Speak, get an answer, hear it back",
    version=VERSION,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def build_session(send: Callable[[dict], None]):
    """
    Wire one conversation: capture, playback, reasoning and controller.

    Returns:
        Tuple of (controller, capture, playback)
    """
    capture = DeepgramCaptureSession()
    playback = ElevenLabsPlayback(send=send)
    controller = ConversationController(
        capture=capture,
        playback=playback,
        reasoning=ReasoningClient(),
        on_state_change=lambda state: send({"type": "state", "data": state.snapshot()}),
    )
    return controller, capture, playback


@app.get("/health")
async def health_check() -> JSONResponse:
    """
    Health check endpoint.
    Returns 200 OK if server is running.
    """
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "environment": settings.environment,
            "version": VERSION,
            "active_sessions": len(active_sessions),
        }
    )


async def _sender(websocket: WebSocket, outbox: asyncio.Queue):
    """Send queued messages in order until a None sentinel."""
    while True:
        message = await outbox.get()
        if message is None:
            return
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.warning(f"Dropping outgoing {message.get('type')}: {e}")
            return


@app.websocket("/ws/voice")
async def voice_websocket(websocket: WebSocket) -> None:
    """
    WebSocket endpoint for one voice conversation.

    Message flow:
    1. Client connects -> session_ready + initial state
    2. Client reports microphone_access once
    3. toggle_capture starts a turn; audio_chunk messages feed capture
    4. toggle_capture again submits the transcript
    5. Reply audio streams back as agent_audio_chunk
    6. Client sends playback_complete when the audio has played
    """
    await websocket.accept()
    session_id = str(uuid.uuid4())
    outbox: asyncio.Queue = asyncio.Queue()
    sender_task = asyncio.create_task(_sender(websocket, outbox))
    controller = None

    try:
        controller, capture, playback = build_session(outbox.put_nowait)
        active_sessions[session_id] = controller
        logger.info(f"New voice session: {session_id}")

        outbox.put_nowait({"type": "session_ready", "data": {"session_id": session_id}})
        outbox.put_nowait({"type": "state", "data": controller.state.snapshot()})

        while True:
            data = await websocket.receive_json()
            message_data = (data.get("data") or {}) if isinstance(data, dict) else None
            if not isinstance(message_data, dict):
                logger.warning(f"Session {session_id} sent a malformed message: {str(data)[:100]}")
                outbox.put_nowait({
                    "type": "error",
                    "data": {"code": "INVALID_MESSAGE", "message": "Messages must be JSON objects"},
                })
                continue

            message_type = data.get("type", "unknown")

            logger.debug(f"Session {session_id} received: {message_type}")

            if message_type == "microphone_access":
                controller.resolve_microphone_access(bool(message_data.get("granted")))

            elif message_type == "toggle_capture":
                controller.toggle_capture()

            elif message_type == "toggle_mute":
                controller.toggle_mute()

            elif message_type == "audio_chunk":
                audio_bytes = decode_audio_chunk(message_data.get("audio", ""))
                if audio_bytes:
                    await capture.feed_audio(audio_bytes)

            elif message_type == "playback_complete":
                playback.mark_client_finished()

            elif message_type == "ping":
                outbox.put_nowait({"type": "pong", "data": {}})

            elif message_type == "disconnect":
                logger.info(f"Session {session_id} requested disconnect")
                break

            else:
                logger.warning(f"Session {session_id} sent unknown message type: {message_type}")
                outbox.put_nowait({
                    "type": "error",
                    "data": {"code": "UNKNOWN_MESSAGE", "message": f"Unknown message type: {message_type}"},
                })

    except WebSocketDisconnect:
        logger.info(f"Session {session_id} disconnected")

    except Exception as e:
        logger.error(f"Session {session_id} error: {e}", exc_info=True)
        outbox.put_nowait({
            "type": "error",
            "data": {"code": "WS_INTERNAL_ERROR", "message": f"Internal error: {e}"},
        })

    finally:
        if controller:
            await controller.shutdown()
        active_sessions.pop(session_id, None)
        outbox.put_nowait(None)
        await sender_task
        logger.info(f"Session {session_id} cleaned up")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "voicechat.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )
