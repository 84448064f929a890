"""
Conversation WebSocket Endpoint
===============================

Browser-facing WebSocket that carries the relay's JSON protocol. Every
connection gets its own :class:`SessionRelay`; the endpoint only pumps frames
into it in arrival order and guarantees teardown on disconnect.
"""

from __future__ import annotations

import uuid
from functools import partial
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from apps.geminilive.backend import settings
from apps.geminilive.backend.handlers.session_relay import SessionRelay
from src.gemini_live.api import GeminiLiveSession, load_generation_overrides
from utils.ml_logging import get_logger, log_with_context

logger = get_logger("routers.realtime")
tracer = trace.get_tracer(__name__)

router = APIRouter()


def build_session_factory() -> partial:
    """
    Bind process-wide Gemini settings into a factory that only needs the
    per-conversation voice and system prompt.
    """
    return partial(
        GeminiLiveSession,
        api_key=settings.GEMINI_API_KEY,
        model=settings.GEMINI_MODEL,
        url=settings.GEMINI_LIVE_ENDPOINT,
        setup_timeout=settings.SETUP_TIMEOUT_SECONDS,
        generation_overrides=load_generation_overrides(settings.SESSION_CONFIG_PATH),
    )


@router.websocket("/")
@router.websocket("/ws")
async def conversation_endpoint(websocket: WebSocket) -> None:
    """
    Relay one browser client to Gemini Live.

    :param websocket: Incoming WebSocket connection.
    """
    await websocket.accept()
    session_id = str(uuid.uuid4())
    session_manager = websocket.app.state.session_manager
    session_factory = getattr(websocket.app.state, "session_factory", None) or build_session_factory()

    relay = SessionRelay(
        websocket=websocket,
        session_id=session_id,
        session_factory=session_factory,
        default_voice=settings.DEFAULT_VOICE,
        voices=settings.VOICES,
        default_system_prompt=settings.DEFAULT_SYSTEM_PROMPT,
    )
    await session_manager.add_session(session_id, relay)
    log_with_context(
        logger,
        "info",
        "Client connected",
        session_id=session_id,
        operation="conversation_connect",
    )

    with tracer.start_as_current_span(
        "relay.conversation",
        kind=SpanKind.SERVER,
        attributes={
            "session_id": session_id,
            "network.protocol.name": "websocket",
        },
    ) as span:
        message_count = 0
        try:
            while websocket.client_state == WebSocketState.CONNECTED:
                msg = await websocket.receive()
                if msg.get("type") == "websocket.disconnect":
                    break
                raw: Optional[str] = msg.get("text")
                if raw is None and msg.get("bytes") is not None:
                    raw = msg["bytes"].decode("utf-8", errors="replace")
                if raw is None:
                    continue
                message_count += 1
                await relay.handle_text_message(raw)
            span.set_status(Status(StatusCode.OK))
        except WebSocketDisconnect as e:
            span.set_status(Status(StatusCode.OK, "Normal disconnect"))
            logger.info(f"[{session_id}] Client disconnected ({e.code})")
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, f"Message processing error: {e}"))
            log_with_context(
                logger,
                "error",
                "Conversation socket error",
                session_id=session_id,
                operation="conversation_error",
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            span.set_attribute("messages.processed", message_count)
            await relay.close()
            await session_manager.remove_session(session_id)
            log_with_context(
                logger,
                "info",
                "Client disconnected",
                session_id=session_id,
                operation="conversation_cleanup",
                messages=message_count,
            )
