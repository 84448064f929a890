"""
Session Relay
=============

Per-connection bridge between one browser WebSocket and at most one Gemini Live
upstream session.

Lifecycle::

    IDLE -> STARTING -> ACTIVE -> STOPPING -> IDLE
                          \\-> IDLE (upstream closed on its own)

Each upstream is bound to a generation number when it is created. Stopping,
restarting or disconnecting bumps the generation, so callbacks from a discarded
upstream (a late setupComplete, trailing audio, its close event) are ignored.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Iterable, Optional, Union

from fastapi import WebSocket
from fastapi.websockets import WebSocketState
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel, ValidationError

from apps.geminilive.backend.schemas.messages import (
    AudioMessage,
    AudioOutMessage,
    ErrorMessage,
    StartMessage,
    StatusMessage,
    StopMessage,
    TextMessage,
    VideoMessage,
    parse_client_message,
)
from src.enums.session_states import DownstreamStatus, RelayState
from src.gemini_live.api import GeminiLiveSession
from src.gemini_live.exceptions import UpstreamNotConnectedError
from src.gemini_live.models import TranscriptEvent
from utils.ml_logging import get_logger, log_with_context

logger = get_logger("handlers.session_relay")
tracer = trace.get_tracer(__name__)

SessionFactory = Callable[..., GeminiLiveSession]


def _ws_is_connected(ws: WebSocket) -> bool:
    """Return True if both client and application states are active."""
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


def _describe_validation_error(error: ValidationError) -> str:
    first = error.errors()[0] if error.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part)
    detail = first.get("msg", str(error))
    return f"{location}: {detail}" if location else detail


class SessionRelay:
    """
    Owns the downstream socket's conversation state and its upstream session.

    :param websocket: Accepted downstream WebSocket.
    :param session_id: Identifier used for logging and tracing.
    :param session_factory: Callable ``(voice=..., system_prompt=...)`` returning an
        unconnected :class:`GeminiLiveSession`.
    :param default_voice: Voice used when ``start`` omits one.
    :param voices: Valid voice identifiers.
    :param default_system_prompt: Prompt used when ``start`` omits one.
    """

    def __init__(
        self,
        websocket: WebSocket,
        session_id: str,
        session_factory: SessionFactory,
        default_voice: str,
        voices: Iterable[str],
        default_system_prompt: str,
    ) -> None:
        self.websocket = websocket
        self.session_id = session_id
        self.session_factory = session_factory
        self.default_voice = default_voice
        self.voices = frozenset(voices)
        self.default_system_prompt = default_system_prompt

        self.state = RelayState.IDLE
        self.voice: Optional[str] = None
        self.system_prompt: Optional[str] = None
        self.upstream: Optional[GeminiLiveSession] = None

        self._pending: Optional[GeminiLiveSession] = None
        self._start_task: Optional[asyncio.Task] = None
        self._generation = 0

    # ------------------------------------------------------------------ #
    #  Downstream message routing
    # ------------------------------------------------------------------ #
    async def handle_text_message(self, raw: Union[str, bytes]) -> None:
        """
        Validate one client frame and route it. Malformed frames are answered
        with an error message and otherwise ignored.
        """
        try:
            message = parse_client_message(raw)
        except ValidationError as e:
            detail = _describe_validation_error(e)
            logger.warning(f"[{self.session_id}] Malformed client message: {detail}")
            await self._send(ErrorMessage(message=f"Invalid message: {detail}"))
            return

        if isinstance(message, AudioMessage):
            await self.forward_audio(message.data)
        elif isinstance(message, VideoMessage):
            await self.forward_video(message.data)
        elif isinstance(message, StartMessage):
            await self.start(message.voice, message.system_prompt)
        elif isinstance(message, StopMessage):
            await self.stop()

    # ------------------------------------------------------------------ #
    #  Operations
    # ------------------------------------------------------------------ #
    async def start(self, voice: Optional[str] = None, system_prompt: Optional[str] = None) -> None:
        """
        Begin a new upstream conversation, closing any existing one first.

        The handshake runs in a background task so that a following ``stop`` or
        disconnect can cancel it; the outcome is reported downstream as
        ``status: connected`` or a single ``error``.
        """
        voice = voice or self.default_voice
        if voice not in self.voices:
            logger.warning(f"[{self.session_id}] Rejected unknown voice '{voice}'")
            await self._send(ErrorMessage(message=f"Unknown voice '{voice}'"))
            return
        system_prompt = system_prompt or self.default_system_prompt

        if self.upstream is not None or self._pending is not None:
            logger.info(f"[{self.session_id}] Closing existing upstream before restart")
        await self._teardown_upstream()

        self._generation += 1
        generation = self._generation
        self.voice = voice
        self.system_prompt = system_prompt
        self.state = RelayState.STARTING

        session = self.session_factory(voice=voice, system_prompt=system_prompt)
        self._register_callbacks(session, generation)
        self._pending = session

        log_with_context(
            logger,
            "info",
            f"Starting session with voice: {voice}",
            session_id=self.session_id,
            operation="relay_start",
            generation=generation,
        )
        self._start_task = asyncio.create_task(self._complete_start(session, generation))

    async def wait_started(self) -> None:
        """Wait for an in-flight start to finish, whatever its outcome."""
        task = self._start_task
        if task is not None and not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise

    async def forward_audio(self, data: str) -> None:
        """Pass one audio chunk upstream; ignored unless ACTIVE."""
        if not self._accepts_media("audio"):
            return
        try:
            await self.upstream.send_audio(data)
        except UpstreamNotConnectedError as e:
            logger.warning(f"[{self.session_id}] Dropped audio chunk: {e}")

    async def forward_video(self, data: str) -> None:
        """Pass one video frame upstream; ignored unless ACTIVE."""
        if not self._accepts_media("video"):
            return
        try:
            await self.upstream.send_video(data)
        except UpstreamNotConnectedError as e:
            logger.warning(f"[{self.session_id}] Dropped video frame: {e}")

    async def stop(self, acknowledge: bool = True) -> None:
        """
        Close the upstream conversation (idempotent) and return to IDLE.

        :param acknowledge: Send ``status: stopped`` downstream when True.
        """
        if self.state is not RelayState.IDLE:
            self.state = RelayState.STOPPING
        await self._teardown_upstream()
        self.state = RelayState.IDLE
        logger.info(f"[{self.session_id}] Session stopped")
        if acknowledge:
            await self._send(StatusMessage(status=DownstreamStatus.STOPPED.value))

    async def close(self) -> None:
        """Downstream disconnected: stop without acknowledgement."""
        await self.stop(acknowledge=False)

    # ------------------------------------------------------------------ #
    #  Internals
    # ------------------------------------------------------------------ #
    async def _complete_start(self, session: GeminiLiveSession, generation: int) -> None:
        with tracer.start_as_current_span(
            "relay.upstream_setup",
            attributes={
                "session_id": self.session_id,
                "gemini.voice": session.voice,
                "relay.generation": generation,
            },
        ) as span:
            try:
                await session.connect()
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                if generation != self._generation:
                    return
                self._pending = None
                self.state = RelayState.IDLE
                log_with_context(
                    logger,
                    "error",
                    "Upstream setup failed",
                    session_id=self.session_id,
                    operation="relay_start",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self._send(ErrorMessage(message=f"Failed to start session: {e}"))
                return

            if generation != self._generation:
                # Superseded while the handshake finished
                await session.close()
                return

            if self._pending is session:
                if session.is_connected():
                    await self._activate(session)
                else:
                    # Closed before the relay saw it become ready
                    self._pending = None
                    self.state = RelayState.IDLE
                    logger.warning(f"[{self.session_id}] Upstream closed right after setup")
                    await self._send(StatusMessage(status=DownstreamStatus.DISCONNECTED.value))
                    return
            span.set_status(Status(StatusCode.OK))

    async def _activate(self, session: GeminiLiveSession) -> None:
        self._pending = None
        self.upstream = session
        self.state = RelayState.ACTIVE
        logger.info(f"[{self.session_id}] Upstream ready")
        await self._send(StatusMessage(status=DownstreamStatus.CONNECTED.value))

    async def _teardown_upstream(self) -> None:
        self._generation += 1

        task, self._start_task = self._start_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        sessions = [s for s in (self._pending, self.upstream) if s is not None]
        self._pending = None
        self.upstream = None
        for session in sessions:
            try:
                await session.close()
            except Exception as e:
                logger.warning(f"[{self.session_id}] Error closing upstream: {e}")
            session.clear_event_handlers()

    def _is_current(self, session: GeminiLiveSession, generation: int) -> bool:
        return generation == self._generation and self.upstream is session

    def _register_callbacks(self, session: GeminiLiveSession, generation: int) -> None:
        async def on_ready(_: None) -> None:
            # Runs inside the upstream receive loop, so frames queued behind
            # setupComplete already see an ACTIVE relay
            if generation == self._generation and self._pending is session:
                await self._activate(session)

        async def on_audio(data: str) -> None:
            if self._is_current(session, generation):
                await self._send(AudioOutMessage(data=data))

        async def on_text(event: TranscriptEvent) -> None:
            if self._is_current(session, generation):
                await self._send(TextMessage(data=event.text, source=event.source.value))

        async def on_error(message: str) -> None:
            # Setup failures are reported once, by _complete_start
            if self._is_current(session, generation):
                logger.error(f"[{self.session_id}] Gemini error: {message}")
                await self._send(ErrorMessage(message=message))

        async def on_close(info: dict) -> None:
            if not self._is_current(session, generation):
                return
            logger.info(f"[{self.session_id}] Gemini connection closed: {info}")
            self.upstream = None
            self.state = RelayState.IDLE
            await self._send(StatusMessage(status=DownstreamStatus.DISCONNECTED.value))

        session.on("ready", on_ready)
        session.on("audio", on_audio)
        session.on("text", on_text)
        session.on("error", on_error)
        session.on("close", on_close)

    def _accepts_media(self, kind: str) -> bool:
        if self.state.accepts_media and self.upstream is not None:
            return True
        logger.debug(f"[{self.session_id}] Ignoring {kind} while {self.state}")
        return False

    async def _send(self, message: BaseModel) -> None:
        if not _ws_is_connected(self.websocket):
            logger.debug(f"[{self.session_id}] Downstream closed, dropping {message.type} message")
            return
        try:
            await self.websocket.send_text(message.model_dump_json())
        except Exception as e:
            logger.warning(f"[{self.session_id}] Failed to send {message.type} message: {e}")
