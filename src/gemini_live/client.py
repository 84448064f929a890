# client.py is the downstream side of the relay protocol: it opens a socket to
# the relay, starts/stops conversations, streams microphone chunks and routes
# relay messages to playback and transcript callbacks.

import asyncio
import json
from typing import Any, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from src.enums.session_states import DownstreamStatus
from src.gemini_live.models import TranscriptEvent, TranscriptSource
from src.gemini_live.playback import PlaybackScheduler
from utils.ml_logging import get_logger

logger = get_logger("gemini_live.client")


class RelayClient:
    """
    Client for the relay's downstream JSON protocol.
    """

    def __init__(
        self,
        url: str,
        scheduler: PlaybackScheduler,
        on_transcript: Optional[Callable[[TranscriptEvent], Any]] = None,
        on_status: Optional[Callable[[str], Any]] = None,
        on_error: Optional[Callable[[str], Any]] = None,
        connect_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.url = url
        self.scheduler = scheduler
        self.on_transcript = on_transcript
        self.on_status = on_status
        self.on_error = on_error
        self._connect_factory = connect_factory or websockets.connect
        self.ws = None
        self.active = False
        self._receive_task: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        if self.ws is not None:
            raise RuntimeError("Already connected, use disconnect() first")
        self.ws = await self._connect_factory(self.url)
        self._receive_task = asyncio.create_task(self._receive_messages())
        logger.info(f"Connected to relay at {self.url}")

    async def start(self, voice: str, system_prompt: str) -> None:
        await self._send({"type": "start", "voice": voice, "systemPrompt": system_prompt})

    async def send_audio(self, data: str) -> None:
        if self.active:
            await self._send({"type": "audio", "data": data})

    async def send_video(self, data: str) -> None:
        if self.active:
            await self._send({"type": "video", "data": data})

    async def stop(self) -> None:
        await self._send({"type": "stop"})
        self.active = False
        self.scheduler.reset()

    async def disconnect(self) -> None:
        if self.ws is None:
            return
        try:
            await self.ws.close()
        finally:
            if self._receive_task is not None and not self._receive_task.done():
                self._receive_task.cancel()
                try:
                    await self._receive_task
                except asyncio.CancelledError:
                    pass
            self.ws = None
            self.active = False
            self.scheduler.reset()

    async def _send(self, message: dict) -> None:
        if self.ws is None:
            raise RuntimeError("RelayClient is not connected")
        await self.ws.send(json.dumps(message))

    async def _receive_messages(self) -> None:
        try:
            async for raw in self.ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError as e:
                    logger.error(f"Error parsing relay message: {e}")
                    continue
                self.handle_message(message)
        except ConnectionClosed as e:
            logger.warning(f"Relay connection lost: {e}")
        if self.active:
            self.active = False
            self.scheduler.reset()
            self._notify(self.on_status, DownstreamStatus.DISCONNECTED.value)

    def handle_message(self, message: dict) -> None:
        """
        Route one relay message to playback or the registered callbacks.
        """
        msg_type = message.get("type")
        if msg_type == "status":
            status = message.get("status")
            if status == DownstreamStatus.CONNECTED.value:
                self.active = True
            elif status in (DownstreamStatus.DISCONNECTED.value, DownstreamStatus.STOPPED.value):
                self.active = False
                self.scheduler.reset()
            self._notify(self.on_status, status)
        elif msg_type == "audio":
            self.scheduler.enqueue_base64(message.get("data") or "")
        elif msg_type == "text":
            text = (message.get("data") or "").strip()
            if text:
                source = TranscriptSource.USER if message.get("source") == "user" else TranscriptSource.AI
                self._notify(self.on_transcript, TranscriptEvent(text, source))
        elif msg_type == "error":
            logger.error(f"Relay error: {message.get('message')}")
            self._notify(self.on_error, message.get("message", ""))
        else:
            logger.debug(f"Ignoring unknown relay message type: {msg_type}")

    @staticmethod
    def _notify(callback: Optional[Callable[[Any], Any]], value: Any) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception as e:
            logger.error(f"Relay client callback failed: {e}", exc_info=True)
