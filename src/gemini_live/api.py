import asyncio
import json
from typing import Any, Callable, Dict, Optional

import websockets
import yaml
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, InvalidHandshake

from src.enums.session_states import UpstreamState
from src.gemini_live.event_handler import RealtimeEventHandler
from src.gemini_live.exceptions import (
    UpstreamCredentialError,
    UpstreamNotConnectedError,
    UpstreamSetupTimeoutError,
    UpstreamTransportError,
)
from src.gemini_live.models import MediaChunk, TranscriptEvent, TranscriptSource
from utils.ml_logging import get_logger

logger = get_logger("gemini_live.api")

GEMINI_LIVE_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1alpha.GenerativeService.BidiGenerateContent"
)
DEFAULT_MODEL = "gemini-2.5-flash-native-audio-preview-12-2025"
DEFAULT_SETUP_TIMEOUT = 10.0

_CREDENTIAL_STATUS_CODES = {401, 403}


def load_generation_overrides(path: Optional[str]) -> Dict[str, Any]:
    """
    Load optional generationConfig overrides from a YAML file.

    A missing path yields no overrides; a file that does not hold a mapping is
    ignored with a warning.
    """
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            overrides = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading session config from {path}: {e}")
        return {}
    if not isinstance(overrides, dict):
        logger.warning(f"Session config YAML is not a dict, ignoring: {path}")
        return {}
    logger.info(f"Loaded generation config overrides from {path}")
    return overrides


class GeminiLiveSession(RealtimeEventHandler):
    """
    Owns one WebSocket session with the Gemini Live BidiGenerateContent endpoint.

    `connect()` performs the setup handshake and returns once the provider has
    acknowledged it. Afterwards inbound provider events are dispatched as:

    - ``audio``: base64 PCM payload string, passed through untouched
    - ``text``: :class:`TranscriptEvent` tagged ``ai`` or ``user``
    - ``turn_complete``: the raw serverContent dict (advisory)
    - ``error``: human-readable message string
    - ``ready``: None, once setupComplete arrives and before any later frame is read
    - ``close``: ``{"code": int | None, "reason": str}`` on remote close
    """

    def __init__(
        self,
        api_key: Optional[str],
        voice: str,
        system_prompt: str,
        model: str = DEFAULT_MODEL,
        url: str = GEMINI_LIVE_URL,
        setup_timeout: float = DEFAULT_SETUP_TIMEOUT,
        generation_overrides: Optional[Dict[str, Any]] = None,
        connect_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        super().__init__()
        self.api_key = api_key
        self.voice = voice
        self.system_prompt = system_prompt
        self.model = model
        self.url = url
        self.setup_timeout = setup_timeout
        self.generation_overrides = generation_overrides or {}
        self._connect_factory = connect_factory or websockets.connect

        self.state = UpstreamState.CONNECTING
        self.ws = None
        self._ready: Optional[asyncio.Future] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._closing = False

    def is_connected(self) -> bool:
        """
        Check if the session is ready to carry media.

        Returns:
            bool: True once setupComplete was received and until the socket closes.
        """
        return self.state is UpstreamState.READY and self.ws is not None

    def build_setup_message(self) -> dict:
        """
        Build the setup descriptor sent as the first frame of the session.
        """
        generation_config = {
            "responseModalities": ["AUDIO"],
            "speechConfig": {
                "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": self.voice}}
            },
        }
        generation_config.update(self.generation_overrides)
        model = self.model if self.model.startswith("models/") else f"models/{self.model}"
        return {
            "setup": {
                "model": model,
                "generationConfig": generation_config,
                "systemInstruction": {"parts": [{"text": self.system_prompt}]},
                "inputAudioTranscription": {},
                "outputAudioTranscription": {},
            }
        }

    async def connect(self) -> "GeminiLiveSession":
        """
        Open the provider socket and complete the setup handshake.

        Returns:
            GeminiLiveSession: self, in READY state.

        Raises:
            UpstreamCredentialError: No API key configured, or the provider rejected it.
            UpstreamSetupTimeoutError: setupComplete did not arrive within `setup_timeout`.
            UpstreamTransportError: The socket failed before the session was ready.
        """
        if self.state is not UpstreamState.CONNECTING or self._ready is not None:
            raise UpstreamTransportError("Session already connected or closed")
        if not self.api_key:
            self.state = UpstreamState.CLOSED
            raise UpstreamCredentialError("GEMINI_API_KEY is not configured")

        self._ready = asyncio.get_running_loop().create_future()
        try:
            await asyncio.wait_for(self._handshake(), timeout=self.setup_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Gemini setup handshake timed out after {self.setup_timeout}s")
            await self._teardown()
            raise UpstreamSetupTimeoutError(
                f"Connection timeout: no setup acknowledgement within {self.setup_timeout:g}s"
            ) from None
        except BaseException:
            await self._teardown()
            raise
        return self

    async def _handshake(self) -> None:
        connection_url = f"{self.url}?key={self.api_key}"
        logger.info(f"Connecting to Gemini Live API at {self.url} (model={self.model}, voice={self.voice})")
        try:
            self.ws = await self._connect_factory(connection_url)
        except InvalidHandshake as e:
            message = f"Gemini Live handshake rejected: {e}"
            await self.dispatch("error", message)
            if _handshake_status(e) in _CREDENTIAL_STATUS_CODES:
                raise UpstreamCredentialError(message) from e
            raise UpstreamTransportError(message) from e
        except OSError as e:
            message = f"Failed to connect to Gemini Live API: {e}"
            await self.dispatch("error", message)
            raise UpstreamTransportError(message) from e

        logger.info("Connected to Gemini Live API, sending setup")
        self.state = UpstreamState.AWAITING_SETUP_ACK
        self._receive_task = asyncio.create_task(self._receive_messages())
        try:
            await self.ws.send(json.dumps(self.build_setup_message()))
        except ConnectionClosed as e:
            raise UpstreamTransportError(f"Gemini closed before setup was sent: {_describe_close(e)}") from e
        await self._ready

    async def _receive_messages(self) -> None:
        """
        Listen for provider frames and dispatch them until the socket closes.
        """
        error_message = None
        try:
            async for message in self.ws:
                await self._handle_frame(message)
        except ConnectionClosedError as e:
            error_message = f"Gemini connection closed unexpectedly: {_describe_close(e)}"
        except OSError as e:
            error_message = f"Gemini WebSocket error: {e}"

        if self._closing:
            return

        code = getattr(self.ws, "close_code", None)
        reason = getattr(self.ws, "close_reason", "") or ""
        logger.info(f"Gemini WebSocket closed: {code} - {reason}")
        was_ready = self.state is UpstreamState.READY
        self.state = UpstreamState.CLOSED

        if error_message:
            logger.error(error_message)
            await self.dispatch("error", error_message)

        if not was_ready:
            self._fail_pending(
                UpstreamTransportError(
                    error_message or f"Gemini closed the connection during setup: {code} {reason}".strip()
                )
            )
        await self.dispatch("close", {"code": code, "reason": reason})

    async def _handle_frame(self, raw: Any) -> None:
        try:
            event = json.loads(raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Error parsing Gemini message: {e}")
            return
        if not isinstance(event, dict):
            logger.warning(f"Ignoring non-object Gemini message: {type(event).__name__}")
            return

        if "setupComplete" in event:
            await self._on_setup_complete()
            return

        if self.state is not UpstreamState.READY:
            logger.debug(f"Ignoring Gemini event before setup completed: {list(event)}")
            return

        server_content = event.get("serverContent")
        if isinstance(server_content, dict):
            await self._handle_server_content(server_content)

        if "toolCall" in event:
            logger.info(f"Tool call received: {event['toolCall']}")
        if "goAway" in event:
            logger.warning(f"Gemini requested session end: {event['goAway']}")

    async def _on_setup_complete(self) -> None:
        if self.state is not UpstreamState.AWAITING_SETUP_ACK or self._ready is None or self._ready.done():
            logger.debug("Ignoring setupComplete for a session that is not awaiting it")
            return
        logger.info("Gemini session setup complete")
        self.state = UpstreamState.READY
        self._ready.set_result(True)
        await self.dispatch("ready", None)

    async def _handle_server_content(self, server_content: dict) -> None:
        model_turn = server_content.get("modelTurn") or {}
        for part in model_turn.get("parts") or []:
            inline_data = part.get("inlineData")
            if inline_data and inline_data.get("data"):
                await self.dispatch("audio", inline_data["data"])
            if part.get("text"):
                await self.dispatch("text", TranscriptEvent(part["text"], TranscriptSource.AI))

        output_text = (server_content.get("outputTranscription") or {}).get("text")
        if output_text:
            await self.dispatch("text", TranscriptEvent(output_text, TranscriptSource.AI))

        # Optional: only present when input transcription is enabled and produced text
        input_text = (server_content.get("inputTranscription") or {}).get("text")
        if input_text:
            await self.dispatch("text", TranscriptEvent(input_text, TranscriptSource.USER))

        if server_content.get("interrupted"):
            logger.info("Gemini generation interrupted by user speech")
        if server_content.get("turnComplete"):
            logger.info("Gemini turn complete")
            await self.dispatch("turn_complete", server_content)

    async def send_audio(self, data: str) -> None:
        """Forward one base64 PCM16 16 kHz chunk."""
        await self.send_media(MediaChunk.audio(data))

    async def send_video(self, data: str) -> None:
        """Forward one base64 JPEG frame."""
        await self.send_media(MediaChunk.video(data))

    async def send_media(self, chunk: MediaChunk) -> None:
        """
        Send a media chunk in a realtimeInput envelope.

        Raises:
            UpstreamNotConnectedError: If the session is not ready or the socket closed.
        """
        if not self.is_connected():
            raise UpstreamNotConnectedError(f"Gemini session is not connected ({self.state})")
        try:
            await self.ws.send(json.dumps(chunk.to_realtime_input()))
        except ConnectionClosed as e:
            raise UpstreamNotConnectedError(f"Gemini connection closed: {_describe_close(e)}") from e

    async def close(self) -> None:
        """
        Close the session. Safe to call repeatedly and from any state; a locally
        initiated close does not emit the ``close`` event.
        """
        if self._closing:
            return
        self._closing = True
        await self._teardown()
        logger.info("Gemini session closed")

    async def _teardown(self) -> None:
        self._closing = True
        self.state = UpstreamState.CLOSED
        self._fail_pending(UpstreamTransportError("Session closed before setup completed"))

        if self.ws is not None:
            try:
                await self.ws.close()
            except Exception as e:
                logger.warning(f"Error during Gemini WebSocket close: {e}")

        task = self._receive_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _fail_pending(self, error: Exception) -> None:
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(error)
            # Consumed by connect(); mark retrieved so an abandoned future stays quiet
            self._ready.exception()


def _handshake_status(error: InvalidHandshake) -> Optional[int]:
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(error, "status_code", None)
    return status


def _describe_close(error: ConnectionClosed) -> str:
    rcvd = getattr(error, "rcvd", None)
    if rcvd is not None:
        return f"{rcvd.code} {rcvd.reason}".strip()
    return str(error)
