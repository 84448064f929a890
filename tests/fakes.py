"""
Fakes shared by the relay, upstream session and endpoint tests.
"""

import asyncio
import json
from typing import Any, List, Optional

from fastapi.websockets import WebSocketState

from src.gemini_live.event_handler import RealtimeEventHandler
from src.gemini_live.exceptions import (
    UpstreamNotConnectedError,
    UpstreamSetupTimeoutError,
)


class MockWebSocket:
    """Mock downstream WebSocket for testing."""

    def __init__(self):
        self.sent_messages: List[str] = []
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, message: str):
        """Mock send_text method."""
        self.sent_messages.append(message)

    @property
    def messages(self) -> List[dict]:
        return [json.loads(m) for m in self.sent_messages]

    def of_type(self, msg_type: str) -> List[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]


class FakeUpstreamSocket:
    """
    Stand-in for a websockets client connection to Gemini.

    Frames pushed with `push` are yielded by async iteration; pushing an
    exception makes the iterator raise it. When `auto_setup` is set, the
    setup frame is answered with setupComplete.
    """

    def __init__(self, auto_setup: bool = True):
        self.auto_setup = auto_setup
        self.sent: List[dict] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_reason = ""
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str):
        if self.closed:
            raise RuntimeError("send on closed fake socket")
        payload = json.loads(message)
        self.sent.append(payload)
        if self.auto_setup and "setup" in payload:
            self.push({"setupComplete": {}})

    def push(self, event: Any):
        self._incoming.put_nowait(event if isinstance(event, (str, bytes)) else json.dumps(event))

    def fail(self, error: BaseException):
        self._incoming.put_nowait(error)

    def remote_close(self, code: int = 1000, reason: str = ""):
        self.close_code = code
        self.close_reason = reason
        self._incoming.put_nowait(None)

    async def close(self):
        if not self.closed:
            self.closed = True
            self.close_code = self.close_code or 1000
            self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    @property
    def media_chunks(self) -> List[dict]:
        return [
            chunk
            for frame in self.sent
            if "realtimeInput" in frame
            for chunk in frame["realtimeInput"]["mediaChunks"]
        ]


class FakeConnectFactory:
    """Async connect callable that hands out FakeUpstreamSocket instances."""

    def __init__(
        self,
        auto_setup: bool = True,
        error: Optional[BaseException] = None,
        socket_class: type = FakeUpstreamSocket,
    ):
        self.auto_setup = auto_setup
        self.socket_class = socket_class
        self.error = error
        self.urls: List[str] = []
        self.sockets: List[FakeUpstreamSocket] = []

    async def __call__(self, url: str) -> FakeUpstreamSocket:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        sock = self.socket_class(auto_setup=self.auto_setup)
        self.sockets.append(sock)
        return sock


class FakeGeminiSession(RealtimeEventHandler):
    """Mock upstream session exposing the GeminiLiveSession surface."""

    def __init__(self, voice: str, system_prompt: str, behavior: str = "ready"):
        super().__init__()
        self.voice = voice
        self.system_prompt = system_prompt
        self.behavior = behavior
        self.connected = False
        self.closed = False
        self.sent_audio: List[str] = []
        self.sent_video: List[str] = []

    async def connect(self):
        if self.behavior == "fail":
            raise UpstreamSetupTimeoutError("Connection timeout")
        if self.behavior == "hang":
            await asyncio.Event().wait()
        if self.behavior == "closed":
            # Handshake finished but the provider hung up before the relay noticed
            return self
        self.connected = True
        await self.dispatch("ready", None)
        return self

    def is_connected(self) -> bool:
        return self.live

    async def send_audio(self, data: str):
        if self.closed or not self.connected:
            raise UpstreamNotConnectedError("not connected")
        self.sent_audio.append(data)

    async def send_video(self, data: str):
        if self.closed or not self.connected:
            raise UpstreamNotConnectedError("not connected")
        self.sent_video.append(data)

    async def close(self):
        self.closed = True

    @property
    def live(self) -> bool:
        return self.connected and not self.closed


class FakeSessionFactory:
    """Session factory recording every FakeGeminiSession it creates."""

    def __init__(self, behavior: str = "ready"):
        self.behavior = behavior
        self.sessions: List[FakeGeminiSession] = []

    def __call__(self, voice: str, system_prompt: str) -> FakeGeminiSession:
        session = FakeGeminiSession(voice, system_prompt, self.behavior)
        self.sessions.append(session)
        return session

    @property
    def live_sessions(self) -> List[FakeGeminiSession]:
        return [s for s in self.sessions if s.live]


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll `predicate` on the running loop until it holds or `timeout` expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


