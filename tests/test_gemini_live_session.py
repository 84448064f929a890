"""
Tests for the Gemini Live upstream session
==========================================

Covers the setup handshake, media envelopes, server event demultiplexing and
close/error reporting, using an in-memory stand-in for the provider socket.
"""

import asyncio

import pytest
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosedError, InvalidStatus
from websockets.frames import Close
from websockets.http11 import Response

from fakes import FakeConnectFactory, wait_until
from src.enums.session_states import UpstreamState
from src.gemini_live.api import DEFAULT_MODEL, GeminiLiveSession, load_generation_overrides
from src.gemini_live.exceptions import (
    UpstreamCredentialError,
    UpstreamNotConnectedError,
    UpstreamSetupTimeoutError,
    UpstreamTransportError,
)
from src.gemini_live.models import TranscriptEvent, TranscriptSource

EVENTS = ("audio", "text", "turn_complete", "error", "close")


def make_session(factory, api_key="test-key", **kwargs):
    session = GeminiLiveSession(
        api_key=api_key,
        voice="Puck",
        system_prompt="Be brief.",
        connect_factory=factory,
        **kwargs,
    )
    events = []
    for name in EVENTS:
        session.on(name, lambda payload, name=name: events.append((name, payload)))
    return session, events


async def start_connect(session, factory):
    """Begin connect() in the background and wait until the setup frame is sent."""
    task = asyncio.create_task(session.connect())
    await wait_until(lambda: factory.sockets and factory.sockets[0].sent)
    return task, factory.sockets[0]


class TestHandshake:
    """Test the setup handshake."""

    @pytest.mark.asyncio
    async def test_setup_message_and_ready(self):
        factory = FakeConnectFactory()
        session, _ = make_session(factory)

        await session.connect()

        assert session.state is UpstreamState.READY
        assert session.is_connected()
        assert factory.urls[0].endswith("?key=test-key")

        setup = factory.sockets[0].sent[0]["setup"]
        assert setup["model"] == f"models/{DEFAULT_MODEL}"
        assert setup["generationConfig"]["responseModalities"] == ["AUDIO"]
        voice = setup["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]
        assert voice["voiceName"] == "Puck"
        assert setup["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert setup["inputAudioTranscription"] == {}
        assert setup["outputAudioTranscription"] == {}

        await session.close()

    @pytest.mark.asyncio
    async def test_missing_api_key_fails_without_connecting(self):
        factory = FakeConnectFactory()
        session, _ = make_session(factory, api_key="")

        with pytest.raises(UpstreamCredentialError):
            await session.connect()

        assert factory.urls == []
        assert session.state is UpstreamState.CLOSED

    @pytest.mark.asyncio
    async def test_setup_timeout_closes_socket(self):
        factory = FakeConnectFactory(auto_setup=False)
        session, events = make_session(factory, setup_timeout=0.05)

        with pytest.raises(UpstreamSetupTimeoutError, match="timeout"):
            await session.connect()

        assert factory.sockets[0].closed
        assert session.state is UpstreamState.CLOSED
        assert [name for name, _ in events if name == "close"] == []

    @pytest.mark.asyncio
    async def test_events_before_setup_complete_are_ignored(self):
        factory = FakeConnectFactory(auto_setup=False)
        session, events = make_session(factory)

        task, sock = await start_connect(session, factory)
        assert session.state is UpstreamState.AWAITING_SETUP_ACK
        sock.push({"serverContent": {"outputTranscription": {"text": "too early"}}})
        sock.push({"setupComplete": {}})
        await task

        assert session.state is UpstreamState.READY
        assert events == []
        await session.close()

    @pytest.mark.asyncio
    async def test_ready_dispatched_before_queued_frames(self):
        factory = FakeConnectFactory(auto_setup=False)
        session, events = make_session(factory)
        session.on("ready", lambda _: events.append(("ready", session.state)))

        task, sock = await start_connect(session, factory)
        sock.push({"setupComplete": {}})
        sock.push({"serverContent": {"outputTranscription": {"text": "right away"}}})
        await task
        await wait_until(lambda: len(events) >= 2)

        assert events == [
            ("ready", UpstreamState.READY),
            ("text", TranscriptEvent("right away", TranscriptSource.AI)),
        ]
        await session.close()

    @pytest.mark.asyncio
    async def test_remote_close_during_setup(self):
        factory = FakeConnectFactory(auto_setup=False)
        session, events = make_session(factory)

        task, sock = await start_connect(session, factory)
        sock.remote_close(1008, "policy violation")

        with pytest.raises(UpstreamTransportError):
            await task
        assert session.state is UpstreamState.CLOSED
        assert ("close", {"code": 1008, "reason": "policy violation"}) in events

    @pytest.mark.asyncio
    async def test_socket_error_before_ready(self):
        factory = FakeConnectFactory(auto_setup=False)
        session, events = make_session(factory)

        task, sock = await start_connect(session, factory)
        sock.fail(OSError("connection reset"))

        with pytest.raises(UpstreamTransportError, match="connection reset"):
            await task
        assert [name for name, _ in events][0] == "error"

    @pytest.mark.asyncio
    async def test_connect_refused(self):
        factory = FakeConnectFactory(error=OSError("connection refused"))
        session, events = make_session(factory)

        with pytest.raises(UpstreamTransportError):
            await session.connect()

        assert len(factory.urls) == 1
        assert events[0][0] == "error"
        assert "connection refused" in events[0][1]

    @pytest.mark.asyncio
    async def test_rejected_key_maps_to_credential_error(self):
        rejection = InvalidStatus(Response(401, "Unauthorized", Headers()))
        session, events = make_session(FakeConnectFactory(error=rejection))

        with pytest.raises(UpstreamCredentialError):
            await session.connect()
        assert events[0][0] == "error"


class TestMedia:
    """Test realtimeInput envelopes."""

    @pytest.mark.asyncio
    async def test_audio_and_video_envelopes(self):
        factory = FakeConnectFactory()
        session, _ = make_session(factory)
        await session.connect()

        await session.send_audio("QUJD")
        await session.send_video("/9j/4AAQ")

        sock = factory.sockets[0]
        assert sock.sent[1] == {
            "realtimeInput": {"mediaChunks": [{"mimeType": "audio/pcm;rate=16000", "data": "QUJD"}]}
        }
        assert sock.media_chunks[1] == {"mimeType": "image/jpeg", "data": "/9j/4AAQ"}
        await session.close()

    @pytest.mark.asyncio
    async def test_send_before_ready_raises(self):
        session, _ = make_session(FakeConnectFactory())

        with pytest.raises(UpstreamNotConnectedError):
            await session.send_audio("QUJD")


class TestServerEvents:
    """Test demultiplexing of provider events."""

    @pytest.mark.asyncio
    async def test_events_dispatched_in_arrival_order(self):
        factory = FakeConnectFactory()
        session, events = make_session(factory)
        await session.connect()
        sock = factory.sockets[0]

        sock.push({"serverContent": {"modelTurn": {"parts": [{"inlineData": {"mimeType": "audio/pcm;rate=24000", "data": "AAAA"}}]}}})
        sock.push({"serverContent": {"outputTranscription": {"text": "Hello"}}})
        sock.push({"serverContent": {"inputTranscription": {"text": "Hi there"}}})
        sock.push({"serverContent": {"turnComplete": True}})
        await wait_until(lambda: len(events) >= 4)

        assert events[:3] == [
            ("audio", "AAAA"),
            ("text", TranscriptEvent("Hello", TranscriptSource.AI)),
            ("text", TranscriptEvent("Hi there", TranscriptSource.USER)),
        ]
        assert events[3][0] == "turn_complete"
        await session.close()

    @pytest.mark.asyncio
    async def test_malformed_frame_skipped(self):
        factory = FakeConnectFactory()
        session, events = make_session(factory)
        await session.connect()
        sock = factory.sockets[0]

        sock.push("{not json")
        sock.push({"toolCall": {"functionCalls": []}})
        sock.push({"serverContent": {"modelTurn": {"parts": [{"text": "still here"}]}}})
        await wait_until(lambda: len(events) >= 1)

        assert events == [("text", TranscriptEvent("still here", TranscriptSource.AI))]
        await session.close()

    @pytest.mark.asyncio
    async def test_remote_close_emits_close(self):
        factory = FakeConnectFactory()
        session, events = make_session(factory)
        await session.connect()

        factory.sockets[0].remote_close(1000, "session ended")
        await wait_until(lambda: events)

        assert events == [("close", {"code": 1000, "reason": "session ended"})]
        assert session.state is UpstreamState.CLOSED
        with pytest.raises(UpstreamNotConnectedError):
            await session.send_audio("QUJD")
        await session.close()

    @pytest.mark.asyncio
    async def test_abnormal_close_emits_error_then_close(self):
        factory = FakeConnectFactory()
        session, events = make_session(factory)
        await session.connect()

        factory.sockets[0].fail(ConnectionClosedError(Close(1011, "internal error"), None))
        await wait_until(lambda: len(events) >= 2)

        assert [name for name, _ in events] == ["error", "close"]
        assert "1011" in events[0][1]
        await session.close()


class TestClose:
    """Test local close."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_silent(self):
        factory = FakeConnectFactory()
        session, events = make_session(factory)
        await session.connect()

        await session.close()
        await session.close()

        assert factory.sockets[0].closed
        assert session.state is UpstreamState.CLOSED
        assert events == []

    @pytest.mark.asyncio
    async def test_close_before_connect(self):
        session, events = make_session(FakeConnectFactory())
        await session.close()
        assert session.state is UpstreamState.CLOSED
        assert events == []


class TestGenerationOverrides:
    """Test YAML generationConfig overrides."""

    def test_overrides_merged_into_setup(self, tmp_path):
        path = tmp_path / "session.yaml"
        path.write_text("temperature: 0.4\nmaxOutputTokens: 512\n", encoding="utf-8")

        overrides = load_generation_overrides(str(path))
        session, _ = make_session(FakeConnectFactory(), generation_overrides=overrides)
        config = session.build_setup_message()["setup"]["generationConfig"]

        assert config["temperature"] == 0.4
        assert config["maxOutputTokens"] == 512
        assert config["responseModalities"] == ["AUDIO"]

    def test_missing_or_invalid_files_yield_no_overrides(self, tmp_path):
        listing = tmp_path / "list.yaml"
        listing.write_text("- a\n- b\n", encoding="utf-8")

        assert load_generation_overrides(None) == {}
        assert load_generation_overrides(str(tmp_path / "absent.yaml")) == {}
        assert load_generation_overrides(str(listing)) == {}
