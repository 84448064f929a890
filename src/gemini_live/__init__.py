"""
Gemini Live Package

Provides classes and utilities for:
- PCM resampling and float/int16 conversion
- The Gemini Live upstream session (setup handshake, media, event demux)
- Gapless playback scheduling of returned audio
- A client for the relay's downstream protocol
"""

from .api import GeminiLiveSession
from .client import RelayClient
from .event_handler import RealtimeEventHandler
from .exceptions import (
    GeminiLiveError,
    UpstreamCredentialError,
    UpstreamNotConnectedError,
    UpstreamSetupTimeoutError,
    UpstreamTransportError,
)
from .models import MediaChunk, MediaKind, PlaybackBufferEntry, TranscriptEvent, TranscriptSource
from .playback import PlaybackScheduler, ScheduledBuffer
from .utils import (
    MicrophoneChunker,
    base64_to_pcm16,
    float_to_16bit_pcm,
    pcm16_to_base64,
    pcm16_to_float,
    resample,
)

__all__ = [
    "GeminiLiveSession",
    "RelayClient",
    "RealtimeEventHandler",
    "GeminiLiveError",
    "UpstreamCredentialError",
    "UpstreamNotConnectedError",
    "UpstreamSetupTimeoutError",
    "UpstreamTransportError",
    "MediaChunk",
    "MediaKind",
    "PlaybackBufferEntry",
    "TranscriptEvent",
    "TranscriptSource",
    "PlaybackScheduler",
    "ScheduledBuffer",
    "MicrophoneChunker",
    "resample",
    "float_to_16bit_pcm",
    "pcm16_to_float",
    "pcm16_to_base64",
    "base64_to_pcm16",
]
