from dataclasses import dataclass
from enum import Enum

import numpy as np


class MediaKind(Enum):
    AUDIO = "audio"
    VIDEO = "video"


class TranscriptSource(Enum):
    USER = "user"
    AI = "ai"

    def __str__(self) -> str:
        return self.value


AUDIO_INPUT_MIME_TYPE = "audio/pcm;rate=16000"
VIDEO_FRAME_MIME_TYPE = "image/jpeg"


@dataclass(frozen=True)
class MediaChunk:
    """
    One opaque unit of client media on its way upstream.

    `payload` is the base64 text exactly as the client sent it; it is never
    decoded or re-encoded by the relay.
    """

    kind: MediaKind
    mime_type: str
    payload: str

    @classmethod
    def audio(cls, payload: str) -> "MediaChunk":
        return cls(MediaKind.AUDIO, AUDIO_INPUT_MIME_TYPE, payload)

    @classmethod
    def video(cls, payload: str) -> "MediaChunk":
        return cls(MediaKind.VIDEO, VIDEO_FRAME_MIME_TYPE, payload)

    def to_realtime_input(self) -> dict:
        """Wrap the chunk in the provider's realtimeInput envelope."""
        return {
            "realtimeInput": {
                "mediaChunks": [{"mimeType": self.mime_type, "data": self.payload}]
            }
        }


@dataclass(frozen=True)
class TranscriptEvent:
    text: str
    source: TranscriptSource


@dataclass(frozen=True)
class PlaybackBufferEntry:
    samples: np.ndarray
    duration_seconds: float

    @classmethod
    def from_samples(cls, samples: np.ndarray, sample_rate: int) -> "PlaybackBufferEntry":
        samples = np.asarray(samples, dtype=np.float32)
        return cls(samples=samples, duration_seconds=samples.size / float(sample_rate))

    @property
    def is_empty(self) -> bool:
        return self.samples.size == 0 or self.duration_seconds <= 0
