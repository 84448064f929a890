"""
Gapless playback scheduling for audio chunks streamed back from the relay.

Chunks are placed back to back on a monotonically advancing play-time cursor.
The clock is injected, so the scheduler works against any playback timeline:
an audio device clock, ``loop.time`` or a fake clock in tests.
"""

import binascii
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from src.enums.session_states import SpeakerState
from src.gemini_live.models import PlaybackBufferEntry
from src.gemini_live.utils import OUTPUT_SAMPLE_RATE, base64_to_pcm16, pcm16_to_float
from utils.ml_logging import get_logger

logger = get_logger("gemini_live.playback")

PlaybackSink = Callable[[np.ndarray, float], None]


@dataclass(frozen=True)
class ScheduledBuffer:
    entry: PlaybackBufferEntry
    start_time: float

    @property
    def end_time(self) -> float:
        return self.start_time + self.entry.duration_seconds


class PlaybackScheduler:
    """
    Schedules decoded audio buffers for contiguous FIFO playback.

    Buffer *i+1* starts exactly when buffer *i* ends, unless the cursor has
    fallen behind the clock, in which case it starts immediately.
    """

    def __init__(
        self,
        clock: Callable[[], float],
        sample_rate: int = OUTPUT_SAMPLE_RATE,
        sink: Optional[PlaybackSink] = None,
        tolerance: float = 0.1,
        on_state_change: Optional[Callable[[SpeakerState], None]] = None,
    ) -> None:
        self.clock = clock
        self.sample_rate = sample_rate
        self.sink = sink
        self.tolerance = tolerance
        self.on_state_change = on_state_change
        self.next_play_time = 0.0
        self.state = SpeakerState.LISTENING

    def schedule(self, entry: PlaybackBufferEntry) -> Optional[ScheduledBuffer]:
        """
        Schedule `entry` at the play-time cursor and advance the cursor.

        Returns:
            ScheduledBuffer | None: The placement, or None for an empty entry.
        """
        if entry.is_empty:
            logger.debug("Skipping zero-length playback buffer")
            return None

        now = self.clock()
        if self.next_play_time < now:
            self.next_play_time = now

        scheduled = ScheduledBuffer(entry=entry, start_time=self.next_play_time)
        self.next_play_time += entry.duration_seconds

        if self.sink is not None:
            self.sink(entry.samples, scheduled.start_time)
        self._set_state(SpeakerState.SPEAKING)
        return scheduled

    def enqueue_base64(self, data: str) -> Optional[ScheduledBuffer]:
        """
        Decode a base64 PCM16 chunk and schedule it.

        A corrupt chunk is logged and dropped; the cursor is left untouched so
        the following chunks still play back to back.
        """
        try:
            samples = pcm16_to_float(base64_to_pcm16(data))
        except (binascii.Error, ValueError, TypeError) as e:
            logger.error(f"Error decoding audio chunk, dropping it: {e}")
            return None
        return self.schedule(PlaybackBufferEntry.from_samples(samples, self.sample_rate))

    def buffer_ended(self, scheduled: Optional[ScheduledBuffer] = None) -> bool:
        """
        Completion callback for a played buffer.

        Returns:
            bool: True if the playback clock has caught up with the cursor and the
            state moved back to listening.
        """
        if self.clock() >= self.next_play_time - self.tolerance:
            self._set_state(SpeakerState.LISTENING)
            return True
        return False

    def reset(self) -> None:
        """Forget the cursor, e.g. when the conversation stops."""
        self.next_play_time = 0.0
        self._set_state(SpeakerState.LISTENING)

    def _set_state(self, state: SpeakerState) -> None:
        if state is self.state:
            return
        self.state = state
        logger.debug(f"Playback state -> {state}")
        if self.on_state_change is not None:
            self.on_state_change(state)
