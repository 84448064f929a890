import base64
import logging
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)

INPUT_SAMPLE_RATE = 16000
OUTPUT_SAMPLE_RATE = 24000

# Separate scale factors keep -1.0 and 1.0 inside the int16 range
PCM16_NEGATIVE_SCALE = 32768.0
PCM16_POSITIVE_SCALE = 32767.0


def resample(samples: np.ndarray, input_rate: int, output_rate: int) -> np.ndarray:
    """
    Resamples float32 audio between sample rates with linear interpolation.

    Args:
        samples (np.ndarray): Input float32 samples (mono).
        input_rate (int): Sample rate of `samples` in Hz.
        output_rate (int): Target sample rate in Hz.

    Returns:
        np.ndarray: Resampled float32 array of length
        round(len(samples) * output_rate / input_rate).

    Raises:
        ValueError: If either rate is not positive.
    """
    if input_rate <= 0 or output_rate <= 0:
        raise ValueError("Sample rates must be positive")

    samples = np.asarray(samples, dtype=np.float32)
    if input_rate == output_rate:
        return samples.copy()
    if samples.size == 0:
        return np.zeros(0, dtype=np.float32)

    ratio = input_rate / output_rate
    # Round half up, not to even
    output_length = int(np.floor(samples.size / ratio + 0.5))

    positions = np.arange(output_length, dtype=np.float64) * ratio
    floor_idx = np.minimum(np.floor(positions).astype(np.int64), samples.size - 1)
    ceil_idx = np.minimum(floor_idx + 1, samples.size - 1)
    t = positions - floor_idx

    output = samples[floor_idx] * (1.0 - t) + samples[ceil_idx] * t
    return output.astype(np.float32)


def float_to_16bit_pcm(float32_array: np.ndarray) -> np.ndarray:
    """
    Converts a numpy array of float32 amplitude data to a numpy array in int16 format.

    Samples are clamped to [-1, 1]; negatives scale by 32768, positives by 32767,
    and the result is truncated toward zero.

    Args:
        float32_array (np.ndarray): Input float32 numpy array.

    Returns:
        np.ndarray: Output int16 numpy array.
    """
    clipped = np.clip(np.asarray(float32_array, dtype=np.float32), -1.0, 1.0)
    scaled = np.where(
        clipped < 0, clipped * PCM16_NEGATIVE_SCALE, clipped * PCM16_POSITIVE_SCALE
    )
    return np.trunc(scaled).astype(np.int16)


def pcm16_to_float(int16_array: np.ndarray) -> np.ndarray:
    """
    Converts int16 PCM samples back to float32 amplitudes in [-1, 1].

    Args:
        int16_array (np.ndarray): Input int16 numpy array.

    Returns:
        np.ndarray: Output float32 numpy array.
    """
    values = np.asarray(int16_array, dtype=np.int16).astype(np.float32)
    return np.where(
        values < 0, values / PCM16_NEGATIVE_SCALE, values / PCM16_POSITIVE_SCALE
    ).astype(np.float32)


def pcm16_to_base64(int16_array: np.ndarray) -> str:
    """
    Encodes int16 samples as little-endian bytes in a base64 string.
    """
    samples = np.asarray(int16_array)
    if np.issubdtype(samples.dtype, np.floating):
        samples = float_to_16bit_pcm(samples)
    return base64.b64encode(samples.astype("<i2").tobytes()).decode("utf-8")


def base64_to_pcm16(base64_string: str) -> np.ndarray:
    """
    Decodes a base64 string of little-endian PCM16 bytes.

    Raises:
        ValueError: If the payload is not valid base64 or has an odd byte count.
    """
    binary_data = base64.b64decode(base64_string, validate=True)
    if len(binary_data) % 2:
        raise ValueError(f"PCM16 payload has odd byte length {len(binary_data)}")
    return np.frombuffer(binary_data, dtype="<i2").astype(np.int16)


class MicrophoneChunker:
    """
    Accumulates captured float32 microphone samples into fixed-size frames and
    turns each full frame into a base64 PCM16 chunk at the upstream input rate.
    """

    def __init__(
        self,
        input_rate: int,
        frame_size: int = 4096,
        output_rate: int = INPUT_SAMPLE_RATE,
    ) -> None:
        if frame_size <= 0:
            raise ValueError("frame_size must be > 0")
        self.input_rate = input_rate
        self.output_rate = output_rate
        self.frame_size = frame_size
        self._buffer = np.zeros(frame_size, dtype=np.float32)
        self._index = 0

    def push(self, samples: np.ndarray) -> List[str]:
        """
        Append captured samples and return the chunks completed by them, oldest first.
        """
        chunks: List[str] = []
        samples = np.asarray(samples, dtype=np.float32)
        offset = 0
        while offset < samples.size:
            take = min(self.frame_size - self._index, samples.size - offset)
            self._buffer[self._index:self._index + take] = samples[offset:offset + take]
            self._index += take
            offset += take
            if self._index >= self.frame_size:
                chunks.append(self._encode(self._buffer))
                self._buffer = np.zeros(self.frame_size, dtype=np.float32)
                self._index = 0
        return chunks

    def flush(self) -> Optional[str]:
        """Encode whatever partial frame is buffered, or None if empty."""
        if self._index == 0:
            return None
        chunk = self._encode(self._buffer[:self._index])
        self._buffer = np.zeros(self.frame_size, dtype=np.float32)
        self._index = 0
        return chunk

    def _encode(self, frame: np.ndarray) -> str:
        resampled = resample(frame, self.input_rate, self.output_rate)
        return pcm16_to_base64(float_to_16bit_pcm(resampled))
