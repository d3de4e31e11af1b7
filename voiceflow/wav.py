"""RIFF/WAVE encoding of captured float frames as 16-bit PCM."""

import io
import logging
import wave
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from voiceflow._types import AudioFormat, AudioFrame
from voiceflow.errors import EmptyCaptureError, FormatMismatchError, ParseFailureError

logger = logging.getLogger(__name__)

BYTES_PER_SAMPLE = 2
HEADER_SIZE = 44
PCM16_MAX = 32767


@dataclass(frozen=True)
class WavHeader:
    """Stream parameters read from a PCM WAVE file."""

    channels: int
    sample_rate: int
    sample_width: int
    frame_count: int

    @property
    def bits_per_sample(self) -> int:
        return self.sample_width * 8

    @property
    def duration(self) -> float:
        return self.frame_count / self.sample_rate if self.sample_rate else 0.0


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Clamp to [-1, 1], scale by 32767 and truncate toward zero."""
    clipped = np.clip(samples.astype(np.float32, copy=False), -1.0, 1.0)
    return (clipped * PCM16_MAX).astype("<i2")


def encode_wav(frames: Sequence[AudioFrame], fmt: AudioFormat | None = None) -> bytes:
    """Concatenate frames in arrival order and serialize them as WAVE bytes.

    Args:
        frames: Ordered frames of one recording
        fmt: Expected format; defaults to the first frame's format

    Returns:
        RIFF/WAVE container bytes (PCM, 16-bit, little-endian)

    Raises:
        EmptyCaptureError: If ``frames`` is empty
        FormatMismatchError: If frames disagree on their format
    """
    if not frames:
        raise EmptyCaptureError()

    expected = fmt or frames[0].format
    for index, frame in enumerate(frames):
        if frame.format != expected:
            raise FormatMismatchError(
                f"Frame {index} has format {frame.format}, expected {expected}"
            )
        if frame.samples.ndim != 2 or frame.samples.shape[1] != expected.channels:
            raise FormatMismatchError(
                f"Frame {index} has shape {frame.samples.shape}, "
                f"expected (n, {expected.channels})"
            )

    total_frames = sum(frame.frame_count for frame in frames)
    merged = np.empty((total_frames, expected.channels), dtype=np.float32)
    offset = 0
    for frame in frames:
        merged[offset : offset + frame.frame_count] = frame.samples
        offset += frame.frame_count

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(expected.channels)
        wav_file.setsampwidth(BYTES_PER_SAMPLE)
        wav_file.setframerate(expected.sample_rate)
        wav_file.writeframes(float_to_pcm16(merged).tobytes())

    data = buffer.getvalue()
    logger.debug(
        "Encoded %d frames (%d samples/ch, %.2fs) into %d bytes",
        len(frames),
        total_frames,
        total_frames / expected.sample_rate,
        len(data),
    )
    return data


def read_wav_header(data: bytes) -> WavHeader:
    """Read the stream parameters of a PCM WAVE file.

    Chunks other than ``fmt `` and ``data`` (LIST, fact, ...) are skipped.

    Raises:
        ParseFailureError: If the bytes are not a readable PCM WAVE file
    """
    try:
        with wave.open(io.BytesIO(data), "rb") as wav_file:
            return WavHeader(
                channels=wav_file.getnchannels(),
                sample_rate=wav_file.getframerate(),
                sample_width=wav_file.getsampwidth(),
                frame_count=wav_file.getnframes(),
            )
    except (wave.Error, EOFError) as e:
        raise ParseFailureError(f"Not a readable WAV file: {e}") from e
