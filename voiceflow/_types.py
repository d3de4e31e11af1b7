"""Shared types and dataclasses for cross-module use."""

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


@dataclass(frozen=True)
class AudioFormat:
    """Sample layout of one recording session (float32 samples)."""

    sample_rate: int
    channels: int

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if self.channels < 1:
            raise ValueError("channels must be at least 1")


@dataclass(frozen=True)
class AudioFrame:
    """Immutable block of interleaved samples shaped (frame_count, channels)."""

    samples: np.ndarray
    format: AudioFormat

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[0])


@dataclass
class CapturedAudio:
    """Frames selected by the gate when a session stops."""

    frames: list[AudioFrame]
    format: AudioFormat | None
    used_fallback: bool = False

    @property
    def frame_count(self) -> int:
        return sum(frame.frame_count for frame in self.frames)


class OutputStyle(Enum):
    """Editorial style applied to the raw transcript."""

    VERBATIM = "verbatim"
    CLEAN = "clean"
    CLEAN_BILINGUAL = "clean_bilingual"

    @classmethod
    def parse(cls, value: "str | OutputStyle") -> "OutputStyle":
        """Parse a config value, accepting the legacy ``clean_hinglish`` name."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        if normalized == "clean_hinglish":
            return cls.CLEAN_BILINGUAL
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Invalid output style '{value}'. Must be one of: {valid}") from None


class ProcessingMode(Enum):
    """How far the cleanup step may move away from the spoken wording."""

    DICTATION = "dictation"
    REWRITE = "rewrite"

    @classmethod
    def parse(cls, value: "str | ProcessingMode") -> "ProcessingMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Invalid processing mode '{value}'. Must be one of: {valid}") from None


@dataclass
class TriggerEvent:
    """Push-to-talk trigger press/release from the hotkey collaborator."""

    pressed: bool
    timestamp: float = 0.0


@dataclass
class TranscriptRequest:
    """Encoded audio plus the per-request transcription settings."""

    audio: bytes
    language: str = "auto"
    style: OutputStyle = OutputStyle.CLEAN_BILINGUAL
    mode: ProcessingMode = ProcessingMode.DICTATION


@dataclass
class TranscriptionResult:
    """Result from the remote transcription endpoint."""

    text: str
    model: str
    language: str = "auto"


@dataclass
class SessionOutcome:
    """What one dictation session produced.

    ``raw_text`` is always the untouched transcript when transcription
    succeeded, even if normalization failed.
    """

    raw_text: str | None = None
    text: str | None = None
    normalized: bool = False
    errors: list[Exception] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.text is not None
