"""Per-frame voice activity gate with hangover and raw fallback."""

import logging
import threading
from dataclasses import dataclass

import numpy as np

from voiceflow._types import AudioFormat, AudioFrame, CapturedAudio

logger = logging.getLogger(__name__)

DEFAULT_HANGOVER_FRAMES = 6
DEFAULT_MIN_THRESHOLD = 0.001
DEFAULT_MAX_THRESHOLD = 0.08


def compute_rms(samples: np.ndarray) -> float:
    """Return RMS energy averaged across channels.

    Sums the per-channel mean square and divides by the channel count
    before taking the root. Empty input has zero energy.
    """
    if samples.size == 0:
        return 0.0
    data = samples.astype(np.float64, copy=False)
    if data.ndim == 1:
        data = data.reshape(-1, 1)
    per_channel = np.mean(data * data, axis=0)
    return float(np.sqrt(per_channel.sum() / data.shape[1]))


def clamp_threshold(threshold: float, minimum: float, maximum: float) -> float:
    """Clamp a configured threshold into the safe gating range."""
    try:
        value = float(threshold)
    except (TypeError, ValueError):
        value = minimum
    if not np.isfinite(value):
        value = maximum if value > 0 else minimum
    return max(minimum, min(maximum, value))


@dataclass
class GateState:
    """Mutable gate counters, reset at session start."""

    voiced_run_count: int = 0
    hangover_remaining: int = 0
    threshold_rms: float = DEFAULT_MIN_THRESHOLD


class RecordingSession:
    """Owns the gated and raw frame buffers of one recording.

    ``on_frame`` runs on the capture thread, ``start`` and ``drain`` on the
    control path; a lock serializes them. The object may be reused across
    sessions because ``start`` fully resets it.
    """

    def __init__(
        self,
        hangover_frames: int = DEFAULT_HANGOVER_FRAMES,
        min_threshold: float = DEFAULT_MIN_THRESHOLD,
        max_threshold: float = DEFAULT_MAX_THRESHOLD,
    ):
        if hangover_frames < 0:
            raise ValueError("hangover_frames must be non-negative")
        if not 0 < min_threshold <= max_threshold:
            raise ValueError("threshold range must satisfy 0 < min <= max")

        self.hangover_frames = hangover_frames
        self.min_threshold = min_threshold
        self.max_threshold = max_threshold

        self.state = GateState(threshold_rms=min_threshold)
        self.format: AudioFormat | None = None
        self._gated: list[AudioFrame] = []
        self._raw: list[AudioFrame] = []
        self._dropped = 0
        self._active = False
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    @property
    def gated(self) -> tuple[AudioFrame, ...]:
        with self._lock:
            return tuple(self._gated)

    @property
    def raw(self) -> tuple[AudioFrame, ...]:
        with self._lock:
            return tuple(self._raw)

    def start(self, fmt: AudioFormat, threshold: float) -> None:
        """Reset buffers and gate state for a new recording."""
        clamped = clamp_threshold(threshold, self.min_threshold, self.max_threshold)
        if clamped != threshold:
            logger.debug("Gate threshold %r clamped to %.4f", threshold, clamped)

        with self._lock:
            self._gated.clear()
            self._raw.clear()
            self._dropped = 0
            self.state = GateState(threshold_rms=clamped)
            self.format = fmt
            self._active = True

        logger.debug(
            "Recording session started (threshold=%.4f, hangover=%d, %d Hz, %d ch)",
            clamped,
            self.hangover_frames,
            fmt.sample_rate,
            fmt.channels,
        )

    def on_frame(self, samples: np.ndarray) -> None:
        """Classify one captured block and append it to the buffers.

        Never raises: a block that cannot be copied is dropped from both
        buffers and the session carries on.
        """
        if not self._active or self.format is None:
            return

        frame = self._copy_frame(samples)
        if frame is None or frame.frame_count == 0:
            return

        rms = compute_rms(frame.samples)

        with self._lock:
            if not self._active:
                return
            state = self.state
            self._raw.append(frame)
            if rms >= state.threshold_rms:
                self._gated.append(frame)
                state.voiced_run_count += 1
                state.hangover_remaining = self.hangover_frames
            elif state.hangover_remaining > 0:
                self._gated.append(frame)
                state.hangover_remaining -= 1

    def drain(self) -> CapturedAudio:
        """Stop accepting frames and return the frames to encode.

        Returns the gated frames if any frame crossed the threshold, otherwise
        the full raw capture with ``used_fallback`` set.
        """
        with self._lock:
            self._active = False
            voiced = self.state.voiced_run_count
            if voiced > 0:
                frames = list(self._gated)
                used_fallback = False
            else:
                frames = list(self._raw)
                used_fallback = True
            raw_count = len(self._raw)
            dropped = self._dropped
            self._gated.clear()
            self._raw.clear()

        if dropped:
            logger.warning("Dropped %d audio frame(s) that could not be copied", dropped)

        if used_fallback and frames:
            logger.info(
                "Noise gate too strict (threshold=%.4f), using raw audio fallback",
                self.state.threshold_rms,
            )
        else:
            logger.debug(
                "Gate kept %d of %d frames (%d voiced)", len(frames), raw_count, voiced
            )

        return CapturedAudio(frames=frames, format=self.format, used_fallback=used_fallback)

    def _copy_frame(self, samples: np.ndarray) -> AudioFrame | None:
        """Copy a block out of the driver's reusable buffer."""
        fmt = self.format
        try:
            data = np.array(samples, dtype=np.float32, copy=True)
            if data.ndim == 1:
                data = data.reshape(-1, fmt.channels)
            if data.ndim != 2 or data.shape[1] != fmt.channels:
                raise ValueError(
                    f"expected {fmt.channels} channel(s), got shape {data.shape}"
                )
            data.flags.writeable = False
            return AudioFrame(samples=data, format=fmt)
        except (MemoryError, ValueError, TypeError) as e:
            with self._lock:
                self._dropped += 1
            logger.debug("Dropping audio frame: %s", e)
            return None
