"""Audio capture feeding the noise gate."""

import logging
from enum import Enum

import sounddevice

from voiceflow._types import AudioFormat, CapturedAudio
from voiceflow.gate import RecordingSession

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 16000


class _RecorderState(Enum):
    """Internal recorder state machine."""

    IDLE = "idle"
    RECORDING = "recording"


class AudioRecorder:
    """Manages audio capture via sounddevice.

    Each captured block is handed to a RecordingSession, which copies it and
    decides whether the gated output keeps it.
    """

    def __init__(
        self,
        sample_rate: int | None = None,
        channels: int = 1,
        chunk_size: int = 1024,
        device: int | str | None = None,
        latency: float | str | None = None,
        session: RecordingSession | None = None,
    ):
        """Initialize audio recorder.

        Args:
            sample_rate: Sample rate in Hz (None uses the device default)
            channels: Number of channels
            chunk_size: Frames per captured block
            device: Audio device index or name (None for default)
            latency: Stream latency passed to sounddevice
            session: Gate session to feed (a default one is created)
        """
        if sample_rate is not None and sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if channels < 1:
            raise ValueError("channels must be at least 1")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_size = chunk_size
        self.device = device
        self.latency = latency
        self.session = session or RecordingSession()

        self._state = _RecorderState.IDLE
        self._stream = None

        logger.info(
            "AudioRecorder initialized: %s Hz, %d channels, device=%s",
            sample_rate if sample_rate is not None else "device default",
            channels,
            device if device is not None else "default",
        )

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit; ensure cleanup."""
        self.close()
        return False

    @property
    def is_recording(self) -> bool:
        return self._state == _RecorderState.RECORDING

    def start(self, threshold: float) -> AudioFormat:
        """Start audio recording.

        Resets the gate session, opens a sounddevice InputStream and begins
        feeding blocks to the session.

        Args:
            threshold: Gate RMS threshold for this session (clamped by the gate)

        Returns:
            The session's audio format

        Raises:
            RuntimeError: If already recording or stream cannot be opened
        """
        if self._state != _RecorderState.IDLE:
            raise RuntimeError(
                f"Cannot start recording: recorder in {self._state.value} state"
            )

        resolved_device = self._resolve_device_selection()

        try:
            fmt = AudioFormat(
                sample_rate=self._resolve_sample_rate(resolved_device),
                channels=self.channels,
            )
            self.session.start(fmt, threshold)
            self._stream = sounddevice.InputStream(
                device=resolved_device,
                samplerate=fmt.sample_rate,
                channels=fmt.channels,
                blocksize=self.chunk_size,
                latency=self.latency,
                callback=self._callback,
                dtype="float32",
            )
            self._stream.start()
            self._state = _RecorderState.RECORDING
            logger.info(
                "Audio stream started (sample_rate=%d, channels=%d, device=%s)",
                fmt.sample_rate,
                fmt.channels,
                resolved_device if resolved_device is not None else "default",
            )
            return fmt
        except Exception as e:
            self._state = _RecorderState.IDLE
            self.session.drain()
            self._close_stream()
            logger.error("Failed to start audio stream: %s", e)
            raise RuntimeError(f"Failed to start audio stream: {e}") from e

    def stop(self) -> CapturedAudio | None:
        """Stop recording and return the frames selected by the gate.

        Safe to call twice: a recorder that is not recording returns None.
        """
        if self._state != _RecorderState.RECORDING:
            logger.debug("stop() called while %s, ignoring", self._state.value)
            return None

        self._close_stream()
        self._state = _RecorderState.IDLE

        captured = self.session.drain()
        logger.info(
            "Audio recording stopped: %d frames, %d samples/ch%s",
            len(captured.frames),
            captured.frame_count,
            " (raw fallback)" if captured.used_fallback else "",
        )
        return captured

    def close(self) -> None:
        """Explicitly close stream and cleanup resources."""
        self._close_stream()
        if self.session.active:
            self.session.drain()
        self._state = _RecorderState.IDLE

    def _close_stream(self) -> None:
        if self._stream:
            try:
                self._stream.stop()
                self._stream.close()
            except Exception as e:
                logger.warning("Error closing stream: %s", e)
            finally:
                self._stream = None

    def _callback(self, indata, frames, time_info, status):
        """Stream callback invoked on audio data arrival.

        Args:
            indata: numpy array of audio data (reused by PortAudio)
            frames: number of frames
            time_info: timing information
            status: stream status flags
        """
        if status:
            logger.warning("Audio stream status: %s", status)

        self.session.on_frame(indata)

    def _resolve_sample_rate(self, device: int | None) -> int:
        """Use the configured rate, else the input device's default rate."""
        if self.sample_rate is not None:
            return self.sample_rate

        try:
            info = sounddevice.query_devices(device, "input")
            rate = int(info.get("default_samplerate", 0))
        except Exception as e:
            logger.warning("Unable to query device sample rate: %s; using %d Hz", e, DEFAULT_SAMPLE_RATE)
            return DEFAULT_SAMPLE_RATE

        return rate if rate > 0 else DEFAULT_SAMPLE_RATE

    def _resolve_device_selection(self) -> int | None:
        """Resolve configured device selection to a sounddevice index."""

        if self.device is None or isinstance(self.device, int):
            return self.device

        try:
            device_list = sounddevice.query_devices()
            if isinstance(device_list, dict):
                device_list = [device_list]
        except Exception as e:
            logger.warning(
                "Unable to enumerate audio devices for '%s': %s; using default",
                self.device,
                e,
            )
            return None

        target = self.device.strip().lower()
        partial_matches: list[tuple[int, str]] = []
        available: list[str] = []

        for idx, dev_info in enumerate(device_list):
            if dev_info.get("max_input_channels", 0) <= 0:
                continue

            name = dev_info.get("name", f"Device {idx}")
            normalized = name.strip().lower()
            available.append(f"[{idx}] {name}")

            if normalized == target:
                logger.debug("Resolved audio device '%s' to index %d (exact match)", self.device, idx)
                return idx

            if target in normalized:
                partial_matches.append((idx, name))

        if partial_matches:
            idx, name = partial_matches[0]
            logger.debug(
                "Resolved audio device '%s' to index %d via partial match (%s)",
                self.device,
                idx,
                name,
            )
            return idx

        logger.warning(
            "Audio device '%s' not found. Using default input. Available devices: %s",
            self.device,
            "; ".join(available) if available else "none",
        )
        return None
