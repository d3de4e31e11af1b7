"""Central async state machine orchestrating capture, transcription and delivery."""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterable, Protocol

from voiceflow._types import (
    AudioFormat,
    CapturedAudio,
    SessionOutcome,
    TranscriptRequest,
    TriggerEvent,
)
from voiceflow.config import GateConfig, OrchestratorConfig, TranscriptionConfig
from voiceflow.delivery import TextSink
from voiceflow.errors import VoiceFlowError
from voiceflow.normalizer import TextNormalizer
from voiceflow.transcriber import Transcriber
from voiceflow.wav import encode_wav

logger = logging.getLogger(__name__)


class CaptureSource(Protocol):
    """Capture collaborator: start/stop a gated recording."""

    def start(self, threshold: float) -> AudioFormat: ...

    def stop(self) -> CapturedAudio | None: ...

    def close(self) -> None: ...


class State(Enum):
    """Orchestrator state."""

    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    NORMALIZING = "normalizing"
    DELIVERING = "delivering"
    ERROR = "error"
    SHUTDOWN = "shutdown"


class Orchestrator:
    """Coordinates recorder, transcriber, normalizer and text sink.

    One capture session is active at a time. A trigger press starts recording;
    the release stops it, encodes the gated frames and runs the remote
    pipeline in a background task so trigger events keep flowing.
    """

    def __init__(
        self,
        recorder: CaptureSource | None,
        transcriber: Transcriber,
        normalizer: TextNormalizer,
        sink: TextSink,
        transcription: TranscriptionConfig | None = None,
        gate: GateConfig | None = None,
        config: OrchestratorConfig | None = None,
    ):
        """Initialize orchestrator with components.

        Args:
            recorder: Capture source feeding the noise gate (None for file input)
            transcriber: Remote transcription client
            normalizer: Transcript normalization pipeline
            sink: Delivery collaborator for the final text
            transcription: Language, style and mode for each request
            gate: Gate threshold read at each session start
            config: OrchestratorConfig for recovery parameters
        """
        self.recorder = recorder
        self.transcriber = transcriber
        self.normalizer = normalizer
        self.sink = sink
        self.transcription = transcription or TranscriptionConfig()
        self.gate = gate or GateConfig()
        self.config = config or OrchestratorConfig()

        self.state = State.IDLE
        self.last_outcome: SessionOutcome | None = None
        self._shutdown_event = asyncio.Event()
        self._session_task: asyncio.Task | None = None
        self._last_error: Exception | None = None

        logger.info("Orchestrator initialized in IDLE state")

    async def run(self, triggers: AsyncIterable[TriggerEvent]) -> None:
        """Main event loop driven by trigger events.

        Handles errors and recovers to IDLE state. Waits for an in-flight
        session to finish once the trigger source is exhausted.

        Raises:
            RuntimeError: On unrecoverable failure
        """
        logger.info("Orchestrator event loop starting")

        try:
            async for event in triggers:
                if self._shutdown_event.is_set():
                    logger.info("Shutdown signal received, exiting event loop")
                    break

                try:
                    if event.pressed:
                        await self._on_trigger_pressed()
                    else:
                        await self._on_trigger_released()
                except Exception as e:
                    logger.error("Error in trigger event handler: %s", e, exc_info=True)
                    self._last_error = e
                    self.state = State.ERROR
                    await self._error_recovery(e)

            if self._session_task and not self._session_task.done():
                await self._session_task

        except asyncio.CancelledError:
            logger.info("Orchestrator cancelled")
            await self.shutdown()
            raise
        except Exception as e:
            logger.error("Orchestrator error: %s", e, exc_info=True)
            self._last_error = e
            self.state = State.ERROR
            await self.shutdown()
            raise RuntimeError(f"Orchestrator failed: {e}") from e

    async def shutdown(self) -> None:
        """Gracefully shut down orchestrator and clean up resources."""
        logger.info("Orchestrator shutdown starting")
        self._shutdown_event.set()
        self.state = State.SHUTDOWN

        task = self._session_task
        if task and task is not asyncio.current_task() and not task.done():
            logger.debug("Cancelling session task")
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

        if self.recorder:
            try:
                self.recorder.close()
                logger.debug("Recorder closed")
            except Exception as e:
                logger.warning("Error closing recorder: %s", e)

        for component in (self.transcriber, self.normalizer):
            try:
                await component.shutdown()
            except Exception as e:
                logger.warning("Error shutting down %s: %s", type(component).__name__, e)

        logger.info("Orchestrator shutdown complete")

    async def process_audio(self, request: TranscriptRequest) -> SessionOutcome:
        """Transcribe and normalize one encoded recording.

        Transcription failure stops the pipeline before normalization. When
        normalization fails the raw transcript is used as the final text if
        ``deliver_raw_on_failure`` is set; it is kept in ``raw_text`` either
        way.
        """
        outcome = SessionOutcome()

        self.state = State.TRANSCRIBING
        try:
            result = await self.transcriber.transcribe(request.audio, request.language)
        except VoiceFlowError as e:
            logger.error("Transcription failed (%s): %s", type(e).__name__, e)
            outcome.errors.append(e)
            return outcome

        outcome.raw_text = result.text

        self.state = State.NORMALIZING
        try:
            outcome.text = await self.normalizer.normalize(result.text, request.style, request.mode)
            outcome.normalized = True
        except VoiceFlowError as e:
            outcome.errors.append(e)
            if self.config.deliver_raw_on_failure:
                logger.warning("Post-processing failed, using raw transcript: %s", e)
                outcome.text = result.text.strip()
            else:
                logger.error("Post-processing failed: %s", e)

        return outcome

    def build_request(self, audio: bytes) -> TranscriptRequest:
        """Attach the current transcription settings to encoded audio."""
        return TranscriptRequest(
            audio=audio,
            language=self.transcription.effective_language(),
            style=self.transcription.style,
            mode=self.transcription.mode,
        )

    async def _on_trigger_pressed(self) -> None:
        """Handle trigger press: transition IDLE -> RECORDING."""
        if self.state != State.IDLE:
            logger.warning("Trigger pressed while in %s state, ignoring", self.state.value)
            return

        if self.recorder is None:
            raise RuntimeError("No capture source configured")

        logger.info("State transition: IDLE -> RECORDING")
        self.state = State.RECORDING
        self.recorder.start(self.gate.threshold)

    async def _on_trigger_released(self) -> None:
        """Handle trigger release: stop capture, encode, spawn the pipeline."""
        if self.state != State.RECORDING:
            logger.warning("Trigger released while in %s state, ignoring", self.state.value)
            return

        captured = self.recorder.stop()
        if captured is None or not captured.frames:
            logger.info("Transcription skipped: no audio data produced")
            self.state = State.IDLE
            return

        audio = encode_wav(captured.frames, captured.format)
        logger.info("State transition: RECORDING -> TRANSCRIBING")
        self.state = State.TRANSCRIBING
        self._session_task = asyncio.create_task(self._process_and_deliver(audio))

    async def _process_and_deliver(self, audio: bytes) -> None:
        """Run the remote pipeline for one recording and deliver the text."""
        try:
            outcome = await self.process_audio(self.build_request(audio))
            self.last_outcome = outcome

            if outcome.text is None:
                error = outcome.errors[-1] if outcome.errors else RuntimeError("No text produced")
                self.state = State.ERROR
                await self._error_recovery(error)
                return

            logger.info("State transition: %s -> DELIVERING", self.state.name)
            self.state = State.DELIVERING
            await self.sink.deliver(outcome.text)
            logger.info("Delivered %d characters", len(outcome.text))
            self.state = State.IDLE
        except asyncio.CancelledError:
            logger.debug("Session task cancelled")
            raise
        except Exception as e:
            logger.error("Session pipeline failed: %s", e, exc_info=True)
            self._last_error = e
            self.state = State.ERROR
            await self._error_recovery(e)

    async def _error_recovery(self, error: Exception) -> None:
        """Recover from error state by waiting and transitioning to IDLE."""
        logger.warning(
            "Error recovery: waiting %.1fs before IDLE (error: %s: %s)",
            self.config.error_recovery_delay,
            type(error).__name__,
            error,
        )

        if self.recorder is not None:
            try:
                self.recorder.stop()
            except Exception as e:
                logger.debug("Recorder stop during recovery failed: %s", e)

        await asyncio.sleep(self.config.error_recovery_delay)

        if self.state == State.ERROR:
            logger.info("State transition: ERROR -> IDLE")
            self.state = State.IDLE
