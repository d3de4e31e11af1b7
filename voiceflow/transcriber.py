"""Audio transcription via the OpenAI transcription endpoint."""

import logging
import time

from voiceflow._types import TranscriptionResult
from voiceflow.api import OpenAIClient
from voiceflow.errors import ParseFailureError, RemoteAPIError

logger = logging.getLogger(__name__)

TRANSCRIPTION_PATH = "audio/transcriptions"
DEFAULT_MODEL = "gpt-4o-transcribe"
DEFAULT_FALLBACK_MODEL = "whisper-1"
TRANSCRIPTION_PROMPT = (
    "Do not translate. Keep original spoken language. "
    "If speech is Hindi, output Hindi words in Latin script (Hinglish). Use plain text."
)

_FALLBACK_MARKERS = ("model", "not found", "not have access")


def should_retry_with_fallback(error: Exception) -> bool:
    """Return True for API errors saying the model is unavailable to this key."""
    if not isinstance(error, RemoteAPIError):
        return False
    lowered = error.message.lower()
    return any(marker in lowered for marker in _FALLBACK_MARKERS)


class Transcriber:
    """Uploads encoded WAV audio and returns the transcript.

    Tries the primary model first and, when the service says that model is
    unavailable, retries exactly once with the fallback model. Any other
    failure is raised to the caller unchanged.
    """

    def __init__(
        self,
        client: OpenAIClient,
        model: str = DEFAULT_MODEL,
        fallback_model: str | None = DEFAULT_FALLBACK_MODEL,
        prompt: str = TRANSCRIPTION_PROMPT,
    ):
        """Initialize transcriber.

        Args:
            client: Authenticated API client
            model: Primary transcription model
            fallback_model: Model used once if the primary is unavailable
            prompt: Instruction sent with every upload
        """
        self.client = client
        self.model = model
        self.fallback_model = fallback_model
        self.prompt = prompt
        logger.info(
            "Transcriber initialized: model=%s, fallback_model=%s",
            model,
            fallback_model,
        )

    async def transcribe(self, audio: bytes, language: str = "auto") -> TranscriptionResult:
        """Transcribe WAV bytes.

        Args:
            audio: RIFF/WAVE container bytes
            language: ISO language code, or "auto" to let the service detect

        Returns:
            TranscriptionResult with the untouched transcript

        Raises:
            NoCredentialError: If no API key was supplied (no request is made)
            RemoteAPIError: If the service reports an error
            NetworkFailureError, NoResponseBodyError, ParseFailureError
        """
        logger.info(
            "Starting transcription of %d bytes (language=%s, model=%s)",
            len(audio),
            language,
            self.model,
        )

        try:
            return await self._transcribe_with_model(audio, language, self.model)
        except RemoteAPIError as e:
            if not self.fallback_model or not should_retry_with_fallback(e):
                raise
            logger.warning(
                "Model %s unavailable (%s), retrying with %s",
                self.model,
                e.message,
                self.fallback_model,
            )
            return await self._transcribe_with_model(audio, language, self.fallback_model)

    async def _transcribe_with_model(
        self,
        audio: bytes,
        language: str,
        model: str,
    ) -> TranscriptionResult:
        data = {"model": model, "prompt": self.prompt}
        if language != "auto":
            data["language"] = language
        files = {"file": ("audio.wav", audio, "audio/wav")}

        start_time = time.perf_counter()
        response = await self.client.post_multipart(TRANSCRIPTION_PATH, data=data, files=files)
        duration = time.perf_counter() - start_time

        text = response.payload.get("text")
        if isinstance(text, str):
            logger.info("Transcription completed in %.2fs with %s: %d characters", duration, model, len(text))
            logger.debug("Raw transcript: %s", text)
            return TranscriptionResult(text=text, model=model, language=language)

        message = response.error_message
        if message is not None:
            logger.error("Transcription API error from %s: %s", model, message)
            raise RemoteAPIError(message, status_code=response.status_code)

        raise ParseFailureError(
            f"Transcription response has neither 'text' nor 'error.message' "
            f"(HTTP {response.status_code})"
        )

    async def shutdown(self) -> None:
        """Release the HTTP client."""
        logger.info("Transcriber shutting down")
        await self.client.aclose()
