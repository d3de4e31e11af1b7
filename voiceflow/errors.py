"""Error types for capture, transcription and normalization."""


class VoiceFlowError(Exception):
    """Base exception for voiceflow failures."""

    pass


class NoCredentialError(VoiceFlowError):
    """Raised before any request when no API key was supplied."""

    def __init__(self, message: str = "No OpenAI API key configured") -> None:
        super().__init__(message)


class InvalidEndpointError(VoiceFlowError):
    """Raised when the configured API URL cannot be used."""

    pass


class NetworkFailureError(VoiceFlowError):
    """Raised on transport-level failures (connect, timeout, reset)."""

    pass


class NoResponseBodyError(VoiceFlowError):
    """Raised when the API answered with an empty body."""

    def __init__(self, message: str = "No data received from API") -> None:
        super().__init__(message)


class ParseFailureError(VoiceFlowError):
    """Raised when the response body has an unexpected shape."""

    def __init__(self, message: str = "Failed to parse response") -> None:
        super().__init__(message)


class RemoteAPIError(VoiceFlowError):
    """Raised when the API reports an error message."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize API error.

        Args:
            message: Error message reported by the service.
            status_code: HTTP status code if available.
        """
        super().__init__(f"API Error: {message}")
        self.message = message
        self.status_code = status_code


class EmptyCaptureError(VoiceFlowError):
    """Raised when the encoder is given zero frames."""

    def __init__(self, message: str = "No audio frames captured") -> None:
        super().__init__(message)


class FormatMismatchError(VoiceFlowError, ValueError):
    """Raised when frames of one recording disagree on their format."""

    pass


__all__ = [
    "EmptyCaptureError",
    "FormatMismatchError",
    "InvalidEndpointError",
    "NetworkFailureError",
    "NoCredentialError",
    "NoResponseBodyError",
    "ParseFailureError",
    "RemoteAPIError",
    "VoiceFlowError",
]
