"""Chat completion calls used by transcript normalization."""

import logging

from voiceflow.api import OpenAIClient
from voiceflow.errors import ParseFailureError, RemoteAPIError

logger = logging.getLogger(__name__)

COMPLETION_PATH = "chat/completions"
DEFAULT_TEXT_MODEL = "gpt-4.1-mini"
DEFAULT_TEMPERATURE = 0.2


class ChatCompletionClient:
    """Sends one system and one user message and returns the reply text."""

    def __init__(
        self,
        client: OpenAIClient,
        model: str = DEFAULT_TEXT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        logger.info("ChatCompletionClient initialized: model=%s, temperature=%.2f", model, temperature)

    async def complete(self, system_prompt: str, user_text: str) -> str:
        """Run one completion and return the trimmed reply.

        Raises:
            NoCredentialError: If no API key was supplied (no request is made)
            RemoteAPIError: If the service reports an error
            ParseFailureError: If the reply has no message content
        """
        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_text},
            ],
        }
        response = await self.client.post_json(COMPLETION_PATH, payload)

        content = _first_choice_content(response.payload)
        if content is not None:
            return content.strip()

        message = response.error_message
        if message is not None:
            logger.error("Completion API error: %s", message)
            raise RemoteAPIError(message, status_code=response.status_code)

        raise ParseFailureError(
            f"Completion response has no choices[0].message.content (HTTP {response.status_code})"
        )

    async def shutdown(self) -> None:
        await self.client.aclose()


def _first_choice_content(payload: dict) -> str | None:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = first.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None
