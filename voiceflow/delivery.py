"""Hand-off of final text to the consumer."""

import hashlib
import logging
import time
from typing import Callable, Protocol

import typer

logger = logging.getLogger(__name__)


class TextSink(Protocol):
    """Anything that can receive the final dictated text."""

    async def deliver(self, text: str) -> None: ...


class StdoutSink:
    """Writes each delivered text as one line on stdout."""

    async def deliver(self, text: str) -> None:
        typer.echo(text)


class DeduplicatingSink:
    """Suppresses empty text and repeats of the last text within a window.

    The signature is the text length plus its SHA-1 digest, so a repeat is
    only suppressed when the content is identical.
    """

    def __init__(
        self,
        inner: TextSink,
        window: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.inner = inner
        self.window = window
        self._clock = clock
        self._last_signature: str | None = None
        self._last_delivered_at = 0.0

    @staticmethod
    def signature(text: str) -> str:
        digest = hashlib.sha1(text.encode("utf-8")).hexdigest()
        return f"{len(text)}:{digest}"

    async def deliver(self, text: str) -> None:
        normalized = text.strip()
        if not normalized:
            logger.debug("Skipping empty text delivery")
            return

        now = self._clock()
        signature = self.signature(normalized)
        if signature == self._last_signature and now - self._last_delivered_at < self.window:
            logger.info("Skipping duplicate text delivery")
            return

        await self.inner.deliver(normalized)
        self._last_signature = signature
        self._last_delivered_at = now
