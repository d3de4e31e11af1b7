"""Transcript cleanup and Latin-script enforcement.

The pipeline is a short sequence of dependent stages::

    VERBATIM         trim
    CLEAN            trim -> cleanup completion
    CLEAN_BILINGUAL  trim -> bilingual completion
                          -> local transliteration (only if non-Latin remains)
                          -> script conversion completion (only if still non-Latin)

Each stage awaits the previous one and any failure is raised to the caller.
The raw transcript is never substituted for a failed stage here; that is
the orchestrator's decision.
"""

import logging
import re
import unicodedata

from unidecode import unidecode

from voiceflow._types import OutputStyle, ProcessingMode
from voiceflow.completion import ChatCompletionClient

logger = logging.getLogger(__name__)

DEVANAGARI_PATTERN = re.compile(r"[\u0900-\u097F]")
_WHITESPACE = re.compile(r"\s+")

CLEANUP_PROMPT = """\
You are a speech-to-text cleanup assistant.
Keep the original meaning exactly.
Remove filler words (umm, uh, ahh, matlab, like, you know) when not meaningful.
Fix grammar, punctuation, capitalization, and sentence boundaries.
Do not add new facts.
{rewrite}
Output plain text only.
Return polished English text with grammar and punctuation fixed."""

CLEANUP_REWRITE = (
    "Rewrite the transcript into concise, polished final text "
    "and infer implied question intent when obvious."
)
CLEANUP_DICTATION = "Stay close to the spoken wording."

BILINGUAL_PROMPT = """\
You are a bilingual transcript normalizer.
Process each sentence independently.
Rules:
1) English speech remains English wording.
2) Hindi speech remains Hindi wording, but in Latin script only.
3) Mixed speech stays mixed naturally.
4) Remove filler words and fix punctuation/grammar.
5) Never output Devanagari or any non-Latin script.
6) Do not translate English into Hindi or Hindi into English.
7) {rewrite}
Output only final plain text."""

BILINGUAL_REWRITE = "If user intent is clearly a question or request, rewrite naturally as that final request."
BILINGUAL_DICTATION = "Keep wording close to spoken dictation."

FORCE_LATIN_PROMPT = """\
Convert only non-Latin script portions to Latin script.
Never output Devanagari or any non-Latin script.
Preserve original wording and language choice.
Keep English text in English.
Keep Hindi text in Hindi wording but Latin letters.
Output plain text only."""


def contains_forbidden_script(text: str, pattern: re.Pattern = DEVANAGARI_PATTERN) -> bool:
    """Return True if ``text`` contains characters from the forbidden block."""
    return pattern.search(text) is not None


def transliterate_to_latin(text: str) -> str:
    """Romanize text locally without a network call.

    Transliterates to Latin, folds diacritics and squashes whitespace.
    """
    transformed = unidecode(text)
    decomposed = unicodedata.normalize("NFKD", transformed)
    folded = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _WHITESPACE.sub(" ", folded).strip()


class TextNormalizer:
    """Applies an output style and processing mode to a raw transcript."""

    def __init__(
        self,
        completions: ChatCompletionClient,
        forbidden_pattern: re.Pattern = DEVANAGARI_PATTERN,
    ):
        self.completions = completions
        self.forbidden_pattern = forbidden_pattern

    async def normalize(
        self,
        raw_transcript: str,
        style: OutputStyle,
        mode: ProcessingMode = ProcessingMode.DICTATION,
    ) -> str:
        """Return the final text for ``raw_transcript``.

        Args:
            raw_transcript: Untouched transcript from the transcriber
            style: Output style to enforce
            mode: Dictation keeps wording, rewrite infers final intent

        Returns:
            Normalized plain text

        Raises:
            VoiceFlowError: If any completion call fails
        """
        trimmed = raw_transcript.strip()
        if not trimmed:
            logger.debug("Empty transcript, skipping normalization")
            return ""

        if style is OutputStyle.VERBATIM:
            return trimmed

        if style is OutputStyle.CLEAN:
            return await self._clean(trimmed, mode)

        return await self._clean_bilingual(trimmed, mode)

    async def shutdown(self) -> None:
        await self.completions.shutdown()

    async def _clean(self, text: str, mode: ProcessingMode) -> str:
        rewrite = CLEANUP_REWRITE if mode is ProcessingMode.REWRITE else CLEANUP_DICTATION
        logger.debug("Running cleanup completion (mode=%s)", mode.value)
        return await self.completions.complete(CLEANUP_PROMPT.format(rewrite=rewrite), text)

    async def _clean_bilingual(self, text: str, mode: ProcessingMode) -> str:
        rewrite = BILINGUAL_REWRITE if mode is ProcessingMode.REWRITE else BILINGUAL_DICTATION
        logger.debug("Running bilingual completion (mode=%s)", mode.value)
        normalized = await self.completions.complete(BILINGUAL_PROMPT.format(rewrite=rewrite), text)

        if not contains_forbidden_script(normalized, self.forbidden_pattern):
            return normalized
        return await self._force_latin(normalized)

    async def _force_latin(self, text: str) -> str:
        local = transliterate_to_latin(text)
        if not contains_forbidden_script(local, self.forbidden_pattern):
            logger.info("Non-Latin script removed by local transliteration")
            return local

        logger.info("Local transliteration insufficient, requesting script conversion")
        return await self.completions.complete(FORCE_LATIN_PROMPT, text)
