"""Typer CLI entrypoint for voiceflow."""

import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import AsyncIterator

import typer

from voiceflow._types import OutputStyle, ProcessingMode, TriggerEvent
from voiceflow.api import OpenAIClient
from voiceflow.completion import ChatCompletionClient
from voiceflow.config import Config, ConfigError, discover_audio_devices, load_config
from voiceflow.delivery import DeduplicatingSink, StdoutSink
from voiceflow.errors import VoiceFlowError
from voiceflow.normalizer import TextNormalizer
from voiceflow.orchestrator import Orchestrator
from voiceflow.transcriber import Transcriber
from voiceflow.wav import read_wav_header

app = typer.Typer(help="Push-to-talk dictation via OpenAI transcription")

logger = logging.getLogger(__name__)

QUIT_COMMANDS = ("q", "quit", "exit")


def _setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger().setLevel(level)


def _merge_config_overrides(
    cfg: Config,
    *,
    audio_device: int | None = None,
    style: str | None = None,
    mode: str | None = None,
    language: str | None = None,
    threshold: float | None = None,
) -> Config:
    """Apply CLI overrides to configuration.

    CLI options take precedence over config file values.

    Raises:
        ConfigError: If override values are invalid
    """
    if audio_device is not None:
        available = discover_audio_devices()
        valid_indices = {d["index"] for d in available}
        if audio_device not in valid_indices:
            available_str = ", ".join(str(d["index"]) for d in available)
            raise ConfigError(
                f"Invalid audio device index {audio_device}. "
                f"Available: {available_str or 'none'}"
            )
        logger.debug("Overriding audio device to index %d", audio_device)
        cfg.audio.device = audio_device

    try:
        if style is not None:
            cfg.transcription.style = OutputStyle.parse(style)
            logger.debug("Overriding output style to '%s'", cfg.transcription.style.value)
        if mode is not None:
            cfg.transcription.mode = ProcessingMode.parse(mode)
            logger.debug("Overriding processing mode to '%s'", cfg.transcription.mode.value)
    except ValueError as e:
        raise ConfigError(str(e)) from e

    if language is not None:
        language = language.strip().lower()
        if not language:
            raise ConfigError("language cannot be empty")
        logger.debug("Overriding language to '%s'", language)
        cfg.transcription.language = language

    if threshold is not None:
        logger.debug("Overriding gate threshold to %.4f", threshold)
        cfg.gate.threshold = threshold

    return cfg


def _build_orchestrator(cfg: Config, recorder=None) -> Orchestrator:
    """Wire the remote clients and the pipeline from configuration."""
    client = OpenAIClient(
        api_key=cfg.api.api_key,
        base_url=cfg.api.base_url,
        timeout=cfg.api.timeout,
    )
    transcriber = Transcriber(
        client,
        model=cfg.api.transcription_model,
        fallback_model=cfg.api.fallback_transcription_model,
    )
    normalizer = TextNormalizer(
        ChatCompletionClient(client, model=cfg.api.text_model, temperature=cfg.api.temperature)
    )
    sink = DeduplicatingSink(StdoutSink(), window=cfg.delivery.dedupe_window)
    return Orchestrator(
        recorder=recorder,
        transcriber=transcriber,
        normalizer=normalizer,
        sink=sink,
        transcription=cfg.transcription,
        gate=cfg.gate,
        config=cfg.orchestrator,
    )


def _load(config: Path | None, **overrides) -> Config:
    cfg = load_config(config)
    if cfg.general.verbose:
        _setup_logging(verbose=True)
    logger.info("Loaded config from: %s", config or "default locations")
    logger.debug("Config: %s", cfg)
    cfg = _merge_config_overrides(cfg, **overrides)
    cfg.validate()
    logger.info("Configuration validated successfully")
    return cfg


async def stdin_triggers() -> AsyncIterator[TriggerEvent]:
    """Turn Enter presses on stdin into alternating press/release events.

    EOF or a quit command ends the stream, releasing first if recording.
    """
    loop = asyncio.get_running_loop()
    pressed = False
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line or line.strip().lower() in QUIT_COMMANDS:
            if pressed:
                yield TriggerEvent(pressed=False, timestamp=time.time())
            return

        pressed = not pressed
        typer.echo("Recording... press Enter to stop" if pressed else "Processing...", err=True)
        yield TriggerEvent(pressed=pressed, timestamp=time.time())


@app.command()
def record(
    config: Path | None = typer.Option(None, "--config", help="Path to configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    audio_device: int | None = typer.Option(
        None, "--audio-device", "-a", help="Override audio device by index"
    ),
    style: str | None = typer.Option(
        None, "--style", "-s", help="Output style (verbatim, clean, clean_bilingual)"
    ),
    mode: str | None = typer.Option(None, "--mode", help="Processing mode (dictation, rewrite)"),
    language: str | None = typer.Option(
        None, "--language", "-l", help="Language code, or 'auto' to detect"
    ),
    threshold: float | None = typer.Option(None, "--threshold", help="Noise gate RMS threshold"),
) -> None:
    """Dictate from the microphone; press Enter to start and stop each take."""
    _setup_logging(verbose)
    try:
        cfg = _load(
            config,
            audio_device=audio_device,
            style=style,
            mode=mode,
            language=language,
            threshold=threshold,
        )

        from voiceflow.gate import RecordingSession
        from voiceflow.recorder import AudioRecorder

        recorder = AudioRecorder(
            sample_rate=cfg.audio.sample_rate,
            channels=cfg.audio.channels,
            chunk_size=cfg.audio.chunk_size,
            device=cfg.audio.device,
            latency=cfg.audio.latency,
            session=RecordingSession(
                hangover_frames=cfg.gate.hangover_frames,
                min_threshold=cfg.gate.min_threshold,
                max_threshold=cfg.gate.max_threshold,
            ),
        )
        orchestrator = _build_orchestrator(cfg, recorder)

        typer.echo("Press Enter to start recording, 'q' to quit", err=True)
        asyncio.run(_run_until_done(orchestrator))

    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        raise typer.Exit(0)
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        raise typer.Exit(1)


async def _run_until_done(orchestrator: Orchestrator) -> None:
    try:
        await orchestrator.run(stdin_triggers())
    finally:
        await orchestrator.shutdown()


@app.command()
def transcribe(
    audio_file: Path = typer.Argument(..., help="WAV file to transcribe", exists=True, dir_okay=False),
    config: Path | None = typer.Option(None, "--config", help="Path to configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    style: str | None = typer.Option(
        None, "--style", "-s", help="Output style (verbatim, clean, clean_bilingual)"
    ),
    mode: str | None = typer.Option(None, "--mode", help="Processing mode (dictation, rewrite)"),
    language: str | None = typer.Option(
        None, "--language", "-l", help="Language code, or 'auto' to detect"
    ),
    raw: bool = typer.Option(False, "--raw", help="Also print the raw transcript to stderr"),
) -> None:
    """Transcribe and normalize an existing WAV file."""
    _setup_logging(verbose)
    try:
        cfg = _load(config, style=style, mode=mode, language=language)

        audio = audio_file.read_bytes()
        header = read_wav_header(audio)
        logger.info(
            "Read %s: %d Hz, %d channel(s), %.2fs",
            audio_file,
            header.sample_rate,
            header.channels,
            header.duration,
        )

        orchestrator = _build_orchestrator(cfg)
        outcome = asyncio.run(_transcribe_once(orchestrator, audio))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except (VoiceFlowError, OSError) as e:
        logger.error("Cannot read %s: %s", audio_file, e)
        raise typer.Exit(1)

    if raw and outcome.raw_text is not None:
        typer.echo(f"raw: {outcome.raw_text}", err=True)
    for error in outcome.errors:
        typer.echo(f"error: {error}", err=True)

    if outcome.text is None:
        raise typer.Exit(1)
    typer.echo(outcome.text)


async def _transcribe_once(orchestrator: Orchestrator, audio: bytes):
    try:
        return await orchestrator.process_audio(orchestrator.build_request(audio))
    finally:
        await orchestrator.shutdown()


@app.command()
def list_audio(
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON instead of table"),
) -> None:
    """List available audio devices."""
    _setup_logging(verbose)
    try:
        devices = discover_audio_devices()
        if not devices:
            logger.warning("No audio devices found")
            return

        if json_output:
            typer.echo(json.dumps(devices, indent=2))
        else:
            typer.echo("Available audio devices:")
            for dev in devices:
                typer.echo(
                    f"  [{dev['index']}] {dev['name']} "
                    f"({dev['channels']}ch, {dev['sample_rate']}Hz)"
                )
    except Exception as e:
        logger.error("Error listing audio devices: %s", e)
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
