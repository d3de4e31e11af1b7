"""Configuration loader and validation."""

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from voiceflow._types import OutputStyle, ProcessingMode

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

__all__ = [
    "AudioConfig",
    "GateConfig",
    "ApiConfig",
    "TranscriptionConfig",
    "DeliveryConfig",
    "OrchestratorConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "load_config",
    "discover_audio_devices",
]

SECTIONS = ("audio", "gate", "api", "transcription", "delivery", "orchestrator", "general")


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class AudioConfig:
    """Audio capture configuration."""

    sample_rate: int | None = None
    channels: int = 1
    chunk_size: int = 1024
    device: int | str | None = None
    latency: float | str | None = None


@dataclass
class GateConfig:
    """Noise gate configuration."""

    threshold: float = 0.008
    min_threshold: float = 0.001
    max_threshold: float = 0.08
    hangover_frames: int = 6


@dataclass
class ApiConfig:
    """Remote API configuration (OpenAI-compatible)."""

    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    transcription_model: str = "gpt-4o-transcribe"
    fallback_transcription_model: str | None = "whisper-1"
    text_model: str = "gpt-4.1-mini"
    temperature: float = 0.2
    timeout: float = 30.0


@dataclass
class TranscriptionConfig:
    """Per-request transcription settings."""

    language: str = "hi"
    style: OutputStyle = OutputStyle.CLEAN_BILINGUAL
    mode: ProcessingMode = ProcessingMode.DICTATION

    def __post_init__(self) -> None:
        """Normalize enum values and language code."""
        try:
            self.style = OutputStyle.parse(self.style)
            self.mode = ProcessingMode.parse(self.mode)
        except ValueError as e:
            raise ConfigError(str(e)) from e

        language = str(self.language).strip().lower()
        if not language:
            raise ConfigError("transcription.language cannot be empty")
        self.language = language

    def effective_language(self) -> str:
        """Language hint actually sent to the transcription endpoint.

        Bilingual output needs language detection when the hint is English,
        otherwise Hindi speech would be forced into English.
        """
        if self.style is OutputStyle.CLEAN_BILINGUAL and self.language == "en":
            return "auto"
        return self.language


@dataclass
class OrchestratorConfig:
    """Session orchestration settings."""

    deliver_raw_on_failure: bool = True
    error_recovery_delay: float = 1.0


@dataclass
class DeliveryConfig:
    """Text delivery settings."""

    dedupe_window: float = 1.0


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False


@dataclass
class Config:
    """Main configuration container."""

    audio: AudioConfig = field(default_factory=AudioConfig)
    gate: GateConfig = field(default_factory=GateConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file with environment overrides.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. VOICEFLOW_CONFIG env var
                  2. ./voiceflow.toml
                  3. ~/.config/voiceflow.toml
                  and falls back to defaults when none exists.
            env: Environment variables for overrides (defaults to os.environ)

        Returns:
            Loaded Config instance

        Raises:
            ConfigError: If an explicit file is missing or values are invalid
        """
        if env is None:
            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        raw_data = _load_toml_file(resolved_path) if resolved_path else {}
        return cls.from_mapping(raw_data, env=env)

    @classmethod
    def from_mapping(
        cls,
        raw_data: Mapping,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Build configuration from already parsed TOML data."""
        if env is None:
            env = os.environ

        try:
            coerced = _coerce_config_values(raw_data, env)
            return cls(
                audio=AudioConfig(**coerced["audio"]),
                gate=GateConfig(**coerced["gate"]),
                api=ApiConfig(**coerced["api"]),
                transcription=TranscriptionConfig(**coerced["transcription"]),
                delivery=DeliveryConfig(**coerced["delivery"]),
                orchestrator=OrchestratorConfig(**coerced["orchestrator"]),
                general=GeneralConfig(**coerced["general"]),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

    def validate(self, *, require_credential: bool = True) -> None:
        """Validate configuration values.

        Raises:
            ConfigError: If any value is out of range or unusable
        """
        validate_audio_config(self.audio)
        validate_gate_config(self.gate)
        validate_api_config(self.api, require_credential=require_credential)
        if self.delivery.dedupe_window < 0:
            raise ConfigError(
                f"dedupe_window must be non-negative, got {self.delivery.dedupe_window}"
            )
        if self.orchestrator.error_recovery_delay < 0:
            raise ConfigError(
                "error_recovery_delay must be non-negative, "
                f"got {self.orchestrator.error_recovery_delay}"
            )


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Search order:
    1. CLI-provided path (must exist)
    2. VOICEFLOW_CONFIG environment variable (must exist)
    3. ./voiceflow.toml (current directory)
    4. ~/.config/voiceflow.toml (user config directory)

    Returns None when no optional location exists.
    """
    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    if env_path := env.get("VOICEFLOW_CONFIG"):
        candidate = Path(env_path)
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()
        raise ConfigError(f"Config file not found: {candidate} (from VOICEFLOW_CONFIG)")

    candidates = [Path("voiceflow.toml"), Path.home() / ".config" / "voiceflow.toml"]
    for candidate in candidates:
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    logger.info(
        "No config file found (searched: %s), using defaults",
        ", ".join(str(c) for c in candidates),
    )
    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: Mapping, env: Mapping[str, str]) -> dict:
    """Normalize raw TOML data for dataclass instantiation.

    Rejects unknown sections and fills the API key from OPENAI_API_KEY
    when the file does not set one.
    """
    unknown = set(raw_data) - set(SECTIONS)
    if unknown:
        raise ConfigError(f"Unknown config section(s): {', '.join(sorted(unknown))}")

    coerced = {}
    for section in SECTIONS:
        value = raw_data.get(section, {})
        if not isinstance(value, Mapping):
            raise ConfigError(f"Section [{section}] must be a table")
        coerced[section] = dict(value)

    api_section = coerced["api"]
    if not api_section.get("api_key"):
        api_section["api_key"] = env.get("OPENAI_API_KEY") or None

    # TOML has no null; an empty string disables the fallback model
    if api_section.get("fallback_transcription_model") == "":
        api_section["fallback_transcription_model"] = None

    return coerced


def discover_audio_devices() -> list[dict]:
    """Enumerate available audio capture devices.

    Returns:
        List of device dicts with keys: index, name, channels, sample_rate
        Returns empty list if sounddevice unavailable or no devices found
    """
    try:
        import sounddevice
    except (ImportError, OSError) as e:
        logger.warning("sounddevice not available, cannot enumerate audio devices: %s", e)
        return []

    devices = []
    try:
        device_list = sounddevice.query_devices()
        if isinstance(device_list, dict):
            device_list = [device_list]

        for idx, dev_info in enumerate(device_list):
            if dev_info.get("max_input_channels", 0) > 0:
                devices.append(
                    {
                        "index": idx,
                        "name": dev_info.get("name", f"Device {idx}"),
                        "channels": dev_info.get("max_input_channels", 0),
                        "sample_rate": dev_info.get("default_samplerate", 0),
                    }
                )
    except Exception as e:
        logger.warning("Error discovering audio devices: %s", e)

    return devices


def validate_audio_config(audio_cfg: AudioConfig) -> None:
    """Validate audio capture settings.

    Raises:
        ConfigError: If audio configuration is invalid
    """
    if audio_cfg.sample_rate is not None and audio_cfg.sample_rate <= 0:
        raise ConfigError(f"sample_rate must be positive, got {audio_cfg.sample_rate}")
    if audio_cfg.channels < 1:
        raise ConfigError(f"channels must be at least 1, got {audio_cfg.channels}")
    if audio_cfg.chunk_size <= 0:
        raise ConfigError(f"chunk_size must be positive, got {audio_cfg.chunk_size}")


def validate_gate_config(gate_cfg: GateConfig) -> None:
    """Validate gate range; the threshold itself is clamped, not rejected."""
    if not 0 < gate_cfg.min_threshold <= gate_cfg.max_threshold:
        raise ConfigError(
            f"gate threshold range invalid: min={gate_cfg.min_threshold}, "
            f"max={gate_cfg.max_threshold}"
        )
    if gate_cfg.hangover_frames < 0:
        raise ConfigError(
            f"hangover_frames must be non-negative, got {gate_cfg.hangover_frames}"
        )


def validate_api_config(api_cfg: ApiConfig, *, require_credential: bool = True) -> None:
    """Validate API settings.

    Raises:
        ConfigError: If API configuration is invalid
    """
    if require_credential and not api_cfg.api_key:
        raise ConfigError(
            "OpenAI API key is required. "
            "Set [api].api_key in the config file or the OPENAI_API_KEY environment variable."
        )

    try:
        url = httpx.URL(api_cfg.base_url)
    except (httpx.InvalidURL, TypeError) as e:
        raise ConfigError(f"Invalid api.base_url '{api_cfg.base_url}': {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigError(f"api.base_url must be an http(s) URL, got '{api_cfg.base_url}'")

    if api_cfg.timeout <= 0:
        raise ConfigError(f"api.timeout must be positive, got {api_cfg.timeout}")
    if not 0 <= api_cfg.temperature <= 2:
        raise ConfigError(f"api.temperature must be within [0, 2], got {api_cfg.temperature}")


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().
    """
    return Config.from_toml(path, env=env)
