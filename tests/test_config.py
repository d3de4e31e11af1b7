"""Tests for config module."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from voiceflow._types import OutputStyle, ProcessingMode
from voiceflow.config import (
    ApiConfig,
    AudioConfig,
    Config,
    ConfigError,
    GateConfig,
    OrchestratorConfig,
    TranscriptionConfig,
    discover_audio_devices,
    load_config,
)


@pytest.fixture
def tmp_config_file(tmp_path):
    """Create a temporary TOML config file for testing."""

    def _create(content: str, name: str = "voiceflow.toml") -> Path:
        path = tmp_path / name
        path.write_text(content)
        return path

    return _create


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Run with an empty working directory and home, and no config env vars."""
    home = tmp_path / "home"
    work = tmp_path / "work"
    home.mkdir()
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    monkeypatch.delenv("VOICEFLOW_CONFIG", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return work


@pytest.fixture
def full_config_content():
    """Full configuration with all sections."""
    return """
[audio]
sample_rate = 48000
channels = 2
chunk_size = 512

[gate]
threshold = 0.02
hangover_frames = 4

[api]
api_key = "sk-file"
base_url = "https://proxy.example.com/v1"
transcription_model = "gpt-4o-mini-transcribe"
text_model = "gpt-4.1"
temperature = 0.0

[transcription]
language = "EN"
style = "clean"
mode = "rewrite"

[delivery]
dedupe_window = 2.5

[orchestrator]
deliver_raw_on_failure = false
error_recovery_delay = 0.5

[general]
verbose = true
"""


class TestConfigDataclasses:
    """Test configuration dataclasses."""

    def test_defaults(self):
        """Test the default configuration values."""
        cfg = Config()
        assert cfg.audio.sample_rate is None
        assert cfg.audio.channels == 1
        assert cfg.gate.threshold == 0.008
        assert cfg.gate.hangover_frames == 6
        assert cfg.api.transcription_model == "gpt-4o-transcribe"
        assert cfg.api.fallback_transcription_model == "whisper-1"
        assert cfg.api.text_model == "gpt-4.1-mini"
        assert cfg.transcription.language == "hi"
        assert cfg.transcription.style is OutputStyle.CLEAN_BILINGUAL
        assert cfg.transcription.mode is ProcessingMode.DICTATION
        assert cfg.orchestrator.deliver_raw_on_failure is True
        assert cfg.delivery.dedupe_window == 1.0

    def test_transcription_parses_strings(self):
        """Test style and mode strings are parsed into enums."""
        cfg = TranscriptionConfig(language=" HI ", style="clean-hinglish", mode="REWRITE")
        assert cfg.language == "hi"
        assert cfg.style is OutputStyle.CLEAN_BILINGUAL
        assert cfg.mode is ProcessingMode.REWRITE

    def test_transcription_invalid_style(self):
        """Test an unknown style is a configuration error."""
        with pytest.raises(ConfigError, match="Invalid output style"):
            TranscriptionConfig(style="fancy")

    def test_transcription_empty_language(self):
        """Test an empty language is rejected."""
        with pytest.raises(ConfigError, match="language"):
            TranscriptionConfig(language="  ")

    @pytest.mark.parametrize(
        "language,style,expected",
        [
            ("en", OutputStyle.CLEAN_BILINGUAL, "auto"),
            ("en", OutputStyle.CLEAN, "en"),
            ("hi", OutputStyle.CLEAN_BILINGUAL, "hi"),
            ("auto", OutputStyle.VERBATIM, "auto"),
        ],
    )
    def test_effective_language(self, language, style, expected):
        """Test English is detected automatically for bilingual output."""
        cfg = TranscriptionConfig(language=language, style=style)
        assert cfg.effective_language() == expected


class TestConfigLoading:
    """Test config file loading."""

    def test_load_config_from_explicit_path(self, isolated, tmp_config_file, full_config_content):
        """Test loading every section from an explicit path."""
        cfg = load_config(tmp_config_file(full_config_content))

        assert cfg.audio.sample_rate == 48000
        assert cfg.audio.channels == 2
        assert cfg.gate.threshold == 0.02
        assert cfg.gate.hangover_frames == 4
        assert cfg.api.api_key == "sk-file"
        assert cfg.api.base_url == "https://proxy.example.com/v1"
        assert cfg.api.temperature == 0.0
        assert cfg.transcription.language == "en"
        assert cfg.transcription.style is OutputStyle.CLEAN
        assert cfg.transcription.mode is ProcessingMode.REWRITE
        assert cfg.delivery.dedupe_window == 2.5
        assert cfg.orchestrator.deliver_raw_on_failure is False
        assert cfg.general.verbose is True

    def test_missing_explicit_path(self, isolated):
        """Test an explicit path that does not exist is an error."""
        with pytest.raises(ConfigError, match="Config file not found"):
            load_config(Path("/nonexistent/voiceflow.toml"))

    def test_defaults_when_no_file(self, isolated):
        """Test defaults are used when no config file exists."""
        cfg = load_config()
        assert cfg == Config()

    def test_env_var_path(self, isolated, tmp_config_file, monkeypatch):
        """Test VOICEFLOW_CONFIG selects the file."""
        path = tmp_config_file('[transcription]\nstyle = "verbatim"\n', name="custom.toml")
        monkeypatch.setenv("VOICEFLOW_CONFIG", str(path))
        assert load_config().transcription.style is OutputStyle.VERBATIM

    def test_env_var_missing_file(self, isolated, monkeypatch):
        """Test VOICEFLOW_CONFIG pointing nowhere is an error."""
        monkeypatch.setenv("VOICEFLOW_CONFIG", "/nonexistent.toml")
        with pytest.raises(ConfigError, match="VOICEFLOW_CONFIG"):
            load_config()

    def test_current_directory_file(self, isolated):
        """Test ./voiceflow.toml is found."""
        (isolated / "voiceflow.toml").write_text('[gate]\nthreshold = 0.05\n')
        assert load_config().gate.threshold == 0.05

    def test_user_config_file(self, isolated):
        """Test ~/.config/voiceflow.toml is found."""
        config_dir = Path.home() / ".config"
        config_dir.mkdir()
        (config_dir / "voiceflow.toml").write_text('[gate]\nhangover_frames = 2\n')
        assert load_config().gate.hangover_frames == 2

    def test_api_key_from_env(self, isolated):
        """Test OPENAI_API_KEY fills a missing key."""
        cfg = Config.from_mapping({}, env={"OPENAI_API_KEY": "sk-env"})
        assert cfg.api.api_key == "sk-env"

    def test_file_key_wins_over_env(self, isolated):
        """Test the file's key takes precedence over the environment."""
        cfg = Config.from_mapping({"api": {"api_key": "sk-file"}}, env={"OPENAI_API_KEY": "sk-env"})
        assert cfg.api.api_key == "sk-file"

    def test_empty_fallback_model_disables_it(self, isolated):
        """Test an empty fallback model string becomes None."""
        cfg = Config.from_mapping({"api": {"fallback_transcription_model": ""}}, env={})
        assert cfg.api.fallback_transcription_model is None

    def test_unknown_section(self, isolated):
        """Test unknown sections are rejected."""
        with pytest.raises(ConfigError, match="Unknown config section"):
            Config.from_mapping({"hotkey": {}}, env={})

    def test_unknown_key(self, isolated):
        """Test unknown keys inside a section are rejected."""
        with pytest.raises(ConfigError, match="Invalid configuration values"):
            Config.from_mapping({"audio": {"bitrate": 1}}, env={})

    def test_section_must_be_table(self, isolated):
        """Test a scalar where a section belongs is rejected."""
        with pytest.raises(ConfigError, match="must be a table"):
            Config.from_mapping({"audio": 5}, env={})

    def test_invalid_toml(self, isolated, tmp_config_file):
        """Test malformed TOML raises ConfigError."""
        with pytest.raises(ConfigError, match="Failed to parse"):
            load_config(tmp_config_file("[audio\n"))


class TestConfigValidation:
    """Test Config.validate."""

    def valid(self, **api):
        return Config(api=ApiConfig(api_key="sk-test", **api))

    def test_valid_config(self):
        """Test a complete configuration passes."""
        self.valid().validate()

    def test_missing_credential(self):
        """Test a missing key names the environment variable."""
        with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
            Config().validate()

    def test_missing_credential_allowed(self):
        """Test the credential check can be skipped."""
        Config().validate(require_credential=False)

    @pytest.mark.parametrize("url", ["ftp://example.com", "not a url", "https://"])
    def test_invalid_base_url(self, url):
        """Test base URLs must be absolute http(s)."""
        with pytest.raises(ConfigError, match="base_url"):
            self.valid(base_url=url).validate()

    def test_invalid_timeout(self):
        """Test timeout must be positive."""
        with pytest.raises(ConfigError, match="timeout"):
            self.valid(timeout=0).validate()

    def test_invalid_temperature(self):
        """Test temperature must be within [0, 2]."""
        with pytest.raises(ConfigError, match="temperature"):
            self.valid(temperature=3.0).validate()

    def test_invalid_audio(self):
        """Test audio values are range checked."""
        cfg = self.valid()
        cfg.audio = AudioConfig(channels=0)
        with pytest.raises(ConfigError, match="channels"):
            cfg.validate()

    def test_invalid_gate_range(self):
        """Test the gate's min must not exceed max."""
        cfg = self.valid()
        cfg.gate = GateConfig(min_threshold=0.1, max_threshold=0.01)
        with pytest.raises(ConfigError, match="threshold range"):
            cfg.validate()

    def test_out_of_range_threshold_accepted(self):
        """Test the threshold itself is clamped later, not rejected."""
        cfg = self.valid()
        cfg.gate = GateConfig(threshold=5.0)
        cfg.validate()

    def test_negative_recovery_delay(self):
        """Test recovery delay must be non-negative."""
        cfg = self.valid()
        cfg.orchestrator = OrchestratorConfig(error_recovery_delay=-1)
        with pytest.raises(ConfigError, match="error_recovery_delay"):
            cfg.validate()


class TestDiscoverAudioDevices:
    """Test audio device discovery."""

    def test_discover_input_devices_only(self):
        """Test only devices with input channels are listed."""
        fake = MagicMock()
        fake.query_devices.return_value = [
            {"name": "Mic", "max_input_channels": 1, "default_samplerate": 48000.0},
            {"name": "Speakers", "max_input_channels": 0, "default_samplerate": 48000.0},
        ]
        with patch.dict("sys.modules", {"sounddevice": fake}):
            devices = discover_audio_devices()

        assert devices == [{"index": 0, "name": "Mic", "channels": 1, "sample_rate": 48000.0}]

    def test_discover_handles_errors(self):
        """Test query failures yield an empty list."""
        fake = MagicMock()
        fake.query_devices.side_effect = RuntimeError("PortAudio error")
        with patch.dict("sys.modules", {"sounddevice": fake}):
            assert discover_audio_devices() == []
