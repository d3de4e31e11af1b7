"""Tests for main CLI module."""

import asyncio
import io
import json
import logging
import struct
from unittest.mock import patch

import httpx
import numpy as np
import pytest
from typer.testing import CliRunner

from voiceflow._types import AudioFormat, AudioFrame, OutputStyle, ProcessingMode
from voiceflow.api import OpenAIClient
from voiceflow.config import Config, ConfigError
from voiceflow.main import _load, _merge_config_overrides, app, stdin_triggers
from voiceflow.wav import encode_wav

runner = CliRunner()

FMT = AudioFormat(sample_rate=16000, channels=1)


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Run without config files and with a test API key."""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("VOICEFLOW_CONFIG", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    return tmp_path


@pytest.fixture
def wav_file(isolated):
    """Write a short WAV file."""
    frames = [AudioFrame(samples=np.full((1600, 1), 0.1, dtype=np.float32), format=FMT)]
    path = isolated / "take.wav"
    path.write_bytes(encode_wav(frames))
    return path


class FakeApi:
    """MockTransport handler answering transcription and completion calls."""

    def __init__(self, transcript="umm kal milte hain", reply="Kal milte hain.", status=200):
        self.transcript = transcript
        self.reply = reply
        self.status = status
        self.paths: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.paths.append(request.url.path)
        if request.url.path.endswith("audio/transcriptions"):
            if self.status != 200:
                return httpx.Response(self.status, json={"error": {"message": "Server overloaded"}})
            return httpx.Response(200, json={"text": self.transcript})
        return httpx.Response(
            200, json={"choices": [{"message": {"role": "assistant", "content": self.reply}}]}
        )

    def client_factory(self):
        def _create(**kwargs):
            http = httpx.AsyncClient(transport=httpx.MockTransport(self))
            return OpenAIClient(client=http, **kwargs)

        return _create


class TestListAudioCommand:
    """Tests for list-audio command."""

    @patch("voiceflow.main.discover_audio_devices")
    def test_list_audio_table_output(self, mock_discover):
        """Test list-audio command with table output."""
        mock_discover.return_value = [
            {"index": 0, "name": "Microphone", "channels": 2, "sample_rate": 48000}
        ]

        result = runner.invoke(app, ["list-audio"])
        assert result.exit_code == 0
        assert "Available audio devices:" in result.stdout
        assert "[0] Microphone" in result.stdout
        assert "2ch" in result.stdout
        assert "48000Hz" in result.stdout

    @patch("voiceflow.main.discover_audio_devices")
    def test_list_audio_json_output(self, mock_discover):
        """Test list-audio command with JSON output."""
        mock_discover.return_value = [
            {"index": 0, "name": "Microphone", "channels": 2, "sample_rate": 48000}
        ]

        result = runner.invoke(app, ["list-audio", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data[0]["name"] == "Microphone"

    @patch("voiceflow.main.discover_audio_devices")
    def test_list_audio_no_devices(self, mock_discover):
        """Test list-audio when no devices found."""
        mock_discover.return_value = []

        result = runner.invoke(app, ["list-audio"])
        assert result.exit_code == 0


class TestTranscribeCommand:
    """Tests for transcribe command."""

    def test_transcribe_success(self, wav_file):
        """Test a file is transcribed, normalized and printed."""
        api = FakeApi()
        with patch("voiceflow.main.OpenAIClient", side_effect=api.client_factory()):
            result = runner.invoke(app, ["transcribe", str(wav_file), "--raw"])

        assert result.exit_code == 0
        assert "Kal milte hain." in result.stdout
        assert "raw: umm kal milte hain" in result.output
        assert api.paths == ["/v1/audio/transcriptions", "/v1/chat/completions"]

    def test_transcribe_verbatim(self, wav_file):
        """Test verbatim style makes only the transcription call."""
        api = FakeApi(transcript="  umm kal milte hain  ")
        with patch("voiceflow.main.OpenAIClient", side_effect=api.client_factory()):
            result = runner.invoke(app, ["transcribe", str(wav_file), "--style", "verbatim"])

        assert result.exit_code == 0
        assert "umm kal milte hain" in result.stdout
        assert api.paths == ["/v1/audio/transcriptions"]

    def test_transcribe_api_failure(self, wav_file):
        """Test a failed transcription exits with an error."""
        api = FakeApi(status=503)
        with patch("voiceflow.main.OpenAIClient", side_effect=api.client_factory()):
            result = runner.invoke(app, ["transcribe", str(wav_file)])

        assert result.exit_code == 1
        assert "Server overloaded" in result.output

    def test_transcribe_missing_key(self, wav_file, monkeypatch):
        """Test a missing API key is a configuration error."""
        monkeypatch.delenv("OPENAI_API_KEY")
        result = runner.invoke(app, ["transcribe", str(wav_file)])
        assert result.exit_code == 1

    def test_transcribe_not_wav(self, isolated):
        """Test a non-WAV file is rejected before any request."""
        path = isolated / "notes.txt"
        path.write_text("hello")
        api = FakeApi()
        with patch("voiceflow.main.OpenAIClient", side_effect=api.client_factory()):
            result = runner.invoke(app, ["transcribe", str(path)])

        assert result.exit_code == 1
        assert api.paths == []

    def test_transcribe_file_with_list_chunk(self, isolated):
        """Test a WAV with an INFO chunk, as ffmpeg writes, is accepted."""
        pcm = struct.pack("<1600h", *([3276] * 1600))
        fmt = struct.pack("<HHIIHH", 1, 1, 16000, 32000, 2, 16)
        info = b"INFO" + b"ISFT" + struct.pack("<I", 14) + b"Lavf60.16.100\x00"
        body = (
            b"WAVE"
            + b"fmt " + struct.pack("<I", len(fmt)) + fmt
            + b"LIST" + struct.pack("<I", len(info)) + info
            + b"data" + struct.pack("<I", len(pcm)) + pcm
        )
        path = isolated / "ffmpeg.wav"
        path.write_bytes(b"RIFF" + struct.pack("<I", len(body)) + body)

        api = FakeApi()
        with patch("voiceflow.main.OpenAIClient", side_effect=api.client_factory()):
            result = runner.invoke(app, ["transcribe", str(path)])

        assert result.exit_code == 0
        assert "Kal milte hain." in result.stdout
        assert api.paths[0] == "/v1/audio/transcriptions"

    def test_transcribe_invalid_style(self, wav_file):
        """Test an unknown style is rejected."""
        result = runner.invoke(app, ["transcribe", str(wav_file), "--style", "fancy"])
        assert result.exit_code == 1


class TestRecordCommand:
    """Tests for record command."""

    @patch("voiceflow.main.asyncio.run")
    @patch("voiceflow.recorder.AudioRecorder")
    def test_record_wires_components(self, mock_recorder_class, mock_asyncio_run, isolated):
        """Test record builds the recorder from config and runs the loop."""
        mock_asyncio_run.side_effect = lambda coro: coro.close()

        result = runner.invoke(app, ["record", "--threshold", "0.03", "--mode", "rewrite"])

        assert result.exit_code == 0
        mock_recorder_class.assert_called_once()
        kwargs = mock_recorder_class.call_args.kwargs
        assert kwargs["channels"] == 1
        assert kwargs["session"].hangover_frames == 6
        mock_asyncio_run.assert_called_once()

    def test_record_config_error(self, isolated, monkeypatch):
        """Test a configuration error exits before opening audio."""
        monkeypatch.delenv("OPENAI_API_KEY")
        result = runner.invoke(app, ["record"])
        assert result.exit_code == 1

    @patch("voiceflow.main.asyncio.run")
    @patch("voiceflow.recorder.AudioRecorder")
    def test_record_keyboard_interrupt(self, mock_recorder_class, mock_asyncio_run, isolated):
        """Test Ctrl+C exits cleanly."""

        def interrupt(coro):
            coro.close()
            raise KeyboardInterrupt

        mock_asyncio_run.side_effect = interrupt
        result = runner.invoke(app, ["record"])
        assert result.exit_code == 0


class TestConfigOverrides:
    """Tests for CLI overrides."""

    def test_overrides_applied(self):
        """Test style, mode, language and threshold overrides."""
        cfg = _merge_config_overrides(
            Config(), style="clean", mode="rewrite", language=" EN ", threshold=0.05
        )
        assert cfg.transcription.style is OutputStyle.CLEAN
        assert cfg.transcription.mode is ProcessingMode.REWRITE
        assert cfg.transcription.language == "en"
        assert cfg.gate.threshold == 0.05

    def test_invalid_mode(self):
        """Test an unknown mode is a configuration error."""
        with pytest.raises(ConfigError, match="processing mode"):
            _merge_config_overrides(Config(), mode="shout")

    @patch("voiceflow.main.discover_audio_devices")
    def test_invalid_audio_device(self, mock_discover):
        """Test an unknown device index is rejected."""
        mock_discover.return_value = [
            {"index": 0, "name": "Mic", "channels": 1, "sample_rate": 48000}
        ]
        with pytest.raises(ConfigError, match="Invalid audio device index 5"):
            _merge_config_overrides(Config(), audio_device=5)


class TestStdinTriggers:
    """Tests for the Enter-key trigger source."""

    def collect(self, text, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO(text))

        async def _collect():
            return [event.pressed async for event in stdin_triggers()]

        return asyncio.run(_collect())

    def test_enter_toggles(self, monkeypatch):
        """Test each Enter alternates press and release until quit."""
        assert self.collect("\n\n\nq\n", monkeypatch) == [True, False, True, False]

    def test_eof_releases(self, monkeypatch):
        """Test EOF while recording produces a final release."""
        assert self.collect("\n", monkeypatch) == [True, False]

    def test_quit_when_idle(self, monkeypatch):
        """Test quitting while idle ends the stream immediately."""
        assert self.collect("quit\n", monkeypatch) == []


class TestVerboseConfig:
    """Tests for the [general] verbose setting."""

    @pytest.fixture
    def root_logger(self):
        root = logging.getLogger()
        level = root.level
        yield root
        root.setLevel(level)

    def test_config_enables_debug(self, isolated, root_logger):
        """Test verbose = true in the config file turns on debug logging."""
        (isolated / "voiceflow.toml").write_text("[general]\nverbose = true\n")
        root_logger.setLevel(logging.INFO)

        cfg = _load(None)

        assert cfg.general.verbose is True
        assert root_logger.level == logging.DEBUG

    def test_default_keeps_level(self, isolated, root_logger):
        """Test the default config leaves the log level alone."""
        root_logger.setLevel(logging.INFO)

        _load(None)

        assert root_logger.level == logging.INFO
