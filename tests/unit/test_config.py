"""Unit tests for TranscriberConfig."""

from pathlib import Path

import pytest
import yaml

from notescribe.config import DEFAULTS, TranscriberConfig
from notescribe.models.audio import CaptureMode


def write_config(directory, data) -> str:
    path = Path(directory) / "notescribe.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


@pytest.mark.unit
class TestTranscriberConfig:
    """Test cases for TranscriberConfig class."""

    def test_missing_file(self, temp_data_dir):
        """Test an explicit path that does not exist raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            TranscriberConfig(str(Path(temp_data_dir) / "absent.yaml"))

    def test_defaults_without_file(self, temp_data_dir, monkeypatch):
        """Test built-in defaults apply when no config file is present."""
        monkeypatch.chdir(temp_data_dir)
        config = TranscriberConfig()

        assert config.config_file is None
        assert config.get('capture.flush_interval_seconds') == 3.0
        assert config.get('upload.target_sample_rate') == 24000
        assert config.get('audio.frames_per_buffer') == 4096
        assert config.config is not DEFAULTS

    def test_picks_up_file_in_working_directory(self, temp_data_dir, monkeypatch):
        """Test notescribe.yaml in the working directory is loaded by default."""
        write_config(temp_data_dir, {"capture": {"mode": "upload"}})
        monkeypatch.chdir(temp_data_dir)

        assert TranscriberConfig().get_capture_mode() == CaptureMode.UPLOAD

    def test_file_merged_over_defaults(self, temp_data_dir):
        """Test file values override defaults and missing keys keep them."""
        path = write_config(temp_data_dir, {
            "endpoint": {"url": "https://example.test/api/transcribe"},
            "capture": {"flush_interval_seconds": 5},
        })
        config = TranscriberConfig(path)

        assert config.get_endpoint_url() == "https://example.test/api/transcribe"
        assert config.get('capture.flush_interval_seconds') == 5
        assert config.get('capture.mode') == "microphone"
        assert config.get('endpoint.timeout_seconds') == 30.0

    def test_empty_file_rejected(self, temp_data_dir):
        """Test an empty YAML file is a configuration error."""
        path = Path(temp_data_dir) / "notescribe.yaml"
        path.write_text("", encoding="utf-8")

        with pytest.raises(ValueError, match="empty"):
            TranscriberConfig(str(path))

    def test_invalid_yaml_rejected(self, temp_data_dir):
        """Test malformed YAML raises ValueError."""
        path = Path(temp_data_dir) / "notescribe.yaml"
        path.write_text("endpoint: [unclosed", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid YAML"):
            TranscriberConfig(str(path))

    def test_relative_paths_resolved_against_config_dir(self, temp_data_dir):
        """Test relative file paths are anchored at the config file's directory."""
        path = write_config(temp_data_dir, {
            "logging": {"file_path": "logs/app.log"},
            "output": {"directory": "transcripts"},
        })
        config = TranscriberConfig(path)

        assert config.get('logging.file_path') == str(Path(temp_data_dir) / "logs/app.log")
        assert config.get_output_directory() == str((Path(temp_data_dir) / "transcripts").absolute())

    def test_get_and_set_dot_notation(self, temp_data_dir, monkeypatch):
        """Test dotted get/set, including new sections."""
        monkeypatch.chdir(temp_data_dir)
        config = TranscriberConfig()

        config.set('audio.device', 'BlackHole 2ch')
        config.set('extra.nested.value', 7)

        assert config.get('audio.device') == 'BlackHole 2ch'
        assert config.get('extra.nested.value') == 7
        assert config.get('no.such.key', 'fallback') == 'fallback'

    def test_endpoint_from_environment(self, temp_data_dir, monkeypatch):
        """Test the endpoint falls back to NOTESCRIBE_ENDPOINT_URL."""
        monkeypatch.chdir(temp_data_dir)
        monkeypatch.setenv("NOTESCRIBE_ENDPOINT_URL", "http://localhost:8080/transcribe")

        assert TranscriberConfig().get_endpoint_url() == "http://localhost:8080/transcribe"

    def test_endpoint_missing(self, temp_data_dir, monkeypatch):
        """Test a missing endpoint raises ValueError."""
        monkeypatch.chdir(temp_data_dir)
        monkeypatch.delenv("NOTESCRIBE_ENDPOINT_URL", raising=False)

        with pytest.raises(ValueError, match="endpoint"):
            TranscriberConfig().get_endpoint_url()

    def test_unknown_capture_mode(self, temp_data_dir):
        """Test an unsupported capture mode is reported."""
        config = TranscriberConfig(write_config(temp_data_dir, {"capture": {"mode": "telepathy"}}))

        with pytest.raises(ValueError, match="telepathy"):
            config.get_capture_mode()

    def test_token_from_environment(self, temp_data_dir, monkeypatch):
        """Test the token provider reads the configured environment variable."""
        monkeypatch.chdir(temp_data_dir)
        monkeypatch.setenv("NOTESCRIBE_TOKEN", "env-token")
        provider = TranscriberConfig().get_token_provider()

        assert provider() == "env-token"
        monkeypatch.delenv("NOTESCRIBE_TOKEN")
        assert provider() is None

    def test_token_file_wins_and_is_reread(self, temp_data_dir, monkeypatch):
        """Test the token file beats the environment and picks up refreshed tokens."""
        monkeypatch.setenv("NOTESCRIBE_TOKEN", "env-token")
        token_path = Path(temp_data_dir) / "token.txt"
        token_path.write_text("file-token-1\n", encoding="utf-8")
        config = TranscriberConfig(write_config(temp_data_dir, {"auth": {"token_file": "token.txt"}}))
        provider = config.get_token_provider()

        assert provider() == "file-token-1"
        token_path.write_text("file-token-2", encoding="utf-8")
        assert provider() == "file-token-2"
        token_path.unlink()
        assert provider() == "env-token"
