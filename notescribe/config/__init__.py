"""YAML configuration loader for notescribe."""

import os
import copy
import yaml
from pathlib import Path
from typing import Any, Callable, Dict, Optional
import logging

from ..models.audio import CaptureMode

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "notescribe.yaml"

DEFAULTS: Dict[str, Any] = {
    "endpoint": {
        "url": None,
        "timeout_seconds": 30.0,
    },
    "auth": {
        "token_env": "NOTESCRIBE_TOKEN",
        "token_file": None,
        "require_token": False,
    },
    "audio": {
        "device": None,
        "sample_rate": None,
        "channels": 1,
        "frames_per_buffer": 4096,
    },
    "capture": {
        "mode": "microphone",
        "flush_interval_seconds": 3.0,
    },
    "upload": {
        "target_sample_rate": 24000,
    },
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/notescribe.log",
        "console_output": True,
    },
    "output": {
        "directory": "data/transcripts",
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class TranscriberConfig:
    """notescribe configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, uses notescribe.yaml
                        in the current directory when present, built-in defaults otherwise.
        """
        if config_path is None:
            candidate = Path.cwd() / DEFAULT_CONFIG_FILENAME
            self.config_file = candidate if candidate.exists() else None
        else:
            self.config_file = Path(config_path)
            if not self.config_file.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        if self.config_file is None:
            logger.info("No configuration file found, using defaults")
            self.config = copy.deepcopy(DEFAULTS)
        else:
            logger.info(f"Loading configuration from: {self.config_file}")
            self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")
        except OSError as e:
            raise ValueError(f"Failed to load configuration: {e}")

        if not config:
            raise ValueError("Configuration file is empty")
        if not isinstance(config, dict):
            raise ValueError("Configuration file must contain a mapping")

        config = _merge(DEFAULTS, config)
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        for section, key in (("auth", "token_file"), ("logging", "file_path"), ("output", "directory")):
            value = config.get(section, {}).get(key)
            if value and not os.path.isabs(value):
                config[section][key] = str(config_dir / value)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'capture.flush_interval_seconds').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return default if value is None else value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'audio.device')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        # Navigate to the parent dictionary
        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        # Set the final value
        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_endpoint_url(self) -> str:
        """Get transcription endpoint URL - CRASHES if not configured."""
        url = self.get('endpoint.url') or os.environ.get('NOTESCRIBE_ENDPOINT_URL')
        if not url:
            raise ValueError("Transcription endpoint URL not configured (endpoint.url or NOTESCRIBE_ENDPOINT_URL)")
        return url

    def get_capture_mode(self) -> CaptureMode:
        value = self.get('capture.mode', CaptureMode.MICROPHONE.value)
        try:
            return CaptureMode(value)
        except ValueError:
            raise ValueError(f"Unknown capture mode '{value}', expected one of "
                             f"{[m.value for m in CaptureMode]}")

    def get_token_provider(self) -> Callable[[], Optional[str]]:
        """Build a callable that reads the current bearer token on every call.

        The token file, when configured, wins over the environment variable so
        a refreshed credential is picked up without a restart.
        """
        token_file = self.get('auth.token_file')
        token_env = self.get('auth.token_env')

        def provider() -> Optional[str]:
            if token_file:
                path = Path(token_file)
                if path.exists():
                    token = path.read_text(encoding='utf-8').strip()
                    if token:
                        return token
            if token_env:
                return os.environ.get(token_env) or None
            return None

        return provider

    def get_output_directory(self) -> str:
        """Get transcript output directory path."""
        out_dir = self.get('output.directory', 'data/transcripts')
        return str(Path(out_dir).absolute())
