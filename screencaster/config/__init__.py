"""Simple YAML configuration loader for screencaster."""

import os
import copy
import shlex
import tempfile
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
import logging

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "screencaster.yaml"
CONFIG_ENV_VAR = "SCREENCASTER_CONFIG"
STATE_DIR_ENV_VAR = "SCREENCASTER_STATE_DIR"


def default_state_directory() -> str:
    """Per-user runtime directory holding the session records."""
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return str(Path(runtime_dir) / "screencaster")
    uid = os.getuid() if hasattr(os, "getuid") else "user"
    return str(Path(tempfile.gettempdir()) / f"screencaster-{uid}")


DEFAULTS: Dict[str, Any] = {
    "state": {
        "directory": None,
    },
    "recording": {
        "output_directory": "~/Videos/Screencasts",
        "ready_timeout": 5.0,
        "started_timeout": 5.0,
        "launch_probe": 0.2,
    },
    "stop": {
        "grace_period": 2.0,
        "poll_interval": 0.2,
        "settle_delay": 0.3,
    },
    "sources": {
        "screen": {"enabled": True, "command": None, "device": None, "hardware_accel": False},
        "audio": {"enabled": True, "command": None, "device": "@DEFAULT_SOURCE@"},
        "camera": {"enabled": True, "command": None, "device": None, "fps": 60,
                   "resolution": "1920x1080"},
    },
    "processing": {
        "denoise": False,
        "normalize": True,
        "vertical": True,
        "target_loudness": -14.0,
        "true_peak": -1.5,
        "loudness_range": 11.0,
        "progress_buffer": 10,
        "ffmpeg": "ffmpeg",
        "ffprobe": "ffprobe",
    },
    "logging": {
        "level": "INFO",
        "file_path": None,
        "console_output": True,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def find_config_file(config_path: Optional[str] = None) -> Optional[Path]:
    """Locate the configuration file.

    Looks at the explicit path, then $SCREENCASTER_CONFIG, then
    ./screencaster.yaml, then ~/.config/screencaster/screencaster.yaml.
    """
    if config_path:
        return Path(config_path)

    candidates = []
    if os.environ.get(CONFIG_ENV_VAR):
        candidates.append(Path(os.environ[CONFIG_ENV_VAR]))
    candidates.append(Path.cwd() / CONFIG_FILE_NAME)
    candidates.append(Path.home() / ".config" / "screencaster" / CONFIG_FILE_NAME)

    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


class ScreencasterConfig:
    """screencaster configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, the standard
                        locations are searched and built-in defaults are used
                        when no file is found.
        """
        self.config_file = find_config_file(config_path)

        if self.config_file is None:
            logger.info("No configuration file found, using defaults")
            self.config = copy.deepcopy(DEFAULTS)
            return

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file on top of the defaults."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping")

        config = _deep_merge(DEFAULTS, loaded)

        # Resolve relative paths
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        for section, key in (("state", "directory"),
                             ("recording", "output_directory"),
                             ("logging", "file_path")):
            value = config.get(section, {}).get(key)
            if not value:
                continue
            value = os.path.expanduser(value)
            if not os.path.isabs(value):
                value = str(config_dir / value)
            config[section][key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'stop.grace_period').

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
            key_path: Dot-separated path to config value (e.g., 'stop.grace_period')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        # Navigate to the parent dictionary
        for key in keys[:-1]:
            if not isinstance(config_dict.get(key), dict):
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_state_directory(self) -> str:
        """Directory holding the per-key session records."""
        state_dir = os.environ.get(STATE_DIR_ENV_VAR) or self.get('state.directory')
        return str(Path(state_dir or default_state_directory()).expanduser().absolute())

    def get_output_directory(self) -> str:
        """Root directory recording folders are created in."""
        output_dir = self.get('recording.output_directory', DEFAULTS['recording']['output_directory'])
        return str(Path(output_dir).expanduser().absolute())

    def get_source_command(self, kind: str) -> Optional[List[str]]:
        """Configured command template for a capture source, if any."""
        command = self.get(f'sources.{kind}.command')
        if command is None:
            return None
        if isinstance(command, str):
            return shlex.split(command)
        return [str(part) for part in command]

    def is_source_enabled(self, kind: str) -> bool:
        return bool(self.get(f'sources.{kind}.enabled', True))
