"""Settings consumed by the rule engine.

The engine only reads these values; whoever owns the settings UI writes them.
"""

from dataclasses import dataclass, field, fields, is_dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List
import json

from ..exceptions import ConfigurationError


def _default_ignore_patterns() -> List[str]:
    return [
        ".DS_Store",
        "Thumbs.db",
        ".git",
        "node_modules",
        "*.tmp",
        "*.part",
        "*.crdownload",
    ]


@dataclass
class Settings:
    """Engine settings with the defaults used when no file is present."""
    max_concurrent_rules: int = 4
    preview_max_files: int = 100
    preview_debounce_ms: int = 500
    allow_permanent_delete: bool = False
    show_notifications: bool = True
    content_enable_ocr: bool = True
    content_max_text_bytes: int = 10 * 1024 * 1024
    ignore_patterns: List[str] = field(default_factory=_default_ignore_patterns)
    # Formats for the {date} and {time} tokens
    date_format: str = "%Y-%m-%d"
    time_format: str = "%H-%M-%S"
    use_short_date_names: bool = True
    script_timeout_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.max_concurrent_rules < 1:
            raise ConfigurationError("max_concurrent_rules must be at least 1")
        if self.preview_max_files < 1:
            raise ConfigurationError("preview_max_files must be at least 1")
        if self.preview_debounce_ms < 0:
            raise ConfigurationError("preview_debounce_ms cannot be negative")


def _dataclass_to_dict(obj):
    """Convert dataclass to dict recursively."""
    if is_dataclass(obj):
        return {key: _dataclass_to_dict(value) for key, value in asdict(obj).items()}
    elif isinstance(obj, Path):
        return str(obj)
    elif isinstance(obj, dict):
        return {key: _dataclass_to_dict(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_dataclass_to_dict(item) for item in obj]
    else:
        return obj


def _dict_to_dataclass(data: Dict[str, Any], dataclass_type):
    """Build a dataclass from a dict, ignoring keys it does not declare."""
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected an object for {dataclass_type.__name__}, got {type(data).__name__}")

    kwargs = {}
    for f in fields(dataclass_type):
        if f.name in data:
            kwargs[f.name] = data[f.name]

    try:
        return dataclass_type(**kwargs)
    except TypeError as e:
        raise ConfigurationError(f"Invalid settings: {e}")


def settings_from_dict(data: Dict[str, Any]) -> Settings:
    settings = _dict_to_dataclass(data, Settings)

    # Type checks for values that would otherwise fail deep inside the engine
    for f in fields(Settings):
        value = getattr(settings, f.name)
        default = getattr(Settings(), f.name)
        if isinstance(default, bool) and not isinstance(value, bool):
            raise ConfigurationError(f"Setting '{f.name}' must be a boolean")
        if isinstance(default, (int, float)) and not isinstance(default, bool):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"Setting '{f.name}' must be a number")
        if isinstance(default, list) and not isinstance(value, list):
            raise ConfigurationError(f"Setting '{f.name}' must be a list")
    return settings


def load_settings(settings_path: Path) -> Settings:
    """Load settings from a JSON file."""
    try:
        with open(settings_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {settings_path}: {e.msg} at line {e.lineno}")
    except OSError as e:
        raise ConfigurationError(f"Cannot read settings file {settings_path}: {e}")

    return settings_from_dict(data)


def save_settings(settings: Settings, settings_path: Path) -> None:
    """Save settings to a JSON file."""
    with open(settings_path, 'w', encoding='utf-8') as f:
        json.dump(_dataclass_to_dict(settings), f, indent=2)


def create_default_settings(settings_path: Path) -> None:
    """Write a settings file with all defaults."""
    save_settings(Settings(), settings_path)
