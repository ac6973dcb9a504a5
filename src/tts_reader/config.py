"""Configuration for tts-reader.

Reads $HOME/.config/tts-reader/config.yml (or --config), then merges a
.tts-reader.yml from the current directory on top.  Strings may use
${VAR} and ${VAR:-default}, expanded at load time.

Configuration is read-only: nothing here writes the file back.

Example::

    backend: local          # "local" (CPU, Kokoro) or "http" (Kokoro-FastAPI)
    httpUrl: http://localhost:8880
    httpFormat: wav         # wav, mp3 or pcm
    speakOn: message        # "message" or "idle"
    voice: af_heart
    speed: 1.0
    enabled: true
    maxWorkers: 2           # 0 = synthesize in the calling thread
    chunkMaxLength: 240
    notifications:
      enabled: false
      channels: []
"""

from __future__ import annotations

import copy
import os
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml


DEFAULT_CONFIG_DIR = os.path.join(
    os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config")),
    "tts-reader",
)
DEFAULT_CONFIG_FILE = os.path.join(DEFAULT_CONFIG_DIR, "config.yml")
LOCAL_CONFIG_NAME = ".tts-reader.yml"

BACKENDS = ("local", "http")
SPEAK_MODES = ("message", "idle")
HTTP_FORMATS = ("wav", "mp3", "pcm")

MIN_SPEED, MAX_SPEED = 0.5, 2.0
MAX_WORKERS = 8

AVAILABLE_VOICES = (
    "af_heart",
    "af_bella",
    "af_nicole",
    "af_sarah",
    "af_sky",
    "am_adam",
    "am_michael",
    "bf_emma",
    "bf_isabella",
    "bm_george",
    "bm_lewis",
)

DEFAULT_CONFIG: dict[str, Any] = {
    "backend": "local",
    "httpUrl": "${TTS_READER_HTTP_URL:-http://localhost:8880}",
    "httpFormat": "wav",
    "speakOn": "message",
    "voice": "af_heart",
    "speed": 1.0,
    "enabled": False,
    "maxWorkers": 2,
    "chunkMaxLength": 240,
    "notifications": {
        "enabled": False,
        "cooldownSecs": 30,
        "channels": [],
    },
}


def _expand_env(value: str) -> str:
    """Expand shell-style ${VAR} and ${VAR:-default} in a string."""
    def _replacer(m: re.Match) -> str:
        var_expr = m.group(1)
        if ":-" in var_expr:
            var_name, default = var_expr.split(":-", 1)
            return os.environ.get(var_name, default)
        return os.environ.get(var_expr, "")
    return re.sub(r"\$\{([^}]+)\}", _replacer, value)


def _expand_config(obj: Any) -> Any:
    """Recursively expand env vars in all string values."""
    if isinstance(obj, str):
        return _expand_env(obj)
    elif isinstance(obj, dict):
        return {k: _expand_config(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_config(v) for v in obj]
    return obj


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep-merge override into base. Override values win."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _edit_distance(a: str, b: str) -> int:
    """Levenshtein edit distance between two strings."""
    if len(a) > len(b):
        a, b = b, a
    prev = list(range(len(a) + 1))
    for j in range(1, len(b) + 1):
        curr = [j] + [0] * len(a)
        for i in range(1, len(a) + 1):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            curr[i] = min(curr[i - 1] + 1, prev[i] + 1, prev[i - 1] + cost)
        prev = curr
    return prev[len(a)]


def _closest_match(key: str, valid_keys: set[str], max_distance: int = 3) -> str | None:
    """Suggest the closest valid key for a likely typo."""
    best_match = None
    best_dist = max_distance + 1
    for candidate in valid_keys:
        if key.lower() == candidate.lower():
            return candidate
        if abs(len(key) - len(candidate)) > max_distance:
            continue
        dist = _edit_distance(key.lower(), candidate.lower())
        if dist < best_dist:
            best_dist = dist
            best_match = candidate
    return best_match if best_dist <= max_distance else None


_TRUE_WORDS = {"true", "yes", "on", "1"}
_FALSE_WORDS = {"false", "no", "off", "0"}


def _parse_bool(value: Any) -> Optional[bool]:
    """Read a YAML or env-expanded boolean. None if it is not one."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return None


def _read_yaml(path: str, warnings: list[str]) -> dict[str, Any]:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        warnings.append(f"failed to load {path}: {e}")
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        warnings.append(f"{path} does not contain a mapping, ignored")
        return {}
    return data


@dataclass
class TtsConfig:
    """Settings for one reader. ``enabled`` may be flipped at runtime."""

    backend: str = "local"
    http_url: str = "http://localhost:8880"
    http_format: str = "wav"
    speak_on: str = "message"
    voice: str = "af_heart"
    speed: float = 1.0
    enabled: bool = False
    max_workers: int = 2
    chunk_max_length: int = 240
    notifications: dict[str, Any] = field(default_factory=dict)

    config_path: Optional[str] = None
    validation_warnings: list[str] = field(default_factory=list)

    @classmethod
    def load(cls, config_path: Optional[str] = None,
             cwd: Optional[str] = None) -> "TtsConfig":
        """Load config from file, falling back to defaults.

        Merge order (later takes precedence):
        1. DEFAULT_CONFIG
        2. ~/.config/tts-reader/config.yml (or *config_path*)
        3. .tts-reader.yml in *cwd* (defaults to the process cwd)
        """
        path = config_path or DEFAULT_CONFIG_FILE
        warnings: list[str] = []
        raw = copy.deepcopy(DEFAULT_CONFIG)

        if os.path.isfile(path):
            raw = _deep_merge(raw, _read_yaml(path, warnings))
        elif config_path:
            warnings.append(f"config file not found: {config_path}")

        local_path = os.path.join(cwd or os.getcwd(), LOCAL_CONFIG_NAME)
        if os.path.isfile(local_path):
            raw = _deep_merge(raw, _read_yaml(local_path, warnings))

        cfg = cls.from_dict(_expand_config(raw), warnings)
        cfg.config_path = path
        return cfg

    @classmethod
    def from_dict(cls, data: dict[str, Any],
                  warnings: Optional[list[str]] = None) -> "TtsConfig":
        """Build a validated config from a camelCase dict."""
        warnings = warnings if warnings is not None else []
        defaults = cls()

        known = set(DEFAULT_CONFIG)
        for key in data:
            if key not in known:
                suggestion = _closest_match(key, known)
                hint = f" (did you mean '{suggestion}'?)" if suggestion else ""
                warnings.append(f"unknown key '{key}'{hint}")

        def choice(key: str, options: tuple[str, ...], default: str) -> str:
            value = str(data.get(key, default)).strip().lower()
            if value not in options:
                warnings.append(f"{key} must be one of {', '.join(options)}, got '{value}'")
                return default
            return value

        try:
            speed = float(data.get("speed", defaults.speed))
        except (TypeError, ValueError):
            warnings.append(f"speed must be a number, got {data.get('speed')!r}")
            speed = defaults.speed
        if not MIN_SPEED <= speed <= MAX_SPEED:
            warnings.append(f"speed {speed} clamped to {MIN_SPEED}-{MAX_SPEED}")
            speed = max(MIN_SPEED, min(MAX_SPEED, speed))

        try:
            workers = int(data.get("maxWorkers", defaults.max_workers))
        except (TypeError, ValueError):
            warnings.append(f"maxWorkers must be an integer, got {data.get('maxWorkers')!r}")
            workers = defaults.max_workers
        if not 0 <= workers <= MAX_WORKERS:
            warnings.append(f"maxWorkers {workers} clamped to 0-{MAX_WORKERS}")
            workers = max(0, min(MAX_WORKERS, workers))

        try:
            chunk_len = int(data.get("chunkMaxLength", defaults.chunk_max_length))
        except (TypeError, ValueError):
            chunk_len = 0
        if chunk_len <= 0:
            warnings.append("chunkMaxLength must be a positive integer")
            chunk_len = defaults.chunk_max_length

        enabled = _parse_bool(data.get("enabled", defaults.enabled))
        if enabled is None:
            warnings.append(f"enabled must be true or false, got {data.get('enabled')!r}")
            enabled = defaults.enabled

        voice = str(data.get("voice", defaults.voice))
        if voice not in AVAILABLE_VOICES:
            warnings.append(f"voice '{voice}' is not a known Kokoro voice")

        notifications = data.get("notifications") or {}
        if not isinstance(notifications, dict):
            warnings.append("notifications must be a mapping")
            notifications = {}

        return cls(
            backend=choice("backend", BACKENDS, defaults.backend),
            http_url=str(data.get("httpUrl", defaults.http_url)).rstrip("/"),
            http_format=choice("httpFormat", HTTP_FORMATS, defaults.http_format),
            speak_on=choice("speakOn", SPEAK_MODES, defaults.speak_on),
            voice=voice,
            speed=speed,
            enabled=enabled,
            max_workers=workers,
            chunk_max_length=chunk_len,
            notifications=notifications,
            validation_warnings=warnings,
        )

    def summary(self) -> str:
        return (f"backend={self.backend} speakOn={self.speak_on} voice={self.voice} "
                f"speed={self.speed} maxWorkers={self.max_workers}")
