"""Typed, environment-driven settings for backend selection and transcription runs."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from subgen.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

DEFAULT_PREFERENCE_ORDER: tuple[str, ...] = ("nvidia", "intel", "apple", "cpu")
AUTO_DEVICE_ID = "auto"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True)
class SelectionConfig:
    """Inputs the backend selector reads from user settings."""

    preference_order: tuple[str, ...] = DEFAULT_PREFERENCE_ORDER
    selected_device_id: str = AUTO_DEVICE_ID
    strict_device_selection: bool = False
    enumeration_timeout_seconds: float = 10.0

    @property
    def explicit_device_id(self) -> str | None:
        """Returns the user-selected device id, or None for automatic selection."""
        if not self.selected_device_id or self.selected_device_id == AUTO_DEVICE_ID:
            return None
        return self.selected_device_id


@dataclass(frozen=True)
class ModelsConfig:
    """Model storage settings."""

    folder: Path = Path("~/.cache/subgen/models").expanduser()
    default_model: str = "base"


@dataclass(frozen=True)
class VadConfig:
    """Voice-activity-detection knobs forwarded to the engine."""

    enabled: bool = True
    threshold: float = 0.5
    min_silence_duration_ms: int = 100


@dataclass(frozen=True)
class TranscriptionConfig:
    """Per-run transcription defaults."""

    language: str = "auto"
    max_context: int = -1
    default_audio_duration_ms: int = 30_000
    vad: VadConfig = field(default_factory=VadConfig)


@dataclass(frozen=True)
class OpenVinoConfig:
    """Environment defaults applied when an OpenVINO backend is chosen."""

    cache_dir: Path = Path("~/.openvino-cache").expanduser()
    enable_optimizations: bool = True


@dataclass(frozen=True)
class MonitoringConfig:
    """Performance history settings."""

    history_capacity: int = 1000
    history_file: Path | None = None
    cpu_baseline_realtime_ratio: float = 1.0
    regression_window: int = 5


@dataclass(frozen=True)
class RecoveryConfig:
    """Error recovery limits."""

    max_retries: int = 3


@dataclass(frozen=True)
class AppConfig:
    """Complete immutable application settings."""

    selection: SelectionConfig = field(default_factory=SelectionConfig)
    models: ModelsConfig = field(default_factory=ModelsConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    openvino: OpenVinoConfig = field(default_factory=OpenVinoConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    logger.warning("Ignoring invalid boolean %s=%r; using %s.", name, value, default)
    return default


def _env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        logger.warning("Ignoring invalid integer %s=%r; using %s.", name, value, default)
        return default
    if minimum is not None and parsed < minimum:
        logger.warning("Ignoring out-of-range %s=%r; using %s.", name, value, default)
        return default
    return parsed


def _env_float(name: str, default: float, *, minimum: float | None = None) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value.strip())
    except ValueError:
        logger.warning("Ignoring invalid number %s=%r; using %s.", name, value, default)
        return default
    if minimum is not None and parsed < minimum:
        logger.warning("Ignoring out-of-range %s=%r; using %s.", name, value, default)
        return default
    return parsed


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return Path(value.strip()).expanduser()


def _preference_order() -> tuple[str, ...]:
    raw = os.getenv("SUBGEN_GPU_PREFERENCE")
    if raw is None or not raw.strip():
        return DEFAULT_PREFERENCE_ORDER
    vendors = tuple(
        token.strip().lower() for token in raw.split(",") if token.strip()
    )
    return vendors or DEFAULT_PREFERENCE_ORDER


def _history_file() -> Path | None:
    value = os.getenv("SUBGEN_HISTORY_FILE")
    if value is None or not value.strip():
        return None
    return Path(value.strip()).expanduser()


def _build_settings() -> AppConfig:
    """Builds settings from the current process environment."""
    load_dotenv(override=False)
    defaults = AppConfig()
    vad_defaults = defaults.transcription.vad
    return AppConfig(
        selection=SelectionConfig(
            preference_order=_preference_order(),
            selected_device_id=_env_str("SUBGEN_SELECTED_DEVICE", AUTO_DEVICE_ID),
            strict_device_selection=_env_bool(
                "SUBGEN_STRICT_DEVICE_SELECTION",
                defaults.selection.strict_device_selection,
            ),
            enumeration_timeout_seconds=_env_float(
                "SUBGEN_ENUMERATION_TIMEOUT_SECONDS",
                defaults.selection.enumeration_timeout_seconds,
                minimum=0.0,
            ),
        ),
        models=ModelsConfig(
            folder=_env_path("SUBGEN_MODELS_DIR", defaults.models.folder),
            default_model=_env_str("WHISPER_MODEL", defaults.models.default_model),
        ),
        transcription=TranscriptionConfig(
            language=_env_str("DEFAULT_LANGUAGE", defaults.transcription.language),
            max_context=_env_int("SUBGEN_MAX_CONTEXT", defaults.transcription.max_context),
            default_audio_duration_ms=_env_int(
                "SUBGEN_DEFAULT_AUDIO_DURATION_MS",
                defaults.transcription.default_audio_duration_ms,
                minimum=1,
            ),
            vad=VadConfig(
                enabled=_env_bool("WHISPER_VAD", vad_defaults.enabled),
                threshold=_env_float(
                    "SUBGEN_VAD_THRESHOLD", vad_defaults.threshold, minimum=0.0
                ),
                min_silence_duration_ms=_env_int(
                    "SUBGEN_VAD_MIN_SILENCE_MS",
                    vad_defaults.min_silence_duration_ms,
                    minimum=0,
                ),
            ),
        ),
        openvino=OpenVinoConfig(
            cache_dir=_env_path("SUBGEN_OPENVINO_CACHE_DIR", defaults.openvino.cache_dir),
            enable_optimizations=_env_bool(
                "SUBGEN_OPENVINO_ENABLE_OPTIMIZATIONS",
                defaults.openvino.enable_optimizations,
            ),
        ),
        monitoring=MonitoringConfig(
            history_capacity=_env_int(
                "SUBGEN_HISTORY_CAPACITY",
                defaults.monitoring.history_capacity,
                minimum=1,
            ),
            history_file=_history_file(),
            cpu_baseline_realtime_ratio=_env_float(
                "SUBGEN_CPU_BASELINE_RATIO",
                defaults.monitoring.cpu_baseline_realtime_ratio,
                minimum=0.001,
            ),
            regression_window=_env_int(
                "SUBGEN_REGRESSION_WINDOW",
                defaults.monitoring.regression_window,
                minimum=1,
            ),
        ),
        recovery=RecoveryConfig(
            max_retries=_env_int(
                "SUBGEN_MAX_RECOVERY_RETRIES",
                defaults.recovery.max_retries,
                minimum=0,
            ),
        ),
    )


_SETTINGS: AppConfig | None = None


def get_settings() -> AppConfig:
    """Returns the active settings, building them on first access."""
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = _build_settings()
    return _SETTINGS


def reload_settings() -> AppConfig:
    """Rebuilds settings from the current environment."""
    global _SETTINGS
    _SETTINGS = _build_settings()
    return _SETTINGS


def apply_settings(settings: AppConfig) -> AppConfig:
    """Installs an explicit settings instance and returns it."""
    global _SETTINGS
    _SETTINGS = settings
    return _SETTINGS
