"""Tests for typed configuration loading and environment refresh."""

from pathlib import Path

import pytest

import subgen.config as config


def test_default_settings_prefer_gpu_vendors_before_cpu() -> None:
    """Defaults should try every accelerator vendor before the CPU baseline."""
    settings = config.reload_settings()

    assert settings.selection.preference_order == ("nvidia", "intel", "apple", "cpu")
    assert settings.selection.selected_device_id == config.AUTO_DEVICE_ID
    assert settings.selection.explicit_device_id is None
    assert settings.selection.strict_device_selection is False
    assert settings.monitoring.history_file is None
    assert settings.recovery.max_retries == 3


def test_reload_settings_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Environment variables should be reflected in loaded settings."""
    monkeypatch.setenv("SUBGEN_GPU_PREFERENCE", " Intel, nvidia ,cpu ")
    monkeypatch.setenv("SUBGEN_SELECTED_DEVICE", "intel_gpu_1")
    monkeypatch.setenv("SUBGEN_STRICT_DEVICE_SELECTION", "yes")
    monkeypatch.setenv("SUBGEN_ENUMERATION_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("SUBGEN_MODELS_DIR", "custom/models")
    monkeypatch.setenv("WHISPER_MODEL", "medium")
    monkeypatch.setenv("DEFAULT_LANGUAGE", "es")
    monkeypatch.setenv("SUBGEN_MAX_CONTEXT", "0")
    monkeypatch.setenv("WHISPER_VAD", "false")
    monkeypatch.setenv("SUBGEN_VAD_THRESHOLD", "0.35")
    monkeypatch.setenv("SUBGEN_VAD_MIN_SILENCE_MS", "250")
    monkeypatch.setenv("SUBGEN_OPENVINO_CACHE_DIR", "custom/ov-cache")
    monkeypatch.setenv("SUBGEN_OPENVINO_ENABLE_OPTIMIZATIONS", "off")
    monkeypatch.setenv("SUBGEN_HISTORY_CAPACITY", "50")
    monkeypatch.setenv("SUBGEN_HISTORY_FILE", "custom/history.json")
    monkeypatch.setenv("SUBGEN_CPU_BASELINE_RATIO", "2.0")
    monkeypatch.setenv("SUBGEN_REGRESSION_WINDOW", "3")
    monkeypatch.setenv("SUBGEN_MAX_RECOVERY_RETRIES", "1")

    settings = config.reload_settings()

    assert settings.selection.preference_order == ("intel", "nvidia", "cpu")
    assert settings.selection.explicit_device_id == "intel_gpu_1"
    assert settings.selection.strict_device_selection is True
    assert settings.selection.enumeration_timeout_seconds == pytest.approx(2.5)
    assert settings.models.folder == Path("custom/models")
    assert settings.models.default_model == "medium"
    assert settings.transcription.language == "es"
    assert settings.transcription.max_context == 0
    assert settings.transcription.vad.enabled is False
    assert settings.transcription.vad.threshold == pytest.approx(0.35)
    assert settings.transcription.vad.min_silence_duration_ms == 250
    assert settings.openvino.cache_dir == Path("custom/ov-cache")
    assert settings.openvino.enable_optimizations is False
    assert settings.monitoring.history_capacity == 50
    assert settings.monitoring.history_file == Path("custom/history.json")
    assert settings.monitoring.cpu_baseline_realtime_ratio == pytest.approx(2.0)
    assert settings.monitoring.regression_window == 3
    assert settings.recovery.max_retries == 1


def test_invalid_values_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    """Malformed or out-of-range values should keep the documented defaults."""
    monkeypatch.setenv("SUBGEN_STRICT_DEVICE_SELECTION", "maybe")
    monkeypatch.setenv("SUBGEN_HISTORY_CAPACITY", "0")
    monkeypatch.setenv("SUBGEN_REGRESSION_WINDOW", "many")
    monkeypatch.setenv("SUBGEN_CPU_BASELINE_RATIO", "-1")
    monkeypatch.setenv("SUBGEN_GPU_PREFERENCE", " , ")

    settings = config.reload_settings()

    assert settings.selection.strict_device_selection is False
    assert settings.monitoring.history_capacity == 1000
    assert settings.monitoring.regression_window == 5
    assert settings.monitoring.cpu_baseline_realtime_ratio == pytest.approx(1.0)
    assert settings.selection.preference_order == config.DEFAULT_PREFERENCE_ORDER


def test_get_settings_caches_until_reload(monkeypatch: pytest.MonkeyPatch) -> None:
    """get_settings should return the cached instance until reload_settings runs."""
    first = config.get_settings()
    monkeypatch.setenv("WHISPER_MODEL", "small")

    assert config.get_settings() is first
    assert config.reload_settings().models.default_model == "small"


def test_apply_settings_installs_explicit_instance() -> None:
    """apply_settings should make an explicit instance the active settings."""
    custom = config.AppConfig(
        selection=config.SelectionConfig(preference_order=("cpu",)),
    )

    assert config.apply_settings(custom) is custom
    assert config.get_settings().selection.preference_order == ("cpu",)


def test_auto_selection_id_is_not_an_explicit_device() -> None:
    """The literal `auto` id should mean automatic selection."""
    selection = config.SelectionConfig(selected_device_id="auto")

    assert selection.explicit_device_id is None
    assert config.SelectionConfig(selected_device_id="cpu").explicit_device_id == "cpu"
