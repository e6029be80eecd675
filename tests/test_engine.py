"""Tests for the stable-whisper engine adapter."""

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

from subgen.backends.base import EngineParams
from subgen.backends.engine import StableWhisperEngine
from subgen.backends.environment import engine_device_options
from subgen.backends.selector import cpu_descriptor
from subgen.config import VadConfig


class _FakeModel:
    """Model whose transcribe signature mirrors the keywords the engine probes."""

    def __init__(self, result: object) -> None:
        self.result = result
        self.calls: list[dict[str, object]] = []

    def transcribe(
        self,
        audio: str,
        language: str | None = None,
        verbose: bool | None = None,
        vad: bool = False,
        fp16: bool = False,
        vad_threshold: float = 0.35,
        min_silence_dur: float | None = None,
        progress_callback=None,
    ) -> object:
        self.calls.append(
            {
                "audio": audio,
                "language": language,
                "vad": vad,
                "fp16": fp16,
                "vad_threshold": vad_threshold,
                "min_silence_dur": min_silence_dur,
            }
        )
        if progress_callback is not None:
            progress_callback(50, 200)
        return self.result


def _install_fake_stable_whisper(
    monkeypatch: pytest.MonkeyPatch, model: _FakeModel
) -> list[tuple[str, str]]:
    loads: list[tuple[str, str]] = []

    def _fake_load_model(name: str, *, device: str, download_root: str) -> object:
        del download_root
        loads.append((name, device))
        return model

    monkeypatch.setitem(
        sys.modules,
        "stable_whisper",
        SimpleNamespace(load_model=_fake_load_model),
    )
    return loads


def _params(
    tmp_path: Path,
    progress: list[float] | None = None,
    vad: VadConfig | None = None,
) -> EngineParams:
    return EngineParams(
        model_id="base",
        audio_path=tmp_path / "talk.wav",
        models_folder=tmp_path / "models",
        device=engine_device_options(cpu_descriptor()),
        vad=vad or VadConfig(),
        progress_callback=progress.append if progress is not None else None,
    )


def test_invoke_maps_segments_and_progress(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Segments should be converted to milliseconds and blank lines dropped."""
    model = _FakeModel(
        SimpleNamespace(
            segments=[
                SimpleNamespace(start=0.0, end=1.25, text=" Hello there "),
                SimpleNamespace(start=1.25, end=2.0, text="   "),
                SimpleNamespace(start=2.0, end=3.5004, text="General Kenobi"),
            ],
            language="en",
        )
    )
    _install_fake_stable_whisper(monkeypatch, model)
    progress: list[float] = []

    result = StableWhisperEngine().invoke(_params(tmp_path, progress))

    assert [tuple(segment) for segment in result.segments] == [
        (0, 1250, "Hello there"),
        (2000, 3500, "General Kenobi"),
    ]
    assert result.language == "en"
    assert result.text == "Hello there General Kenobi"
    assert progress == [25.0, 100.0]
    assert model.calls[0]["language"] is None
    assert model.calls[0]["fp16"] is False
    assert model.calls[0]["vad_threshold"] == 0.5
    assert (tmp_path / "models").is_dir()


def test_loaded_models_are_cached_per_device(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """A model should load once per (model, device) pair."""
    model = _FakeModel(SimpleNamespace(segments=[], language=None))
    loads = _install_fake_stable_whisper(monkeypatch, model)
    engine = StableWhisperEngine()

    engine.invoke(_params(tmp_path))
    engine.invoke(_params(tmp_path))

    assert loads == [("base", "cpu")]
    assert len(model.calls) == 2


def test_invalid_result_object_raises(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Results without a segment list are engine faults."""
    _install_fake_stable_whisper(monkeypatch, _FakeModel(SimpleNamespace(text="hi")))

    with pytest.raises(RuntimeError, match="Invalid stable-whisper result"):
        StableWhisperEngine().invoke(_params(tmp_path))


def test_vad_settings_are_forwarded(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Configured VAD threshold and minimum silence should reach transcribe()."""
    model = _FakeModel(SimpleNamespace(segments=[], language=None))
    _install_fake_stable_whisper(monkeypatch, model)

    StableWhisperEngine().invoke(
        _params(tmp_path, vad=VadConfig(threshold=0.3, min_silence_duration_ms=250))
    )

    assert model.calls[0]["vad"] is True
    assert model.calls[0]["vad_threshold"] == pytest.approx(0.3)
    assert model.calls[0]["min_silence_dur"] == pytest.approx(0.25)


def test_silence_setting_is_not_passed_through_catch_all_kwargs(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """min_silence_dur should only be sent to a transcribe() that declares it."""
    received: dict[str, object] = {}

    class _KwargsModel:
        def transcribe(self, audio: str, **options: object) -> object:
            received.update(options)
            return SimpleNamespace(segments=[], language=None)

    _install_fake_stable_whisper(monkeypatch, _KwargsModel())  # type: ignore[arg-type]

    StableWhisperEngine().invoke(_params(tmp_path))

    assert "min_silence_dur" not in received
