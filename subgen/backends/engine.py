"""stable-whisper inference engine adapter."""

from __future__ import annotations

import importlib
import importlib.util
import inspect
import logging
import os
import threading
from collections.abc import Callable
from typing import cast

from subgen.backends.base import EngineParams, EngineResult
from subgen.backends.environment import EngineDeviceOptions
from subgen.domain import TranscriptSegment
from subgen.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


def _supports_keyword_argument(callable_obj: Callable[..., object], name: str) -> bool:
    """Returns whether a callable accepts one keyword argument."""
    try:
        parameters = inspect.signature(callable_obj).parameters
    except (TypeError, ValueError):
        return False
    if name in parameters:
        return True
    return any(
        parameter.kind is inspect.Parameter.VAR_KEYWORD
        for parameter in parameters.values()
    )


def _supports_named_parameter(callable_obj: Callable[..., object], name: str) -> bool:
    """Returns whether a callable declares one parameter by name."""
    try:
        return name in inspect.signature(callable_obj).parameters
    except (TypeError, ValueError):
        return False


class StableWhisperEngine:
    """Runs stable-whisper models, caching one loaded model per (name, device)."""

    def __init__(self) -> None:
        self._models: dict[tuple[str, str], object] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _stable_whisper() -> object:
        try:
            return importlib.import_module("stable_whisper")
        except ModuleNotFoundError as err:
            raise RuntimeError(
                "Missing stable-whisper dependencies. Ensure project dependencies "
                "are installed."
            ) from err

    def self_test(self, device: EngineDeviceOptions) -> None:
        """Checks that the engine package and its torch device are usable."""
        if importlib.util.find_spec("stable_whisper") is None:
            raise RuntimeError("stable-whisper is not installed.")
        if device.torch_device == "cpu":
            return
        torch = importlib.import_module("torch")
        probe = torch.zeros(1, device=device.torch_device)
        if int(probe.numel()) != 1:
            raise RuntimeError(f"Device {device.torch_device} returned an invalid tensor.")

    def _load_model(self, params: EngineParams) -> object:
        key = (params.model_id, params.device.torch_device)
        with self._lock:
            model = self._models.get(key)
            if model is not None:
                return model
            stable_whisper = self._stable_whisper()
            load_model = getattr(stable_whisper, "load_model", None)
            if not callable(load_model):
                raise RuntimeError(
                    "stable-whisper package does not expose a callable load_model()."
                )
            os.makedirs(params.models_folder, exist_ok=True)
            logger.info(
                "Loading whisper model %s on %s.",
                params.model_id,
                params.device.torch_device,
            )
            model = load_model(
                params.model_id,
                device=params.device.torch_device,
                download_root=str(params.models_folder),
            )
            self._models[key] = model
            return model

    def _transcribe_kwargs(
        self,
        transcribe: Callable[..., object],
        params: EngineParams,
    ) -> dict[str, object]:
        kwargs: dict[str, object] = {
            "audio": str(params.audio_path),
            "language": None if params.language == "auto" else params.language,
            "verbose": None,
            "vad": params.vad.enabled,
            "fp16": params.device.use_gpu and params.device.torch_device != "cpu",
        }
        if params.vad.enabled and _supports_keyword_argument(transcribe, "vad_threshold"):
            kwargs["vad_threshold"] = params.vad.threshold
        if _supports_named_parameter(transcribe, "min_silence_dur"):
            kwargs["min_silence_dur"] = params.vad.min_silence_duration_ms / 1000.0
        if params.max_context == 0 and _supports_keyword_argument(
            transcribe, "condition_on_previous_text"
        ):
            kwargs["condition_on_previous_text"] = False
        callback = params.progress_callback
        if callback is not None and _supports_keyword_argument(
            transcribe, "progress_callback"
        ):
            kwargs["progress_callback"] = lambda seek, total: callback(
                100.0 * float(seek) / float(total) if total else 0.0
            )
        return kwargs

    def invoke(self, params: EngineParams) -> EngineResult:
        """Transcribes one audio file; blocks until the model finishes."""
        model = self._load_model(params)
        transcribe = getattr(model, "transcribe", None)
        if not callable(transcribe):
            raise RuntimeError(
                "Loaded stable-whisper model does not expose a callable transcribe()."
            )
        typed_transcribe = cast(Callable[..., object], transcribe)
        result = typed_transcribe(**self._transcribe_kwargs(typed_transcribe, params))
        if params.progress_callback is not None:
            params.progress_callback(100.0)
        return EngineResult(
            segments=self._segments(result),
            language=getattr(result, "language", None),
        )

    @staticmethod
    def _segments(result: object) -> tuple[TranscriptSegment, ...]:
        segments = getattr(result, "segments", None)
        if not isinstance(segments, list | tuple):
            raise RuntimeError("Invalid stable-whisper result object.")
        transcript: list[TranscriptSegment] = []
        for segment in segments:
            start = getattr(segment, "start", None)
            end = getattr(segment, "end", None)
            text = str(getattr(segment, "text", "")).strip()
            if start is None or end is None or not text:
                continue
            transcript.append(
                TranscriptSegment(
                    start_ms=int(round(float(start) * 1000.0)),
                    end_ms=int(round(float(end) * 1000.0)),
                    text=text,
                )
            )
        return tuple(transcript)
