"""Contracts between the loader, backend handles and the inference engine."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, TypeAlias

from subgen.backends.environment import EngineDeviceOptions
from subgen.config import VadConfig
from subgen.domain import BackendDescriptor, TranscriptSegment

ProgressCallback: TypeAlias = Callable[[float], None]


@dataclass(frozen=True, slots=True)
class EngineParams:
    """One engine invocation: model, audio, device knobs and progress callback."""

    model_id: str
    audio_path: Path
    models_folder: Path
    device: EngineDeviceOptions
    language: str = "auto"
    max_context: int = -1
    vad: VadConfig = field(default_factory=VadConfig)
    progress_callback: ProgressCallback | None = None


@dataclass(frozen=True, slots=True)
class EngineResult:
    """Transcript produced by one engine invocation."""

    segments: tuple[TranscriptSegment, ...]
    language: str | None = None

    @property
    def text(self) -> str:
        """Returns the transcript as one space-joined string."""
        return " ".join(segment.text.strip() for segment in self.segments).strip()


class InferenceEngine(Protocol):
    """Native transcription engine; one call runs to completion and cannot be interrupted."""

    def invoke(self, params: EngineParams) -> EngineResult:
        """Transcribes one audio file."""
        ...

    def self_test(self, device: EngineDeviceOptions) -> None:
        """Raises when the engine cannot initialize on a device."""
        ...


class BackendHandle(Protocol):
    """Loaded, validated backend ready to run transcriptions."""

    descriptor: BackendDescriptor

    @property
    def device_options(self) -> EngineDeviceOptions:
        """Returns the engine knobs for this backend."""
        ...

    def self_test(self) -> None:
        """Runs a lightweight validation call; raises on failure."""
        ...

    def invoke(self, params: EngineParams) -> EngineResult:
        """Runs the engine on this backend."""
        ...


class BackendLoadError(RuntimeError):
    """Raised when a backend candidate cannot be used."""

    def __init__(self, descriptor: BackendDescriptor, message: str) -> None:
        super().__init__(message)
        self.descriptor = descriptor


class BackendUnavailable(BackendLoadError):
    """Raised when the backend implementation or its runtime cannot be acquired."""


class BackendValidationFailed(BackendLoadError):
    """Raised when an acquired backend fails its self-test call."""
