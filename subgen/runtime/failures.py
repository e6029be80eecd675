"""Run-level error taxonomy and engine fault classification."""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from enum import StrEnum


class SelectionExhausted(RuntimeError):
    """Raised when no backend, not even CPU, could be used."""


class InvalidUserSelection(ValueError):
    """Raised when an explicitly selected device id is not enumerated."""

    def __init__(self, identifier: str) -> None:
        super().__init__(f"Selected device {identifier!r} is not available.")
        self.identifier = identifier


class EngineFault(RuntimeError):
    """Raised when the inference engine fails during a run."""


class RecoveryFailed(RuntimeError):
    """Raised when no recovery strategy produced an output."""


class CancellationRequested(Exception):
    """Control-flow signal for a user cancellation; never handled as a fault."""


class FailureKind(StrEnum):
    """Coarse cause of an engine fault."""

    MEMORY = "memory"
    DRIVER = "driver"
    MODEL = "model"
    ADDON = "addon"
    AUDIO = "audio"
    SELECTION = "selection"
    GENERIC = "generic"


@dataclass(frozen=True, slots=True)
class FailureClassification:
    """Outcome of classifying one run failure."""

    kind: FailureKind
    recoverable: bool
    user_message: str


_MEMORY_MARKERS = (
    "out of memory",
    "insufficient memory",
    "cuda error: out of memory",
    "memory allocation",
)
_OOM_PATTERN = re.compile(r"\boom\b")
_DRIVER_MARKERS = (
    "driver",
    "device not found",
    "no cuda gpus",
    "cuda error",
    "openvino",
    "mps backend",
    "device-side assert",
)
_MODEL_MARKERS = (
    "model not found",
    "failed to load model",
    "invalid model",
    "checksum",
    "model file",
)
_ADDON_MARKERS = (
    "addon",
    "no module named",
    "cannot import",
    "shared object",
    "dll load failed",
)
_AUDIO_MARKERS = (
    "audio file",
    "ffmpeg",
    "invalid data found",
    "no such file",
    "unsupported audio",
)

_USER_MESSAGES: dict[FailureKind, str] = {
    FailureKind.MEMORY: (
        "Not enough GPU memory for this model. Try a smaller model or CPU processing."
    ),
    FailureKind.DRIVER: (
        "GPU driver or device error. Update your graphics drivers or use CPU processing."
    ),
    FailureKind.MODEL: (
        "The transcription model could not be loaded. Re-download the model or "
        "choose another one."
    ),
    FailureKind.ADDON: (
        "The acceleration backend could not be loaded. Reinstall the GPU runtime or "
        "use CPU processing."
    ),
    FailureKind.AUDIO: (
        "The audio file could not be read. Check that the file exists and is a "
        "supported format."
    ),
    FailureKind.SELECTION: (
        "The selected processing device is not available. Choose another device "
        "or use automatic selection."
    ),
    FailureKind.GENERIC: (
        "Transcription failed unexpectedly. Try again or switch to CPU processing."
    ),
}


def _failure_chain(err: BaseException) -> Iterator[BaseException]:
    current: BaseException | None = err
    while current is not None:
        yield current
        current = current.__cause__


def _failure_message(err: BaseException) -> str:
    # An engine fault only wraps its cause; its own text names the backend.
    parts = [
        str(link)
        for link in _failure_chain(err)
        if not (isinstance(link, EngineFault) and link.__cause__ is not None)
    ]
    return " ".join(" ".join(parts).split()).lower()


def _is_memory_failure(err: BaseException, message: str) -> bool:
    if any(isinstance(link, MemoryError) for link in _failure_chain(err)):
        return True
    if _OOM_PATTERN.search(message):
        return True
    return any(marker in message for marker in _MEMORY_MARKERS)


def classify_failure(err: BaseException) -> FailureClassification:
    """Classifies a run failure into a recovery category and user message."""
    if isinstance(err, InvalidUserSelection):
        kind = FailureKind.SELECTION
    else:
        message = _failure_message(err)
        if _is_memory_failure(err, message):
            kind = FailureKind.MEMORY
        elif any(marker in message for marker in _AUDIO_MARKERS):
            kind = FailureKind.AUDIO
        elif any(marker in message for marker in _MODEL_MARKERS):
            kind = FailureKind.MODEL
        elif isinstance(err, ImportError) or any(m in message for m in _ADDON_MARKERS):
            kind = FailureKind.ADDON
        elif any(marker in message for marker in _DRIVER_MARKERS):
            kind = FailureKind.DRIVER
        else:
            kind = FailureKind.GENERIC
    return FailureClassification(
        kind=kind,
        recoverable=kind is not FailureKind.AUDIO,
        user_message=_USER_MESSAGES[kind],
    )


def describe_failure(err: BaseException) -> str:
    """Returns a user-facing sentence for a failure, without exception internals."""
    return classify_failure(err).user_message
