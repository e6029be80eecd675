"""Contracts for supervised transcription runs."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TypeAlias

from subgen.backends.loader import LoadAttempt
from subgen.domain import BackendDescriptor, RunState
from subgen.monitoring.performance import SessionMetrics


@dataclass(frozen=True)
class TranscriptionJob:
    """Input contract for one transcription run."""

    audio_path: Path
    output_path: Path
    model_id: str
    language: str = "auto"
    device_id: str | None = None
    job_id: str = ""
    force_cpu: bool = False


@dataclass(frozen=True)
class StatusEvent:
    """One state transition reported to status listeners."""

    job_id: str
    state: RunState
    message: str | None = None
    backend_name: str | None = None


@dataclass(frozen=True)
class RunOutcome:
    """Terminal result of one supervised run."""

    job_id: str
    state: RunState
    output_path: Path
    backend: BackendDescriptor | None = None
    metrics: SessionMetrics | None = None
    error_message: str | None = None
    recovered: bool = False
    load_attempts: tuple[LoadAttempt, ...] = ()


ProgressListener: TypeAlias = Callable[[str, float], None]
StatusListener: TypeAlias = Callable[[StatusEvent], None]


class CancellationToken:
    """Cooperative cancel and pause flags shared between a caller and one run."""

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._paused = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def pause(self) -> None:
        """Suppresses progress forwarding; the engine keeps running."""
        self._paused.set()

    def resume(self) -> None:
        self._paused.clear()

    @property
    def is_paused(self) -> bool:
        return self._paused.is_set()


Reprocess: TypeAlias = Callable[..., Path]


@dataclass(frozen=True)
class RecoveryContext:
    """What a recovery strategy may use to produce an output."""

    job: TranscriptionJob
    backend: BackendDescriptor | None
    reprocess: Reprocess


class ErrorRecovery(Protocol):
    """Collaborator that turns a run fault into a user-facing artifact."""

    def recover(self, error: BaseException, context: RecoveryContext) -> Path:
        """Returns the recovered artifact path or raises when recovery fails."""
        ...
