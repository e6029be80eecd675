"""Session-scoped performance tracking and historical trend reporting."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections import defaultdict, deque
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path
from statistics import fmean
from time import perf_counter

import psutil

from subgen.backends.base import EngineResult
from subgen.domain import BackendDescriptor, BackendType
from subgen.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

_BYTES_PER_MB = 1024 * 1024
CHARACTERS_PER_TOKEN = 4
REGRESSION_THRESHOLD = 0.9
MEMORY_PRESSURE_THRESHOLD = 0.8
TREND_TOLERANCE = 0.1
STRONG_SPEEDUP = 2.0
WEAK_LARGE_MODEL_SPEEDUP = 1.5


class SessionStatus(StrEnum):
    """Lifecycle of one monitored session."""

    RUNNING = "running"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


class TrendDirection(StrEnum):
    """Direction of a backend's speedup over its history."""

    IMPROVING = "improving"
    STABLE = "stable"
    DEGRADING = "degrading"


class UnknownSessionError(KeyError):
    """Raised when a session id was never started or has already ended."""


@dataclass(slots=True)
class Session:
    """Mutable monitoring record for one in-flight run."""

    session_id: str
    backend: BackendDescriptor
    audio_ref: str
    model_id: str
    started_at: float
    audio_duration_ms: int | None = None
    memory_samples: list[int] = field(default_factory=list)
    status: SessionStatus = SessionStatus.RUNNING
    error: str | None = None


@dataclass(frozen=True, slots=True)
class SessionMetrics:
    """Immutable history entry for one completed session."""

    session_id: str
    backend_type: BackendType
    backend_name: str
    model_id: str
    processing_time_ms: float
    audio_duration_ms: int
    speedup_factor: float
    real_time_ratio: float
    peak_memory_mb: int
    device_memory_mb: int | None
    transcription_length: int
    tokens_per_second: float
    finished_at: str

    def to_dict(self) -> dict[str, object]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> SessionMetrics:
        device_memory = payload.get("device_memory_mb")
        return cls(
            session_id=str(payload["session_id"]),
            backend_type=BackendType(str(payload["backend_type"])),
            backend_name=str(payload["backend_name"]),
            model_id=str(payload["model_id"]),
            processing_time_ms=float(payload["processing_time_ms"]),
            audio_duration_ms=int(payload["audio_duration_ms"]),
            speedup_factor=float(payload["speedup_factor"]),
            real_time_ratio=float(payload["real_time_ratio"]),
            peak_memory_mb=int(payload.get("peak_memory_mb", 0)),
            device_memory_mb=int(device_memory) if device_memory is not None else None,
            transcription_length=int(payload.get("transcription_length", 0)),
            tokens_per_second=float(payload.get("tokens_per_second", 0.0)),
            finished_at=str(payload.get("finished_at", "")),
        )


@dataclass(frozen=True, slots=True)
class ModelAverage:
    """Average performance of one backend type running one model."""

    backend_type: BackendType
    model_id: str
    session_count: int
    average_speedup: float
    average_processing_time_ms: float
    average_real_time_ratio: float


@dataclass(frozen=True, slots=True)
class BackendTrend:
    """Speedup trend of one backend type across history."""

    backend_type: BackendType
    session_count: int
    average_speedup: float
    direction: TrendDirection


@dataclass(frozen=True, slots=True)
class PerformanceSummary:
    """Totals across the whole history."""

    total_sessions: int = 0
    average_speedup: float = 0.0
    total_processing_time_ms: float = 0.0
    total_audio_duration_ms: int = 0
    most_used_backend: BackendType | None = None
    average_peak_memory_mb: float = 0.0


@dataclass(frozen=True, slots=True)
class PerformanceReport:
    """Aggregated view over the rolling history."""

    summary: PerformanceSummary
    averages: tuple[ModelAverage, ...] = ()
    trends: tuple[BackendTrend, ...] = ()
    recommendations: tuple[str, ...] = ()


def process_memory_mb() -> int:
    """Returns the resident memory of this process in megabytes."""
    return int(psutil.Process().memory_info().rss) // _BYTES_PER_MB


class PerformanceMonitor:
    """Tracks concurrent sessions and keeps a bounded history of their metrics."""

    def __init__(
        self,
        *,
        history_capacity: int = 1000,
        cpu_baseline_realtime_ratio: float = 1.0,
        regression_window: int = 5,
        history_file: Path | None = None,
        clock: Callable[[], float] = perf_counter,
        memory_reader: Callable[[], int] = process_memory_mb,
    ) -> None:
        if history_capacity < 1:
            raise ValueError("history_capacity must be at least 1.")
        self._baseline = cpu_baseline_realtime_ratio
        self._regression_window = max(1, regression_window)
        self._history_file = history_file
        self._clock = clock
        self._memory_reader = memory_reader
        self._sessions: dict[str, Session] = {}
        self._sessions_lock = threading.Lock()
        self._history: deque[SessionMetrics] = deque(maxlen=history_capacity)
        self._history_lock = threading.Lock()
        if history_file is not None:
            self._history.extend(self._load_history(history_file))

    def start_session(
        self,
        backend: BackendDescriptor,
        audio_ref: str,
        model_id: str,
        *,
        audio_duration_ms: int | None = None,
    ) -> str:
        """Starts a running session and returns its id."""
        session = Session(
            session_id=f"session_{uuid.uuid4().hex}",
            backend=backend,
            audio_ref=audio_ref,
            model_id=model_id,
            started_at=self._clock(),
            audio_duration_ms=audio_duration_ms,
        )
        with self._sessions_lock:
            self._sessions[session.session_id] = session
        logger.debug(
            "Started session %s on %s for %s.",
            session.session_id,
            backend.display_name,
            audio_ref,
        )
        return session.session_id

    def session(self, session_id: str) -> Session | None:
        """Returns the in-flight session with this id, if any."""
        with self._sessions_lock:
            return self._sessions.get(session_id)

    def update_memory_usage(self, session_id: str) -> int | None:
        """Appends one memory sample to a running session."""
        session = self.session(session_id)
        if session is None:
            logger.debug("Ignoring memory sample for unknown session %s.", session_id)
            return None
        sample = int(self._memory_reader())
        session.memory_samples.append(sample)
        return sample

    def _pop(self, session_id: str) -> Session:
        with self._sessions_lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise UnknownSessionError(session_id)
        return session

    def end_session(
        self,
        session_id: str,
        result: EngineResult | None,
        audio_duration_ms: int,
    ) -> SessionMetrics:
        """Completes a session, records its metrics in history and returns them."""
        session = self._pop(session_id)
        processing_time_ms = max((self._clock() - session.started_at) * 1000.0, 1.0)
        if audio_duration_ms > 0:
            real_time_ratio = audio_duration_ms / processing_time_ms
            speedup_factor = real_time_ratio / self._baseline
        else:
            real_time_ratio = 0.0
            speedup_factor = 1.0
        text_length = len(result.text) if result is not None else 0
        config = session.backend.device_config
        device_memory = (
            config.memory_mb
            if config is not None and isinstance(config.memory_mb, int)
            else None
        )
        session.status = SessionStatus.COMPLETED
        metrics = SessionMetrics(
            session_id=session.session_id,
            backend_type=session.backend.backend_type,
            backend_name=session.backend.display_name,
            model_id=session.model_id,
            processing_time_ms=processing_time_ms,
            audio_duration_ms=audio_duration_ms,
            speedup_factor=speedup_factor,
            real_time_ratio=real_time_ratio,
            peak_memory_mb=max(session.memory_samples, default=0),
            device_memory_mb=device_memory,
            transcription_length=text_length,
            tokens_per_second=(text_length / CHARACTERS_PER_TOKEN)
            / (processing_time_ms / 1000.0),
            finished_at=datetime.now(timezone.utc).isoformat(),
        )
        self._append(metrics)
        logger.info(
            "Session %s completed on %s: %.2fx speedup, %.2fx real time.",
            session_id,
            metrics.backend_name,
            metrics.speedup_factor,
            metrics.real_time_ratio,
        )
        return metrics

    def track_error(self, session_id: str, error: BaseException | str) -> None:
        """Ends a session as errored; it is not added to history."""
        self._finish_without_metrics(session_id, SessionStatus.ERRORED, str(error))

    def mark_cancelled(self, session_id: str) -> None:
        """Ends a session as cancelled; it is not added to history."""
        self._finish_without_metrics(session_id, SessionStatus.CANCELLED, None)

    def _finish_without_metrics(
        self,
        session_id: str,
        status: SessionStatus,
        error: str | None,
    ) -> None:
        try:
            session = self._pop(session_id)
        except UnknownSessionError:
            logger.warning("Cannot mark unknown session %s as %s.", session_id, status)
            return
        session.status = status
        session.error = error
        logger.info("Session %s ended as %s.", session_id, status)

    def _append(self, metrics: SessionMetrics) -> None:
        with self._history_lock:
            self._history.append(metrics)
            if self._history_file is not None:
                self._save_history(self._history_file, tuple(self._history))

    def history(self) -> tuple[SessionMetrics, ...]:
        """Returns a consistent copy of the history, oldest first."""
        with self._history_lock:
            return tuple(self._history)

    def clear_history(self) -> None:
        """Drops all history entries."""
        with self._history_lock:
            self._history.clear()
            if self._history_file is not None:
                self._save_history(self._history_file, ())

    def get_performance_report(self) -> PerformanceReport:
        """Aggregates the history into averages, trends and recommendations."""
        return build_report(self.history(), regression_window=self._regression_window)

    @staticmethod
    def _load_history(path: Path) -> list[SessionMetrics]:
        if not path.exists():
            return []
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            return [SessionMetrics.from_dict(entry) for entry in payload]
        except (OSError, ValueError, KeyError, TypeError) as err:
            logger.warning("Ignoring unreadable performance history %s: %s", path, err)
            return []

    @staticmethod
    def _save_history(path: Path, entries: Iterable[SessionMetrics]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps([entry.to_dict() for entry in entries], indent=2) + "\n",
                encoding="utf-8",
            )
        except OSError as err:
            logger.warning("Failed to persist performance history to %s: %s", path, err)


def _trend(entries: list[SessionMetrics]) -> TrendDirection:
    if len(entries) < 2:
        return TrendDirection.STABLE
    middle = len(entries) // 2
    first = fmean(entry.speedup_factor for entry in entries[:middle])
    second = fmean(entry.speedup_factor for entry in entries[middle:])
    if second > first * (1.0 + TREND_TOLERANCE):
        return TrendDirection.IMPROVING
    if second < first * (1.0 - TREND_TOLERANCE):
        return TrendDirection.DEGRADING
    return TrendDirection.STABLE


def _regressions(
    by_model: dict[tuple[BackendType, str], list[SessionMetrics]],
    window: int,
) -> list[str]:
    messages: list[str] = []
    for (backend_type, model_id), entries in by_model.items():
        if len(entries) <= window:
            continue
        recent = fmean(entry.speedup_factor for entry in entries[-window:])
        historical = fmean(entry.speedup_factor for entry in entries[:-window])
        if recent < historical * REGRESSION_THRESHOLD:
            messages.append(
                f"Performance regression detected for {backend_type} with model "
                f"'{model_id}': recent {recent:.2f}x vs historical {historical:.2f}x."
            )
    return messages


def _memory_pressure(history: tuple[SessionMetrics, ...]) -> list[str]:
    flagged: dict[BackendType, SessionMetrics] = {}
    for entry in history:
        if entry.device_memory_mb is None or entry.device_memory_mb <= 0:
            continue
        if entry.peak_memory_mb > entry.device_memory_mb * MEMORY_PRESSURE_THRESHOLD:
            flagged.setdefault(entry.backend_type, entry)
    return [
        f"High memory usage on {backend_type}: peak {entry.peak_memory_mb} MB of "
        f"{entry.device_memory_mb} MB. Consider a smaller model."
        for backend_type, entry in flagged.items()
    ]


def build_report(
    history: tuple[SessionMetrics, ...],
    *,
    regression_window: int = 5,
) -> PerformanceReport:
    """Builds a performance report from a history snapshot."""
    if not history:
        return PerformanceReport(summary=PerformanceSummary())

    by_model: dict[tuple[BackendType, str], list[SessionMetrics]] = defaultdict(list)
    by_backend: dict[BackendType, list[SessionMetrics]] = defaultdict(list)
    for entry in history:
        by_model[(entry.backend_type, entry.model_id)].append(entry)
        by_backend[entry.backend_type].append(entry)

    averages = tuple(
        ModelAverage(
            backend_type=backend_type,
            model_id=model_id,
            session_count=len(entries),
            average_speedup=fmean(entry.speedup_factor for entry in entries),
            average_processing_time_ms=fmean(
                entry.processing_time_ms for entry in entries
            ),
            average_real_time_ratio=fmean(entry.real_time_ratio for entry in entries),
        )
        for (backend_type, model_id), entries in by_model.items()
    )
    trends = tuple(
        BackendTrend(
            backend_type=backend_type,
            session_count=len(entries),
            average_speedup=fmean(entry.speedup_factor for entry in entries),
            direction=_trend(entries),
        )
        for backend_type, entries in by_backend.items()
    )
    summary = PerformanceSummary(
        total_sessions=len(history),
        average_speedup=fmean(entry.speedup_factor for entry in history),
        total_processing_time_ms=sum(entry.processing_time_ms for entry in history),
        total_audio_duration_ms=sum(entry.audio_duration_ms for entry in history),
        most_used_backend=max(by_backend, key=lambda key: len(by_backend[key])),
        average_peak_memory_mb=fmean(entry.peak_memory_mb for entry in history),
    )

    recommendations: list[str] = []
    best = max(trends, key=lambda trend: trend.average_speedup)
    if best.average_speedup > STRONG_SPEEDUP:
        recommendations.append(
            f"Best performance achieved with {best.backend_type} "
            f"({best.average_speedup:.1f}x faster than real time)."
        )
    for average in averages:
        if (
            average.model_id.startswith("large")
            and average.average_speedup < WEAK_LARGE_MODEL_SPEEDUP
        ):
            recommendations.append(
                f"Model '{average.model_id}' runs slowly on {average.backend_type} "
                f"({average.average_speedup:.1f}x); consider a smaller model."
            )
    recommendations.extend(_regressions(by_model, regression_window))
    recommendations.extend(_memory_pressure(history))

    return PerformanceReport(
        summary=summary,
        averages=averages,
        trends=trends,
        recommendations=tuple(recommendations),
    )
