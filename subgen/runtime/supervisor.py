"""Supervisor for one transcription run: select, load, run, finalize."""

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Callable
from functools import partial
from pathlib import Path
from time import perf_counter

from subgen.backends.base import BackendHandle, EngineParams, EngineResult
from subgen.backends.loader import BackendLoader, LoadAttempt
from subgen.backends.registry import default_backend_registry
from subgen.backends.selector import (
    build_fallback_chain,
    cpu_descriptor,
    resolve_specific,
    select_optimal,
)
from subgen.config import AUTO_DEVICE_ID, AppConfig, get_settings
from subgen.domain import BackendDescriptor, RunState
from subgen.hardware.enumeration import DeviceAvailability, DeviceInventory
from subgen.monitoring.performance import PerformanceMonitor, SessionMetrics
from subgen.runtime.contracts import (
    CancellationToken,
    ErrorRecovery,
    ProgressListener,
    RecoveryContext,
    RunOutcome,
    StatusEvent,
    StatusListener,
    TranscriptionJob,
)
from subgen.runtime.failures import (
    CancellationRequested,
    EngineFault,
    InvalidUserSelection,
    describe_failure,
)
from subgen.runtime.phase_timing import (
    PHASE_LOADING,
    PHASE_RECOVERY,
    PHASE_SELECTION,
    PHASE_TRANSCRIPTION,
    format_duration,
    log_phase_completed,
    log_phase_failed,
    log_phase_started,
)
from subgen.runtime.recovery import StrategyRecovery, default_recovery_strategies
from subgen.utils.audio_utils import probe_duration_ms
from subgen.utils.logger import get_logger
from subgen.utils.subtitles import (
    ArtifactWriter,
    FileArtifactWriter,
    cancelled_artifact,
    failed_artifact,
    placeholder_artifact,
    render_segments,
)

logger: logging.Logger = get_logger(__name__)

NO_SPEECH_TEXT = "[No speech detected]"

_ALLOWED_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.PENDING: frozenset({RunState.SELECTING}),
    RunState.SELECTING: frozenset({RunState.LOADING, RunState.ERRORED}),
    RunState.LOADING: frozenset({RunState.RUNNING, RunState.ERRORED}),
    RunState.RUNNING: frozenset(
        {RunState.COMPLETED, RunState.CANCELLED, RunState.ERRORED}
    ),
}


class IllegalTransitionError(RuntimeError):
    """Raised when a run attempts a transition its state machine forbids."""


class RunStateMachine:
    """Per-job state holder that validates transitions and notifies listeners."""

    def __init__(self, job_id: str, listener: StatusListener | None = None) -> None:
        self.job_id = job_id
        self.state = RunState.PENDING
        self.history: list[RunState] = [RunState.PENDING]
        self._listener = listener

    def transition(
        self,
        target: RunState,
        *,
        message: str | None = None,
        backend_name: str | None = None,
    ) -> None:
        if target not in _ALLOWED_TRANSITIONS.get(self.state, frozenset()):
            raise IllegalTransitionError(
                f"Run {self.job_id} cannot move from {self.state} to {target}."
            )
        logger.debug("[%s] %s -> %s", self.job_id, self.state, target)
        self.state = target
        self.history.append(target)
        self._notify(StatusEvent(self.job_id, target, message, backend_name))

    def _notify(self, event: StatusEvent) -> None:
        if self._listener is None:
            return
        try:
            self._listener(event)
        except Exception:
            logger.error(
                "[%s] Status listener failed for %s.",
                self.job_id,
                event.state,
                exc_info=True,
            )


@dataclasses.dataclass
class _RunScope:
    """Mutable per-run bookkeeping shared by the terminal paths."""

    job: TranscriptionJob
    token: CancellationToken
    machine: RunStateMachine
    availability: DeviceAvailability
    on_progress: ProgressListener | None
    descriptor: BackendDescriptor | None = None
    attempts: tuple[LoadAttempt, ...] = ()
    session_id: str | None = None
    audio_duration_ms: int = 0


class TranscriptionSupervisor:
    """Drives one job through Pending -> Selecting -> Loading -> Running -> terminal."""

    def __init__(
        self,
        *,
        inventory: DeviceInventory,
        loader: BackendLoader,
        monitor: PerformanceMonitor,
        settings: AppConfig | None = None,
        artifact_writer: ArtifactWriter | None = None,
        recovery: ErrorRecovery | None = None,
        duration_probe: Callable[[Path, int], int] = probe_duration_ms,
    ) -> None:
        self._inventory = inventory
        self._loader = loader
        self._monitor = monitor
        self._settings = settings
        self._writer = artifact_writer or FileArtifactWriter()
        self._recovery = recovery
        self._duration_probe = duration_probe

    @classmethod
    def from_settings(cls, settings: AppConfig | None = None) -> TranscriptionSupervisor:
        """Builds a supervisor wired to the built-in collaborators."""
        settings = settings or get_settings()
        monitoring = settings.monitoring
        return cls(
            inventory=DeviceInventory(
                timeout_seconds=settings.selection.enumeration_timeout_seconds
            ),
            loader=BackendLoader(default_backend_registry(), settings=settings),
            monitor=PerformanceMonitor(
                history_capacity=monitoring.history_capacity,
                cpu_baseline_realtime_ratio=monitoring.cpu_baseline_realtime_ratio,
                regression_window=monitoring.regression_window,
                history_file=monitoring.history_file,
            ),
            settings=settings,
            artifact_writer=FileArtifactWriter(),
            recovery=StrategyRecovery(
                default_recovery_strategies(settings.recovery.max_retries)
            ),
        )

    @property
    def settings(self) -> AppConfig:
        return self._settings or get_settings()

    @property
    def inventory(self) -> DeviceInventory:
        return self._inventory

    @property
    def monitor(self) -> PerformanceMonitor:
        return self._monitor

    def run(
        self,
        job: TranscriptionJob,
        *,
        token: CancellationToken | None = None,
        on_progress: ProgressListener | None = None,
        on_status: StatusListener | None = None,
    ) -> RunOutcome:
        """Runs one job to a terminal state; an artifact always exists at output_path."""
        job_id = job.job_id or uuid.uuid4().hex[:8]
        job = dataclasses.replace(job, job_id=job_id)
        scope = _RunScope(
            job=job,
            token=token or CancellationToken(),
            machine=RunStateMachine(job_id, on_status),
            availability=self._inventory.snapshot(),
            on_progress=on_progress,
        )
        try:
            return self._run(scope)
        except CancellationRequested:
            return self._finish_cancelled(scope)
        except Exception as err:
            return self._finish_errored(scope, err)

    def _run(self, scope: _RunScope) -> RunOutcome:
        job = scope.job
        machine = scope.machine

        machine.transition(RunState.SELECTING)
        started_at = log_phase_started(logger, phase_name=PHASE_SELECTION, job_id=job.job_id)
        primary = self._select(job, scope.availability)
        chain = build_fallback_chain(
            primary,
            scope.availability,
            self.settings.selection.preference_order,
            job.model_id,
        )
        log_phase_completed(
            logger, phase_name=PHASE_SELECTION, job_id=job.job_id, started_at=started_at
        )

        machine.transition(RunState.LOADING, backend_name=primary.display_name)
        started_at = log_phase_started(logger, phase_name=PHASE_LOADING, job_id=job.job_id)
        loaded = self._loader.load_with_fallback(chain)
        scope.descriptor = loaded.descriptor
        scope.attempts = loaded.attempts
        log_phase_completed(
            logger, phase_name=PHASE_LOADING, job_id=job.job_id, started_at=started_at
        )

        scope.audio_duration_ms = self._duration_probe(
            job.audio_path,
            self.settings.transcription.default_audio_duration_ms,
        )
        scope.session_id = self._monitor.start_session(
            loaded.descriptor,
            str(job.audio_path),
            job.model_id,
            audio_duration_ms=scope.audio_duration_ms,
        )
        machine.transition(
            RunState.RUNNING,
            message=loaded.descriptor.fallback_reason,
            backend_name=loaded.descriptor.display_name,
        )

        if scope.token.is_cancelled:
            raise CancellationRequested("Cancelled before transcription started.")
        started_at = log_phase_started(
            logger, phase_name=PHASE_TRANSCRIPTION, job_id=job.job_id
        )
        result = self._invoke(scope, loaded.handle, job)
        if scope.token.is_cancelled:
            log_phase_failed(
                logger,
                phase_name=PHASE_TRANSCRIPTION,
                job_id=job.job_id,
                started_at=started_at,
                level=logging.INFO,
            )
            raise CancellationRequested("Cancelled while transcription was running.")
        log_phase_completed(
            logger, phase_name=PHASE_TRANSCRIPTION, job_id=job.job_id, started_at=started_at
        )

        self._write_result(job, result, scope.audio_duration_ms)
        metrics = self._end_session(scope, result)
        machine.transition(
            RunState.COMPLETED,
            message=(
                f"Transcription completed in "
                f"{format_duration(metrics.processing_time_ms / 1000.0)} "
                f"({metrics.speedup_factor:.1f}x speedup)."
            ),
            backend_name=loaded.descriptor.display_name,
        )
        return RunOutcome(
            job_id=job.job_id,
            state=RunState.COMPLETED,
            output_path=job.output_path,
            backend=loaded.descriptor,
            metrics=metrics,
            load_attempts=scope.attempts,
        )

    def _select(
        self,
        job: TranscriptionJob,
        availability: DeviceAvailability,
    ) -> BackendDescriptor:
        if job.force_cpu:
            return cpu_descriptor("CPU processing requested")
        selection = self.settings.selection
        explicit = job.device_id or selection.explicit_device_id
        if explicit and explicit != AUTO_DEVICE_ID:
            descriptor = resolve_specific(explicit, availability)
            if descriptor is not None:
                logger.info("[%s] Using user-selected %s.", job.job_id, descriptor.display_name)
                return descriptor
            if selection.strict_device_selection:
                raise InvalidUserSelection(explicit)
            logger.warning(
                "[%s] Selected device %r is not available; using automatic selection.",
                job.job_id,
                explicit,
            )
        return select_optimal(selection.preference_order, availability, job.model_id)

    def _engine_params(
        self,
        job: TranscriptionJob,
        handle: BackendHandle,
        progress_callback: Callable[[float], None] | None,
    ) -> EngineParams:
        transcription = self.settings.transcription
        return EngineParams(
            model_id=job.model_id,
            audio_path=job.audio_path,
            models_folder=self.settings.models.folder,
            device=handle.device_options,
            language=job.language,
            max_context=transcription.max_context,
            vad=transcription.vad,
            progress_callback=progress_callback,
        )

    def _progress_bridge(self, scope: _RunScope) -> Callable[[float], None]:
        def forward(percent: float) -> None:
            if scope.machine.state is not RunState.RUNNING:
                return
            if scope.session_id is not None:
                self._monitor.update_memory_usage(scope.session_id)
            if scope.token.is_paused or scope.on_progress is None:
                return
            try:
                scope.on_progress(scope.job.job_id, max(0.0, min(100.0, percent)))
            except Exception:
                logger.error(
                    "[%s] Progress listener failed.", scope.job.job_id, exc_info=True
                )

        return forward

    def _invoke(
        self,
        scope: _RunScope,
        handle: BackendHandle,
        job: TranscriptionJob,
    ) -> EngineResult:
        params = self._engine_params(job, handle, self._progress_bridge(scope))
        try:
            return handle.invoke(params)
        except CancellationRequested:
            raise
        except Exception as err:
            raise EngineFault(
                f"Inference engine failed on {handle.descriptor.display_name}: {err}"
            ) from err

    def _write_result(
        self,
        job: TranscriptionJob,
        result: EngineResult,
        audio_duration_ms: int,
    ) -> None:
        content = render_segments(result.segments, job.output_path)
        if not content.strip():
            content = placeholder_artifact(
                NO_SPEECH_TEXT, max(audio_duration_ms, 1000), job.output_path
            )
        self._writer.write(job.output_path, content)

    def _end_session(self, scope: _RunScope, result: EngineResult) -> SessionMetrics:
        session_id = scope.session_id
        if session_id is None:
            raise RuntimeError(f"Run {scope.job.job_id} has no active monitoring session.")
        scope.session_id = None
        return self._monitor.end_session(session_id, result, scope.audio_duration_ms)

    def _write_placeholder(self, path: Path, content: str) -> bool:
        try:
            self._writer.write(path, content)
        except OSError:
            logger.error("Failed to write placeholder artifact %s.", path, exc_info=True)
            return False
        return True

    def _finish_cancelled(self, scope: _RunScope) -> RunOutcome:
        job = scope.job
        if scope.session_id is not None:
            self._monitor.mark_cancelled(scope.session_id)
            scope.session_id = None
        self._write_placeholder(job.output_path, cancelled_artifact(job.output_path))
        logger.info("[%s] Transcription cancelled by user.", job.job_id)
        scope.machine.transition(
            RunState.CANCELLED,
            message="Transcription cancelled by user.",
            backend_name=scope.descriptor.display_name if scope.descriptor else None,
        )
        return RunOutcome(
            job_id=job.job_id,
            state=RunState.CANCELLED,
            output_path=job.output_path,
            backend=scope.descriptor,
            load_attempts=scope.attempts,
        )

    def _finish_errored(self, scope: _RunScope, err: Exception) -> RunOutcome:
        job = scope.job
        if scope.session_id is not None:
            self._monitor.track_error(scope.session_id, err)
            scope.session_id = None
        user_message = describe_failure(err)
        logger.error("[%s] Run failed while %s: %s", job.job_id, scope.machine.state, err)

        output_path = job.output_path
        recovered = False
        if self._recovery is None:
            self._write_placeholder(job.output_path, failed_artifact(job.output_path))
        else:
            started_at = log_phase_started(logger, phase_name=PHASE_RECOVERY, job_id=job.job_id)
            context = RecoveryContext(
                job=job,
                backend=scope.descriptor,
                reprocess=partial(self._reprocess, scope),
            )
            try:
                output_path = self._recovery.recover(err, context)
                recovered = True
                log_phase_completed(
                    logger, phase_name=PHASE_RECOVERY, job_id=job.job_id, started_at=started_at
                )
            except CancellationRequested:
                log_phase_failed(
                    logger, phase_name=PHASE_RECOVERY, job_id=job.job_id, started_at=started_at
                )
                self._write_placeholder(job.output_path, cancelled_artifact(job.output_path))
                user_message = f"{user_message} Recovery was cancelled by user."
            except Exception as recovery_err:
                log_phase_failed(
                    logger, phase_name=PHASE_RECOVERY, job_id=job.job_id, started_at=started_at
                )
                logger.error("[%s] Error recovery failed: %s", job.job_id, recovery_err)
                self._write_placeholder(job.output_path, failed_artifact(job.output_path))

        scope.machine.transition(
            RunState.ERRORED,
            message=(
                f"Recovered after failure. {user_message}" if recovered else user_message
            ),
            backend_name=scope.descriptor.display_name if scope.descriptor else None,
        )
        return RunOutcome(
            job_id=job.job_id,
            state=RunState.ERRORED,
            output_path=output_path,
            backend=scope.descriptor,
            error_message=user_message,
            recovered=recovered,
            load_attempts=scope.attempts,
        )

    def _reprocess(
        self,
        scope: _RunScope,
        *,
        model_id: str | None = None,
        force_cpu: bool = False,
    ) -> Path:
        """Re-runs selection, loading and transcription for error recovery."""
        if scope.token.is_cancelled:
            raise CancellationRequested("Cancelled during error recovery.")
        job = dataclasses.replace(
            scope.job,
            model_id=model_id or scope.job.model_id,
            force_cpu=force_cpu or scope.job.force_cpu,
        )
        primary = self._select(job, scope.availability)
        chain = build_fallback_chain(
            primary,
            scope.availability,
            self.settings.selection.preference_order,
            job.model_id,
        )
        loaded = self._loader.load_with_fallback(chain)
        started_at = perf_counter()
        result = loaded.handle.invoke(self._engine_params(job, loaded.handle, None))
        if scope.token.is_cancelled:
            raise CancellationRequested("Cancelled during error recovery.")
        self._write_result(job, result, scope.audio_duration_ms)
        logger.info(
            "[%s] Recovery run on %s with %s finished in %s.",
            job.job_id,
            loaded.descriptor.display_name,
            job.model_id,
            format_duration(perf_counter() - started_at),
        )
        return job.output_path
