"""Prioritized error recovery strategies for failed transcription runs."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from subgen.runtime.contracts import RecoveryContext
from subgen.runtime.failures import (
    CancellationRequested,
    FailureKind,
    RecoveryFailed,
    classify_failure,
)
from subgen.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

MODEL_HIERARCHY: tuple[str, ...] = (
    "large-v3",
    "large-v2",
    "large",
    "medium",
    "small",
    "base",
    "tiny",
)
FALLBACK_MODEL = "base"


def smaller_model(model_id: str) -> str | None:
    """Returns the next smaller model in the hierarchy, if any."""
    normalized = model_id.strip().lower().removesuffix(".en")
    if normalized.startswith("large") and normalized not in MODEL_HIERARCHY:
        normalized = "large"
    try:
        index = MODEL_HIERARCHY.index(normalized)
    except ValueError:
        return None
    if index + 1 >= len(MODEL_HIERARCHY):
        return None
    return MODEL_HIERARCHY[index + 1]


@dataclass(frozen=True, slots=True)
class RecoveryStrategy:
    """One recovery rule: which faults it handles and how it retries."""

    name: str
    priority: int
    handles: Callable[[FailureKind], bool]
    attempt: Callable[[BaseException, RecoveryContext], Path | None]


def _retry_smaller_model(error: BaseException, context: RecoveryContext) -> Path | None:
    del error
    model = smaller_model(context.job.model_id)
    if model is None:
        return None
    logger.info("Retrying with smaller model %s.", model)
    return context.reprocess(model_id=model)


def _retry_on_cpu(error: BaseException, context: RecoveryContext) -> Path | None:
    del error
    if context.backend is not None and context.backend.is_cpu:
        return None
    logger.info("Retrying on CPU processing.")
    return context.reprocess(force_cpu=True)


def _retry_base_model(error: BaseException, context: RecoveryContext) -> Path | None:
    del error
    if context.job.model_id == FALLBACK_MODEL:
        return None
    logger.info("Retrying with fallback model %s.", FALLBACK_MODEL)
    return context.reprocess(model_id=FALLBACK_MODEL)


def _generic_retry(max_retries: int) -> Callable[[BaseException, RecoveryContext], Path | None]:
    def attempt(error: BaseException, context: RecoveryContext) -> Path | None:
        del error
        last_error: Exception | None = None
        for retry in range(1, max_retries + 1):
            logger.info("Retrying run (attempt %s of %s).", retry, max_retries)
            try:
                return context.reprocess()
            except CancellationRequested:
                raise
            except Exception as err:
                logger.warning("Retry %s of %s failed: %s", retry, max_retries, err)
                last_error = err
        if last_error is not None:
            raise last_error
        return None

    return attempt


def default_recovery_strategies(max_retries: int = 3) -> tuple[RecoveryStrategy, ...]:
    """Returns built-in strategies, highest priority first."""
    return (
        RecoveryStrategy(
            name="gpu_memory",
            priority=90,
            handles=lambda kind: kind is FailureKind.MEMORY,
            attempt=_retry_smaller_model,
        ),
        RecoveryStrategy(
            name="gpu_driver",
            priority=85,
            handles=lambda kind: kind is FailureKind.DRIVER,
            attempt=_retry_on_cpu,
        ),
        RecoveryStrategy(
            name="model_loading",
            priority=80,
            handles=lambda kind: kind is FailureKind.MODEL,
            attempt=_retry_base_model,
        ),
        RecoveryStrategy(
            name="addon_loading",
            priority=75,
            handles=lambda kind: kind is FailureKind.ADDON,
            attempt=_retry_on_cpu,
        ),
        RecoveryStrategy(
            name="selection",
            priority=60,
            handles=lambda kind: kind is FailureKind.SELECTION,
            attempt=_retry_on_cpu,
        ),
        RecoveryStrategy(
            name="generic_retry",
            priority=50,
            handles=lambda kind: kind is FailureKind.GENERIC,
            attempt=_generic_retry(max_retries),
        ),
    )


class StrategyRecovery:
    """Tries matching strategies in priority order until one yields an artifact."""

    def __init__(self, strategies: Iterable[RecoveryStrategy] | None = None) -> None:
        self._strategies = tuple(
            sorted(
                strategies if strategies is not None else default_recovery_strategies(),
                key=lambda strategy: strategy.priority,
                reverse=True,
            )
        )

    def recover(self, error: BaseException, context: RecoveryContext) -> Path:
        """Returns a recovered artifact path or raises RecoveryFailed."""
        if isinstance(error, CancellationRequested):
            raise RecoveryFailed("Cancellation is not recoverable.") from error
        classification = classify_failure(error)
        if not classification.recoverable:
            raise RecoveryFailed(classification.user_message) from error
        last_error: BaseException = error
        for strategy in self._strategies:
            if not strategy.handles(classification.kind):
                continue
            try:
                path = strategy.attempt(error, context)
            except CancellationRequested:
                raise
            except Exception as err:
                logger.warning("Recovery strategy %s failed: %s", strategy.name, err)
                last_error = err
                continue
            if path is not None:
                logger.info("Recovered with strategy %s.", strategy.name)
                return path
        raise RecoveryFailed(classification.user_message) from last_error
