"""Backend loading with self-validation and automatic fallback."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from time import perf_counter
from typing import Literal, NamedTuple, TypeAlias

from subgen.backends.base import (
    BackendHandle,
    BackendLoadError,
    BackendUnavailable,
    BackendValidationFailed,
)
from subgen.backends.environment import (
    apply_environment,
    environment_for,
    restore_environment,
)
from subgen.backends.registry import BackendRegistry, UnsupportedBackendError
from subgen.config import AppConfig, get_settings
from subgen.domain import BackendDescriptor, FallbackChain
from subgen.runtime.failures import SelectionExhausted
from subgen.runtime.phase_timing import format_duration
from subgen.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

LoadErrorKind: TypeAlias = Literal["unavailable", "validation_failed"]


@dataclass(frozen=True, slots=True)
class LoadAttempt:
    """Outcome of trying one fallback candidate."""

    descriptor: BackendDescriptor
    succeeded: bool
    duration_seconds: float
    error_kind: LoadErrorKind | None = None
    message: str | None = None
    environment: Mapping[str, str] = field(default_factory=dict)


class LoadedBackend(NamedTuple):
    """A working handle, the descriptor it came from and every attempt made."""

    handle: BackendHandle
    descriptor: BackendDescriptor
    attempts: tuple[LoadAttempt, ...]


def _error_kind(err: BackendLoadError) -> LoadErrorKind:
    if isinstance(err, BackendValidationFailed):
        return "validation_failed"
    return "unavailable"


class BackendLoader:
    """Acquires and validates backend handles through the capability registry."""

    def __init__(
        self,
        registry: BackendRegistry,
        *,
        settings: AppConfig | None = None,
        environ: MutableMapping[str, str] | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings
        self._environ = environ if environ is not None else os.environ

    @property
    def settings(self) -> AppConfig:
        return self._settings or get_settings()

    def _acquire(self, descriptor: BackendDescriptor) -> BackendHandle:
        try:
            factory = self._registry.resolve(descriptor.backend_type)
        except UnsupportedBackendError as err:
            raise BackendUnavailable(
                descriptor,
                f"No implementation registered for {descriptor.backend_type}.",
            ) from err
        try:
            return factory(descriptor)
        except BackendLoadError:
            raise
        except Exception as err:
            raise BackendUnavailable(
                descriptor,
                f"Failed to acquire {descriptor.display_name}: {err}",
            ) from err

    def _validate(self, descriptor: BackendDescriptor, handle: BackendHandle) -> None:
        try:
            handle.self_test()
        except BackendLoadError:
            raise
        except Exception as err:
            raise BackendValidationFailed(
                descriptor,
                f"{descriptor.display_name} failed validation: {err}",
            ) from err

    def load(self, descriptor: BackendDescriptor) -> BackendHandle:
        """Acquires, configures and self-tests one backend."""
        handle = self._acquire(descriptor)
        previous = apply_environment(
            environment_for(descriptor, self.settings), self._environ
        )
        try:
            self._validate(descriptor, handle)
        except BackendLoadError:
            restore_environment(previous, self._environ)
            raise
        return handle

    def load_with_fallback(self, chain: FallbackChain) -> LoadedBackend:
        """Returns the first candidate that loads; CPU closes every chain."""
        attempts: list[LoadAttempt] = []
        for descriptor in chain:
            environment = environment_for(descriptor, self.settings)
            started_at = perf_counter()
            try:
                handle = self.load(descriptor)
            except BackendLoadError as err:
                elapsed = perf_counter() - started_at
                attempts.append(
                    LoadAttempt(
                        descriptor=descriptor,
                        succeeded=False,
                        duration_seconds=elapsed,
                        error_kind=_error_kind(err),
                        message=str(err),
                        environment=environment,
                    )
                )
                logger.warning(
                    "Backend %s %s after %s: %s",
                    descriptor.display_name,
                    "failed validation"
                    if isinstance(err, BackendValidationFailed)
                    else "is unavailable",
                    format_duration(elapsed),
                    err,
                )
                continue
            elapsed = perf_counter() - started_at
            attempts.append(
                LoadAttempt(
                    descriptor=descriptor,
                    succeeded=True,
                    duration_seconds=elapsed,
                    environment=environment,
                )
            )
            logger.info(
                "Loaded backend %s in %s (attempt %s of %s).",
                descriptor.display_name,
                format_duration(elapsed),
                len(attempts),
                len(chain),
            )
            return LoadedBackend(handle, descriptor, tuple(attempts))
        raise SelectionExhausted(
            "Every fallback candidate failed to load, including CPU: "
            + "; ".join(attempt.message or "" for attempt in attempts)
        )
