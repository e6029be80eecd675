"""Backend selection, capability registry and fallback loading."""

from .base import (
    BackendHandle,
    BackendLoadError,
    BackendUnavailable,
    BackendValidationFailed,
    EngineParams,
    EngineResult,
    InferenceEngine,
)
from .loader import BackendLoader, LoadAttempt, LoadedBackend
from .registry import BackendRegistry, UnsupportedBackendError, default_backend_registry
from .selector import build_fallback_chain, resolve_specific, select_optimal

__all__ = [
    "BackendHandle",
    "BackendLoadError",
    "BackendLoader",
    "BackendRegistry",
    "BackendUnavailable",
    "BackendValidationFailed",
    "EngineParams",
    "EngineResult",
    "InferenceEngine",
    "LoadAttempt",
    "LoadedBackend",
    "UnsupportedBackendError",
    "build_fallback_chain",
    "default_backend_registry",
    "resolve_specific",
    "select_optimal",
]
