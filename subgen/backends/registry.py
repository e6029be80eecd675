"""Capability registry mapping backend types to handle factories."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import TypeAlias

from subgen.backends.accelerators import (
    CoreMlBackend,
    CpuBackend,
    CudaBackend,
    OpenVinoBackend,
)
from subgen.backends.base import BackendHandle, InferenceEngine
from subgen.backends.engine import StableWhisperEngine
from subgen.domain import BackendDescriptor, BackendType

BackendFactory: TypeAlias = Callable[[BackendDescriptor], BackendHandle]


class UnsupportedBackendError(KeyError):
    """Raised when no factory is registered for a backend type."""


class BackendRegistry:
    """Backend type -> factory table resolved once at startup."""

    def __init__(self, factories: Mapping[BackendType, BackendFactory] | None = None) -> None:
        self._factories: dict[BackendType, BackendFactory] = dict(factories or {})

    def register(self, backend_type: BackendType, factory: BackendFactory) -> None:
        """Registers or replaces the factory for one backend type."""
        self._factories[backend_type] = factory

    def resolve(self, backend_type: BackendType) -> BackendFactory:
        """Returns the factory for a backend type."""
        try:
            return self._factories[backend_type]
        except KeyError as err:
            raise UnsupportedBackendError(backend_type) from err

    @property
    def backend_types(self) -> Mapping[BackendType, BackendFactory]:
        """Returns a read-only view of registered factories."""
        return MappingProxyType(self._factories)


def default_backend_registry(engine: InferenceEngine | None = None) -> BackendRegistry:
    """Builds the registry of built-in backends sharing one engine."""
    shared_engine: InferenceEngine = engine or StableWhisperEngine()
    return BackendRegistry(
        {
            BackendType.CUDA: lambda descriptor: CudaBackend(descriptor, shared_engine),
            BackendType.OPENVINO: lambda descriptor: OpenVinoBackend(
                descriptor, shared_engine
            ),
            BackendType.COREML: lambda descriptor: CoreMlBackend(descriptor, shared_engine),
            BackendType.CPU: lambda descriptor: CpuBackend(descriptor, shared_engine),
        }
    )
