"""Backend handle implementations, one per acceleration runtime."""

from __future__ import annotations

import importlib
import importlib.util
import logging

from subgen.backends.base import (
    BackendUnavailable,
    EngineParams,
    EngineResult,
    InferenceEngine,
)
from subgen.backends.environment import EngineDeviceOptions, engine_device_options
from subgen.domain import BackendDescriptor
from subgen.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


def _missing_optional_modules(required_modules: tuple[str, ...]) -> tuple[str, ...]:
    """Returns optional modules that are not import-resolvable in this environment."""
    return tuple(
        module_name
        for module_name in required_modules
        if importlib.util.find_spec(module_name) is None
    )


class EngineBackend:
    """Handle that routes engine invocations to one acceleration device."""

    required_modules: tuple[str, ...] = ("stable_whisper",)

    def __init__(self, descriptor: BackendDescriptor, engine: InferenceEngine) -> None:
        self.descriptor = descriptor
        self._engine = engine
        self._device_options = engine_device_options(descriptor)
        self._acquire()

    @property
    def device_options(self) -> EngineDeviceOptions:
        return self._device_options

    def _acquire(self) -> None:
        missing = _missing_optional_modules(self.required_modules)
        if missing:
            raise BackendUnavailable(
                self.descriptor,
                f"{self.descriptor.display_name} requires optional dependencies not "
                f"currently available: {', '.join(missing)}.",
            )

    def self_test(self) -> None:
        self._engine.self_test(self._device_options)

    def invoke(self, params: EngineParams) -> EngineResult:
        return self._engine.invoke(params)


class CudaBackend(EngineBackend):
    """NVIDIA CUDA through torch."""

    required_modules = ("stable_whisper", "torch")

    def _acquire(self) -> None:
        super()._acquire()
        torch = importlib.import_module("torch")
        if not torch.cuda.is_available():
            raise BackendUnavailable(self.descriptor, "CUDA runtime is unavailable.")
        index = _cuda_index(self._device_options.torch_device)
        if index >= int(torch.cuda.device_count()):
            raise BackendUnavailable(
                self.descriptor,
                f"CUDA device {index} is not present "
                f"({torch.cuda.device_count()} visible).",
            )


def _cuda_index(torch_device: str) -> int:
    _, _, index = torch_device.partition(":")
    return int(index) if index.isdigit() else 0


class CoreMlBackend(EngineBackend):
    """Apple GPU through torch's MPS runtime."""

    required_modules = ("stable_whisper", "torch")

    def _acquire(self) -> None:
        super()._acquire()
        torch = importlib.import_module("torch")
        mps = getattr(torch.backends, "mps", None)
        if mps is None or not (mps.is_available() and mps.is_built()):
            raise BackendUnavailable(self.descriptor, "Apple MPS runtime is unavailable.")


class OpenVinoBackend(EngineBackend):
    """Intel GPU through the OpenVINO runtime."""

    required_modules = ("stable_whisper", "openvino")

    def _acquire(self) -> None:
        super()._acquire()
        openvino = importlib.import_module("openvino")
        self._core = openvino.Core()
        runtime_id = self._device_options.openvino_device or "GPU"
        if runtime_id not in self._core.available_devices:
            raise BackendUnavailable(
                self.descriptor,
                f"OpenVINO device {runtime_id} is not available.",
            )

    def self_test(self) -> None:
        runtime_id = self._device_options.openvino_device or "GPU"
        name = self._core.get_property(runtime_id, "FULL_DEVICE_NAME")
        logger.debug("OpenVINO device %s reports name %s.", runtime_id, name)
        super().self_test()


class CpuBackend(EngineBackend):
    """CPU baseline; acquisition and validation always succeed."""

    required_modules = ()

    def self_test(self) -> None:
        return None
