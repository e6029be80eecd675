"""Device enumeration collaborators and the atomically swapped device snapshot."""

from __future__ import annotations

import importlib
import importlib.util
import logging
import threading
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Protocol

from subgen.domain import (
    SHARED_MEMORY,
    BackendType,
    Device,
    DeviceCapabilities,
    DeviceCategory,
    PerformanceBand,
    PowerBand,
    Vendor,
)
from subgen.hardware.classification import classify, classify_device
from subgen.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

_BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True, slots=True)
class DeviceAvailability:
    """Read-only snapshot of enumerated devices and usable runtimes."""

    devices: tuple[Device, ...] = ()
    missing_runtimes: frozenset[BackendType] = frozenset()
    runtime_versions: Mapping[BackendType, str] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def devices_for(self, vendor: Vendor) -> tuple[Device, ...]:
        """Returns devices of one vendor in enumeration order."""
        return tuple(device for device in self.devices if device.vendor is vendor)

    def runtime_available(self, backend_type: BackendType) -> bool:
        """Returns whether the runtime toolkit for a backend is present."""
        if backend_type is BackendType.CPU:
            return True
        return backend_type not in self.missing_runtimes

    def find(self, device_id: str) -> Device | None:
        """Returns the device with an exact id, if enumerated."""
        for device in self.devices:
            if device.id == device_id:
                return device
        return None


class DeviceEnumerator(Protocol):
    """Source of devices for one runtime family."""

    name: str
    backend_type: BackendType

    def runtime_version(self) -> str | None:
        """Returns the runtime version, or None when the runtime is missing."""
        ...

    def enumerate(self) -> Sequence[Device]:
        """Returns the devices currently visible to this runtime."""
        ...


def _import_optional(module_name: str) -> object | None:
    """Imports an optional runtime module when it is installed."""
    if importlib.util.find_spec(module_name) is None:
        return None
    return importlib.import_module(module_name)


def _cuda_is_available(torch_module: object) -> bool:
    cuda = getattr(torch_module, "cuda", None)
    is_available = getattr(cuda, "is_available", None)
    return bool(is_available()) if callable(is_available) else False


def _mps_is_available(torch_module: object) -> bool:
    backends = getattr(torch_module, "backends", None)
    mps = getattr(backends, "mps", None)
    is_available = getattr(mps, "is_available", None)
    is_built = getattr(mps, "is_built", None)
    available = bool(is_available()) if callable(is_available) else False
    built = bool(is_built()) if callable(is_built) else False
    return available and built


class CudaDeviceEnumerator:
    """Enumerates NVIDIA devices through torch's CUDA runtime."""

    name = "cuda"
    backend_type = BackendType.CUDA

    def __init__(self, torch_module: object | None = None) -> None:
        self._torch = torch_module

    def _torch_module(self) -> object | None:
        if self._torch is None:
            self._torch = _import_optional("torch")
        return self._torch

    def runtime_version(self) -> str | None:
        torch_module = self._torch_module()
        if torch_module is None or not _cuda_is_available(torch_module):
            return None
        version = getattr(torch_module, "version", None)
        return str(getattr(version, "cuda", None) or "unknown")

    def enumerate(self) -> Sequence[Device]:
        torch_module = self._torch_module()
        if torch_module is None or not _cuda_is_available(torch_module):
            return ()
        cuda = getattr(torch_module, "cuda")
        devices: list[Device] = []
        for index in range(int(cuda.device_count())):
            properties = cuda.get_device_properties(index)
            name = str(getattr(properties, "name", f"CUDA device {index}"))
            total_memory = int(getattr(properties, "total_memory", 0))
            driver = getattr(getattr(torch_module, "version", None), "cuda", None)
            devices.append(
                Device(
                    id=f"cuda_{index}",
                    display_name=name,
                    vendor=Vendor.NVIDIA,
                    category=DeviceCategory.DISCRETE,
                    memory_mb=total_memory // _BYTES_PER_MB
                    if total_memory
                    else SHARED_MEMORY,
                    driver_version=str(driver) if driver else "unknown",
                    capabilities=DeviceCapabilities(cuda=True),
                    runtime_id=f"cuda:{index}",
                )
            )
        return tuple(devices)


class MpsDeviceEnumerator:
    """Enumerates the Apple GPU through torch's MPS runtime."""

    name = "coreml"
    backend_type = BackendType.COREML

    def __init__(self, torch_module: object | None = None) -> None:
        self._torch = torch_module

    def _torch_module(self) -> object | None:
        if self._torch is None:
            self._torch = _import_optional("torch")
        return self._torch

    def runtime_version(self) -> str | None:
        torch_module = self._torch_module()
        if torch_module is None or not _mps_is_available(torch_module):
            return None
        return str(getattr(torch_module, "__version__", "unknown"))

    def enumerate(self) -> Sequence[Device]:
        torch_module = self._torch_module()
        if torch_module is None or not _mps_is_available(torch_module):
            return ()
        return (
            Device(
                id="apple_gpu",
                display_name="Apple M-series GPU",
                vendor=Vendor.APPLE,
                category=DeviceCategory.INTEGRATED,
                memory_mb=SHARED_MEMORY,
                capabilities=DeviceCapabilities(coreml=True),
                priority=30,
                performance_band=PerformanceBand.MEDIUM,
                power_band=PowerBand.EXCELLENT,
                runtime_id="mps",
            ),
        )


class OpenVinoDeviceEnumerator:
    """Enumerates Intel GPUs through the OpenVINO runtime."""

    name = "openvino"
    backend_type = BackendType.OPENVINO

    def __init__(self, openvino_module: object | None = None) -> None:
        self._openvino = openvino_module

    def _openvino_module(self) -> object | None:
        if self._openvino is None:
            self._openvino = _import_optional("openvino")
        return self._openvino

    def runtime_version(self) -> str | None:
        openvino_module = self._openvino_module()
        if openvino_module is None:
            return None
        get_version = getattr(openvino_module, "get_version", None)
        return str(get_version()) if callable(get_version) else "unknown"

    def enumerate(self) -> Sequence[Device]:
        openvino_module = self._openvino_module()
        if openvino_module is None:
            return ()
        core = openvino_module.Core()
        devices: list[Device] = []
        for runtime_id in core.available_devices:
            if not str(runtime_id).startswith("GPU"):
                continue
            name = str(core.get_property(runtime_id, "FULL_DEVICE_NAME"))
            category = classify(name).category
            memory_mb: int | str = SHARED_MEMORY
            if category is DeviceCategory.DISCRETE:
                total_bytes = int(core.get_property(runtime_id, "GPU_DEVICE_TOTAL_MEM_SIZE"))
                memory_mb = total_bytes // _BYTES_PER_MB
            devices.append(
                Device(
                    id=f"intel_{str(runtime_id).lower().replace('.', '_')}",
                    display_name=name,
                    vendor=Vendor.INTEL,
                    category=category,
                    memory_mb=memory_mb,
                    driver_version=self._driver_version(core, runtime_id),
                    capabilities=DeviceCapabilities(openvino=True),
                    runtime_id=str(runtime_id),
                )
            )
        return tuple(devices)

    @staticmethod
    def _driver_version(core: object, runtime_id: str) -> str:
        get_property = getattr(core, "get_property")
        try:
            return str(get_property(runtime_id, "GPU_DRIVER_VERSION"))
        except RuntimeError:
            return "unknown"


def default_enumerators() -> tuple[DeviceEnumerator, ...]:
    """Builds the enumerators for every supported accelerator runtime."""
    return (
        CudaDeviceEnumerator(),
        OpenVinoDeviceEnumerator(),
        MpsDeviceEnumerator(),
    )


@dataclass(frozen=True, slots=True)
class _EnumerationResult:
    devices: tuple[Device, ...]
    runtime_version: str | None
    failed: bool = False


def _run_enumerator(enumerator: DeviceEnumerator) -> _EnumerationResult:
    version = enumerator.runtime_version()
    if version is None:
        return _EnumerationResult(devices=(), runtime_version=None)
    return _EnumerationResult(
        devices=tuple(enumerator.enumerate()),
        runtime_version=version,
    )


class DeviceInventory:
    """Holds the current device snapshot and refreshes it out of band."""

    def __init__(
        self,
        enumerators: Iterable[DeviceEnumerator] | None = None,
        *,
        timeout_seconds: float = 10.0,
        initial: DeviceAvailability | None = None,
    ) -> None:
        self._enumerators = tuple(
            enumerators if enumerators is not None else default_enumerators()
        )
        self._timeout_seconds = timeout_seconds
        self._lock = threading.Lock()
        self._snapshot = initial or DeviceAvailability()

    def snapshot(self) -> DeviceAvailability:
        """Returns the current snapshot; callers keep it for the whole run."""
        with self._lock:
            return self._snapshot

    def refresh(self) -> DeviceAvailability:
        """Enumerates every runtime and swaps in a new snapshot."""
        devices: list[Device] = []
        missing_runtimes: set[BackendType] = set()
        runtime_versions: dict[BackendType, str] = {}
        if self._enumerators:
            executor = ThreadPoolExecutor(
                max_workers=len(self._enumerators),
                thread_name_prefix="subgen-enumerate",
            )
            try:
                futures = [
                    (enumerator, executor.submit(_run_enumerator, enumerator))
                    for enumerator in self._enumerators
                ]
                for enumerator, future in futures:
                    result = self._collect(enumerator, future)
                    if result.failed:
                        continue
                    if result.runtime_version is None:
                        missing_runtimes.add(enumerator.backend_type)
                        continue
                    runtime_versions[enumerator.backend_type] = result.runtime_version
                    devices.extend(result.devices)
            finally:
                executor.shutdown(wait=False, cancel_futures=True)

        snapshot = DeviceAvailability(
            devices=tuple(classify_device(device) for device in devices),
            missing_runtimes=frozenset(missing_runtimes),
            runtime_versions=MappingProxyType(runtime_versions),
        )
        with self._lock:
            self._snapshot = snapshot
        logger.info(
            "Device inventory refreshed: %s device(s); missing runtimes: %s.",
            len(snapshot.devices),
            ", ".join(sorted(missing_runtimes)) or "none",
        )
        return snapshot

    def _collect(
        self,
        enumerator: DeviceEnumerator,
        future: Future[_EnumerationResult],
    ) -> _EnumerationResult:
        try:
            return future.result(timeout=self._timeout_seconds)
        except FutureTimeoutError:
            logger.warning(
                "Device enumeration via %s timed out after %.1fs; treating as no devices.",
                enumerator.name,
                self._timeout_seconds,
            )
        except Exception as err:
            logger.warning(
                "Device enumeration via %s failed (%s); treating as no devices.",
                enumerator.name,
                err,
            )
        return _EnumerationResult(devices=(), runtime_version=None, failed=True)
