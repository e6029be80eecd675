"""Shared data model for devices, backends and transcription runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final, Literal, NamedTuple, TypeAlias

SHARED_MEMORY: Final = "shared"
CPU_DEVICE_ID: Final = "cpu"

DeviceMemory: TypeAlias = int | Literal["shared"]


class Vendor(StrEnum):
    """Hardware vendors known to device enumeration."""

    NVIDIA = "nvidia"
    INTEL = "intel"
    APPLE = "apple"
    AMD = "amd"
    CPU = "cpu"


class DeviceCategory(StrEnum):
    """Physical placement of an accelerator."""

    DISCRETE = "discrete"
    INTEGRATED = "integrated"


class PerformanceBand(StrEnum):
    """Coarse expected throughput band."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PowerBand(StrEnum):
    """Coarse power-efficiency band."""

    EXCELLENT = "excellent"
    GOOD = "good"
    MODERATE = "moderate"


class BackendType(StrEnum):
    """Acceleration implementations the inference engine can run on."""

    CUDA = "cuda"
    OPENVINO = "openvino"
    COREML = "coreml"
    CPU = "cpu"


class RunState(StrEnum):
    """Lifecycle of one supervised transcription job."""

    PENDING = "pending"
    SELECTING = "selecting"
    LOADING = "loading"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        """Returns whether no further transition is allowed."""
        return self in _TERMINAL_RUN_STATES


_TERMINAL_RUN_STATES: Final = frozenset(
    {RunState.COMPLETED, RunState.CANCELLED, RunState.ERRORED}
)

VENDOR_BACKENDS: Final[dict[Vendor, BackendType]] = {
    Vendor.NVIDIA: BackendType.CUDA,
    Vendor.INTEL: BackendType.OPENVINO,
    Vendor.APPLE: BackendType.COREML,
    Vendor.CPU: BackendType.CPU,
}


@dataclass(frozen=True, slots=True)
class DeviceCapabilities:
    """Backends a device reports support for."""

    cuda: bool = False
    openvino: bool = False
    coreml: bool = False

    def supports(self, backend_type: BackendType) -> bool:
        """Returns whether the device can run one backend type."""
        if backend_type is BackendType.CPU:
            return True
        return bool(getattr(self, backend_type.value))


@dataclass(frozen=True, slots=True)
class Device:
    """Immutable snapshot of one enumerated compute unit."""

    id: str
    display_name: str
    vendor: Vendor
    category: DeviceCategory = DeviceCategory.INTEGRATED
    memory_mb: DeviceMemory = SHARED_MEMORY
    driver_version: str = "unknown"
    capabilities: DeviceCapabilities = field(default_factory=DeviceCapabilities)
    priority: int = 1
    performance_band: PerformanceBand = PerformanceBand.LOW
    power_band: PowerBand = PowerBand.GOOD
    runtime_id: str | None = None

    @property
    def has_dedicated_memory(self) -> bool:
        """Returns whether memory is a known dedicated size."""
        return isinstance(self.memory_mb, int)


@dataclass(frozen=True, slots=True)
class DeviceConfig:
    """Device details a backend descriptor carries for loading."""

    device_id: str
    memory_mb: DeviceMemory
    category: DeviceCategory
    runtime_id: str | None = None


@dataclass(frozen=True, slots=True)
class BackendDescriptor:
    """The selected backend together with its expected behavior."""

    backend_type: BackendType
    display_name: str
    vendor: Vendor
    device_config: DeviceConfig | None = None
    expected_speedup: float = 1.0
    power_efficiency: PowerBand = PowerBand.GOOD
    fallback_reason: str | None = None
    user_selected: bool = False

    @property
    def is_cpu(self) -> bool:
        """Returns whether this descriptor is the CPU baseline."""
        return self.backend_type is BackendType.CPU

    @property
    def device_id(self) -> str:
        """Returns the backing device id, or the CPU sentinel."""
        if self.device_config is None:
            return CPU_DEVICE_ID
        return self.device_config.device_id


@dataclass(frozen=True, slots=True)
class FallbackChain:
    """Ordered backend candidates whose last element is always CPU."""

    candidates: tuple[BackendDescriptor, ...]

    def __post_init__(self) -> None:
        if not self.candidates:
            raise ValueError("Fallback chain requires at least one candidate.")
        if not self.candidates[-1].is_cpu:
            raise ValueError("Fallback chain must end with the CPU backend.")

    def __iter__(self):
        return iter(self.candidates)

    def __len__(self) -> int:
        return len(self.candidates)

    @property
    def primary(self) -> BackendDescriptor:
        """Returns the preferred candidate."""
        return self.candidates[0]


@dataclass(frozen=True, slots=True)
class CompatibilityVerdict:
    """Accept/reject decision for one (device, model) pair."""

    supported: bool
    score: int
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.errors and self.supported:
            raise ValueError("A verdict with errors cannot be supported.")
        if not self.supported and self.score != 0:
            raise ValueError("An unsupported verdict must score 0.")
        if not 0 <= self.score <= 100:
            raise ValueError(f"Compatibility score out of range: {self.score}.")


class TranscriptSegment(NamedTuple):
    """One timed transcript line, in milliseconds."""

    start_ms: int
    end_ms: int
    text: str
