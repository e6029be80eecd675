"""Tests for device enumeration and the atomically swapped availability snapshot."""

import threading
from collections.abc import Sequence
from types import SimpleNamespace

import pytest

import subgen.hardware.enumeration as enumeration
from subgen.domain import (
    BackendType,
    Device,
    DeviceCapabilities,
    DeviceCategory,
    Vendor,
)
from subgen.hardware.enumeration import (
    CudaDeviceEnumerator,
    DeviceAvailability,
    DeviceInventory,
    MpsDeviceEnumerator,
    OpenVinoDeviceEnumerator,
)

_GIB = 1024 * 1024 * 1024


class _FakeEnumerator:
    """Enumerator returning canned devices."""

    def __init__(
        self,
        backend_type: BackendType,
        devices: Sequence[Device] = (),
        version: str | None = "1.0",
        error: Exception | None = None,
        gate: threading.Event | None = None,
    ) -> None:
        self.name = f"fake-{backend_type}"
        self.backend_type = backend_type
        self._devices = tuple(devices)
        self._version = version
        self._error = error
        self._gate = gate

    def runtime_version(self) -> str | None:
        return self._version

    def enumerate(self) -> Sequence[Device]:
        if self._gate is not None:
            self._gate.wait(5.0)
        if self._error is not None:
            raise self._error
        return self._devices


def _nvidia(index: int = 0, name: str = "NVIDIA GeForce RTX 4070") -> Device:
    return Device(
        id=f"cuda_{index}",
        display_name=name,
        vendor=Vendor.NVIDIA,
        category=DeviceCategory.DISCRETE,
        memory_mb=12282,
        capabilities=DeviceCapabilities(cuda=True),
    )


def _intel(name: str = "Intel(R) Arc(TM) A770 Graphics") -> Device:
    return Device(
        id="intel_gpu_1",
        display_name=name,
        vendor=Vendor.INTEL,
        memory_mb=16384,
        capabilities=DeviceCapabilities(openvino=True),
    )


def test_refresh_collects_and_classifies_devices() -> None:
    """Refresh should merge enumerator output and classify each device by name."""
    inventory = DeviceInventory(
        [
            _FakeEnumerator(BackendType.CUDA, [_nvidia()], version="12.4"),
            _FakeEnumerator(BackendType.OPENVINO, [_intel()], version="2024.3"),
        ]
    )

    availability = inventory.refresh()

    assert [device.id for device in availability.devices] == ["cuda_0", "intel_gpu_1"]
    intel = availability.find("intel_gpu_1")
    assert intel is not None
    assert intel.category is DeviceCategory.DISCRETE
    assert intel.priority > 1
    assert availability.runtime_versions[BackendType.CUDA] == "12.4"
    assert availability.missing_runtimes == frozenset()
    assert inventory.snapshot() is availability


def test_refresh_marks_runtime_missing_when_version_is_absent() -> None:
    """An enumerator without a runtime should mark its backend as missing."""
    inventory = DeviceInventory(
        [
            _FakeEnumerator(BackendType.CUDA, version=None),
            _FakeEnumerator(BackendType.OPENVINO, [_intel()]),
        ]
    )

    availability = inventory.refresh()

    assert availability.missing_runtimes == frozenset({BackendType.CUDA})
    assert availability.runtime_available(BackendType.CUDA) is False
    assert availability.runtime_available(BackendType.OPENVINO) is True
    assert availability.runtime_available(BackendType.CPU) is True


def test_failing_enumerator_counts_as_zero_devices(caplog: pytest.LogCaptureFixture) -> None:
    """Enumeration errors should not abort refresh or hide other devices."""
    inventory = DeviceInventory(
        [
            _FakeEnumerator(BackendType.CUDA, error=RuntimeError("driver crashed")),
            _FakeEnumerator(BackendType.OPENVINO, [_intel()]),
        ]
    )

    availability = inventory.refresh()

    assert [device.id for device in availability.devices] == ["intel_gpu_1"]
    assert availability.devices_for(Vendor.NVIDIA) == ()
    assert "driver crashed" in caplog.text


def test_slow_enumerator_times_out_as_zero_devices() -> None:
    """An enumerator exceeding the timeout should be treated as having no devices."""
    gate = threading.Event()
    inventory = DeviceInventory(
        [
            _FakeEnumerator(BackendType.CUDA, [_nvidia()], gate=gate),
            _FakeEnumerator(BackendType.OPENVINO, [_intel()]),
        ],
        timeout_seconds=0.05,
    )
    try:
        availability = inventory.refresh()
    finally:
        gate.set()

    assert [device.vendor for device in availability.devices] == [Vendor.INTEL]


def test_snapshot_is_stable_until_refresh() -> None:
    """Readers holding a snapshot should not see later refreshes."""
    initial = DeviceAvailability(devices=(_nvidia(),))
    inventory = DeviceInventory([], initial=initial)

    held = inventory.snapshot()
    refreshed = inventory.refresh()

    assert held is initial
    assert held.devices == (_nvidia(),)
    assert refreshed.devices == ()
    assert inventory.snapshot() is refreshed


def test_cuda_enumerator_reads_torch_properties() -> None:
    """CUDA enumeration should expose one device per visible index."""
    properties = [
        SimpleNamespace(name="NVIDIA GeForce RTX 4090", total_memory=24 * _GIB),
        SimpleNamespace(name="NVIDIA GeForce RTX 3060", total_memory=12 * _GIB),
    ]
    torch = SimpleNamespace(
        cuda=SimpleNamespace(
            is_available=lambda: True,
            device_count=lambda: len(properties),
            get_device_properties=lambda index: properties[index],
        ),
        version=SimpleNamespace(cuda="12.4"),
    )
    enumerator = CudaDeviceEnumerator(torch_module=torch)

    devices = enumerator.enumerate()

    assert enumerator.runtime_version() == "12.4"
    assert [device.id for device in devices] == ["cuda_0", "cuda_1"]
    assert devices[0].memory_mb == 24576
    assert devices[1].runtime_id == "cuda:1"
    assert devices[0].capabilities.cuda is True
    assert devices[0].driver_version == "12.4"


def test_cuda_enumerator_without_torch_reports_missing_runtime(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A missing torch install should surface as a missing CUDA runtime."""
    monkeypatch.setattr(enumeration, "_import_optional", lambda _name: None)
    enumerator = CudaDeviceEnumerator()

    assert enumerator.runtime_version() is None
    assert enumerator.enumerate() == ()


def test_mps_enumerator_reports_shared_memory_apple_gpu() -> None:
    """Apple MPS should appear as one shared-memory integrated device."""
    mps = SimpleNamespace(is_available=lambda: True, is_built=lambda: True)
    torch = SimpleNamespace(backends=SimpleNamespace(mps=mps), __version__="2.3.0")
    enumerator = MpsDeviceEnumerator(torch_module=torch)

    (device,) = enumerator.enumerate()

    assert enumerator.runtime_version() == "2.3.0"
    assert device.vendor is Vendor.APPLE
    assert device.has_dedicated_memory is False
    assert device.capabilities.coreml is True


class _FakeCore:
    """Subset of openvino.Core used by enumeration."""

    available_devices = ["CPU", "GPU.0", "GPU.1"]
    _properties = {
        ("GPU.0", "FULL_DEVICE_NAME"): "Intel(R) UHD Graphics 770",
        ("GPU.1", "FULL_DEVICE_NAME"): "Intel(R) Arc(TM) A770 Graphics",
        ("GPU.1", "GPU_DEVICE_TOTAL_MEM_SIZE"): 16 * _GIB,
        ("GPU.1", "GPU_DRIVER_VERSION"): "31.0.101.5186",
    }

    def get_property(self, device: str, name: str) -> object:
        try:
            return self._properties[(device, name)]
        except KeyError as err:
            raise RuntimeError(f"{name} unsupported on {device}") from err


def test_openvino_enumerator_lists_gpu_devices_only() -> None:
    """OpenVINO enumeration should skip CPU and read memory for discrete GPUs."""
    openvino = SimpleNamespace(Core=_FakeCore, get_version=lambda: "2024.3.0")
    enumerator = OpenVinoDeviceEnumerator(openvino_module=openvino)

    integrated, discrete = enumerator.enumerate()

    assert enumerator.runtime_version() == "2024.3.0"
    assert integrated.id == "intel_gpu_0"
    assert integrated.memory_mb == "shared"
    assert integrated.driver_version == "unknown"
    assert discrete.id == "intel_gpu_1"
    assert discrete.category is DeviceCategory.DISCRETE
    assert discrete.memory_mb == 16384
    assert discrete.runtime_id == "GPU.1"
    assert discrete.driver_version == "31.0.101.5186"
