"""Tests for backend performance hints, engine device options and environment."""

from pathlib import Path

import pytest

from subgen.backends.environment import (
    apply_environment,
    engine_device_options,
    environment_for,
    performance_hints,
    restore_environment,
)
from subgen.backends.selector import cpu_descriptor
from subgen.config import AppConfig, OpenVinoConfig
from subgen.domain import (
    BackendDescriptor,
    BackendType,
    DeviceCategory,
    DeviceConfig,
    PowerBand,
    Vendor,
)


def _descriptor(
    backend_type: BackendType,
    vendor: Vendor,
    category: DeviceCategory,
    runtime_id: str | None,
) -> BackendDescriptor:
    return BackendDescriptor(
        backend_type=backend_type,
        display_name=f"{backend_type} test",
        vendor=vendor,
        device_config=DeviceConfig(
            device_id="device",
            memory_mb="shared",
            category=category,
            runtime_id=runtime_id,
        ),
    )


@pytest.mark.parametrize(
    ("backend_type", "category", "speedup", "power"),
    [
        (BackendType.CUDA, DeviceCategory.DISCRETE, 4.0, PowerBand.MODERATE),
        (BackendType.OPENVINO, DeviceCategory.DISCRETE, 3.5, PowerBand.GOOD),
        (BackendType.OPENVINO, DeviceCategory.INTEGRATED, 2.5, PowerBand.EXCELLENT),
        (BackendType.COREML, DeviceCategory.INTEGRATED, 2.8, PowerBand.EXCELLENT),
        (BackendType.CPU, None, 1.0, PowerBand.GOOD),
    ],
)
def test_performance_hints_per_backend(
    backend_type: BackendType,
    category: DeviceCategory | None,
    speedup: float,
    power: PowerBand,
) -> None:
    """Each backend placement should expose its documented hint."""
    hint = performance_hints(backend_type, category)

    assert hint.expected_speedup == pytest.approx(speedup)
    assert hint.power_efficiency is power


def test_cuda_options_target_runtime_device_with_flash_attention() -> None:
    """CUDA descriptors should address their torch device index."""
    options = engine_device_options(
        _descriptor(BackendType.CUDA, Vendor.NVIDIA, DeviceCategory.DISCRETE, "cuda:1")
    )

    assert options.use_gpu is True
    assert options.torch_device == "cuda:1"
    assert options.flash_attention is True
    assert options.performance_mode == "throughput"


def test_openvino_options_name_openvino_device() -> None:
    """OpenVINO descriptors should pass the OpenVINO device id and latency mode."""
    options = engine_device_options(
        _descriptor(BackendType.OPENVINO, Vendor.INTEL, DeviceCategory.INTEGRATED, "GPU.0")
    )

    assert options.use_gpu is True
    assert options.openvino_device == "GPU.0"
    assert options.torch_device == "cpu"
    assert options.performance_mode == "latency"


def test_coreml_and_cpu_options() -> None:
    """CoreML should run on mps and CPU should disable GPU use."""
    coreml = engine_device_options(
        _descriptor(BackendType.COREML, Vendor.APPLE, DeviceCategory.INTEGRATED, "mps")
    )
    cpu = engine_device_options(cpu_descriptor())

    assert coreml.torch_device == "mps"
    assert coreml.coreml_enabled is True
    assert cpu.use_gpu is False
    assert cpu.torch_device == "cpu"
    assert cpu.performance_mode is None


def test_openvino_environment_reflects_settings_and_category(tmp_path: Path) -> None:
    """OpenVINO environment should carry device id, cache dir and hint."""
    settings = AppConfig(
        openvino=OpenVinoConfig(cache_dir=tmp_path / "ov", enable_optimizations=False)
    )
    descriptor = _descriptor(
        BackendType.OPENVINO, Vendor.INTEL, DeviceCategory.DISCRETE, "GPU.1"
    )

    environment = environment_for(descriptor, settings)

    assert environment == {
        "OPENVINO_DEVICE_ID": "GPU.1",
        "OPENVINO_CACHE_DIR": str(tmp_path / "ov"),
        "OPENVINO_ENABLE_OPTIMIZATIONS": "0",
        "OPENVINO_PERFORMANCE_HINT": "THROUGHPUT",
    }


def test_non_openvino_backends_need_no_environment() -> None:
    """Only OpenVINO descriptors configure the process environment."""
    settings = AppConfig()

    assert environment_for(cpu_descriptor(), settings) == {}
    assert (
        environment_for(
            _descriptor(BackendType.CUDA, Vendor.NVIDIA, DeviceCategory.DISCRETE, "cuda:0"),
            settings,
        )
        == {}
    )


def test_apply_environment_writes_into_target_mapping() -> None:
    """apply_environment should write every variable into the given mapping."""
    target: dict[str, str] = {"KEEP": "1"}

    apply_environment({"OPENVINO_DEVICE_ID": "GPU.0"}, target)

    assert target == {"KEEP": "1", "OPENVINO_DEVICE_ID": "GPU.0"}


def test_restore_environment_undoes_apply() -> None:
    """Replaced values come back and newly added keys are removed."""
    target: dict[str, str] = {"OPENVINO_CACHE_DIR": "/srv/cache"}

    previous = apply_environment(
        {"OPENVINO_CACHE_DIR": "/tmp/ov", "OPENVINO_DEVICE_ID": "GPU.0"}, target
    )
    restore_environment(previous, target)

    assert previous == {"OPENVINO_CACHE_DIR": "/srv/cache", "OPENVINO_DEVICE_ID": None}
    assert target == {"OPENVINO_CACHE_DIR": "/srv/cache"}
