"""Per-backend performance hints, engine device options and process environment."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass

from subgen.config import AppConfig
from subgen.domain import BackendDescriptor, BackendType, DeviceCategory, PowerBand
from subgen.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PerformanceHint:
    """Expected speedup and power efficiency for one backend placement."""

    expected_speedup: float
    power_efficiency: PowerBand


_PERFORMANCE_HINTS: dict[tuple[BackendType, DeviceCategory | None], PerformanceHint] = {
    (BackendType.CUDA, None): PerformanceHint(4.0, PowerBand.MODERATE),
    (BackendType.OPENVINO, DeviceCategory.DISCRETE): PerformanceHint(3.5, PowerBand.GOOD),
    (BackendType.OPENVINO, DeviceCategory.INTEGRATED): PerformanceHint(
        2.5, PowerBand.EXCELLENT
    ),
    (BackendType.COREML, None): PerformanceHint(2.8, PowerBand.EXCELLENT),
    (BackendType.CPU, None): PerformanceHint(1.0, PowerBand.GOOD),
}


def performance_hints(
    backend_type: BackendType,
    category: DeviceCategory | None = None,
) -> PerformanceHint:
    """Returns the performance hint for a backend and device category."""
    hint = _PERFORMANCE_HINTS.get((backend_type, category))
    if hint is None:
        hint = _PERFORMANCE_HINTS.get((backend_type, None))
    if hint is None:
        hint = _PERFORMANCE_HINTS[(BackendType.OPENVINO, DeviceCategory.INTEGRATED)]
    return hint


@dataclass(frozen=True, slots=True)
class EngineDeviceOptions:
    """Device knobs handed to the inference engine for one descriptor."""

    use_gpu: bool
    torch_device: str
    openvino_device: str | None = None
    flash_attention: bool = False
    coreml_enabled: bool = False
    performance_mode: str | None = None


def _performance_mode(descriptor: BackendDescriptor) -> str | None:
    if descriptor.device_config is None:
        return None
    if descriptor.device_config.category is DeviceCategory.DISCRETE:
        return "throughput"
    return "latency"


def engine_device_options(descriptor: BackendDescriptor) -> EngineDeviceOptions:
    """Maps a backend descriptor to engine device options."""
    config = descriptor.device_config
    runtime_id = config.runtime_id if config is not None else None
    if descriptor.backend_type is BackendType.CUDA:
        return EngineDeviceOptions(
            use_gpu=True,
            torch_device=runtime_id or "cuda:0",
            flash_attention=True,
            performance_mode=_performance_mode(descriptor),
        )
    if descriptor.backend_type is BackendType.OPENVINO:
        return EngineDeviceOptions(
            use_gpu=True,
            torch_device="cpu",
            openvino_device=runtime_id or "GPU",
            performance_mode=_performance_mode(descriptor),
        )
    if descriptor.backend_type is BackendType.COREML:
        return EngineDeviceOptions(
            use_gpu=True,
            torch_device="mps",
            coreml_enabled=True,
            performance_mode=_performance_mode(descriptor),
        )
    return EngineDeviceOptions(use_gpu=False, torch_device="cpu")


def environment_for(descriptor: BackendDescriptor, settings: AppConfig) -> dict[str, str]:
    """Returns environment variables a backend needs before first use."""
    if descriptor.backend_type is not BackendType.OPENVINO:
        return {}
    config = descriptor.device_config
    discrete = config is not None and config.category is DeviceCategory.DISCRETE
    return {
        "OPENVINO_DEVICE_ID": (config.runtime_id if config else None) or "GPU",
        "OPENVINO_CACHE_DIR": str(settings.openvino.cache_dir),
        "OPENVINO_ENABLE_OPTIMIZATIONS": "1"
        if settings.openvino.enable_optimizations
        else "0",
        "OPENVINO_PERFORMANCE_HINT": "THROUGHPUT" if discrete else "LATENCY",
    }


def apply_environment(
    environment: Mapping[str, str],
    environ: MutableMapping[str, str] | None = None,
) -> dict[str, str | None]:
    """Writes backend environment variables and returns the values they replaced."""
    target = os.environ if environ is None else environ
    previous: dict[str, str | None] = {}
    for key, value in environment.items():
        previous[key] = target.get(key)
        target[key] = value
        logger.debug("Backend environment %s=%s", key, value)
    return previous


def restore_environment(
    previous: Mapping[str, str | None],
    environ: MutableMapping[str, str] | None = None,
) -> None:
    """Undoes `apply_environment`; keys that were unset are removed again."""
    target = os.environ if environ is None else environ
    for key, value in previous.items():
        if value is None:
            target.pop(key, None)
        else:
            target[key] = value
