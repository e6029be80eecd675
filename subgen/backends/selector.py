"""Backend selection from vendor preference, device inventory and model needs."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from subgen.backends.environment import performance_hints
from subgen.domain import (
    CPU_DEVICE_ID,
    VENDOR_BACKENDS,
    BackendDescriptor,
    BackendType,
    Device,
    DeviceCategory,
    DeviceConfig,
    FallbackChain,
    Vendor,
)
from subgen.hardware.classification import classify_device
from subgen.hardware.compatibility import validate
from subgen.hardware.enumeration import DeviceAvailability
from subgen.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

CPU_DISPLAY_NAME = "CPU Processing"
EXHAUSTED_REASON = "All GPU acceleration methods unavailable"

_VENDOR_LABELS: dict[Vendor, str] = {
    Vendor.NVIDIA: "NVIDIA CUDA",
    Vendor.INTEL: "Intel OpenVINO",
    Vendor.APPLE: "Apple CoreML",
    Vendor.CPU: "CPU",
}


def _parse_vendor(value: str | Vendor) -> Vendor | None:
    if isinstance(value, Vendor):
        return value
    try:
        return Vendor(str(value).strip().lower())
    except ValueError:
        return None


def _memory_rank(device: Device) -> int:
    return int(device.memory_mb) if device.has_dedicated_memory else 0


def rank_devices(devices: Iterable[Device]) -> list[Device]:
    """Orders devices discrete first, then priority, then memory, then enumeration order."""
    return sorted(
        devices,
        key=lambda device: (
            device.category is not DeviceCategory.DISCRETE,
            -device.priority,
            -_memory_rank(device),
        ),
    )


def cpu_descriptor(fallback_reason: str | None = None) -> BackendDescriptor:
    """Returns the CPU baseline descriptor."""
    hint = performance_hints(BackendType.CPU)
    return BackendDescriptor(
        backend_type=BackendType.CPU,
        display_name=CPU_DISPLAY_NAME,
        vendor=Vendor.CPU,
        expected_speedup=hint.expected_speedup,
        power_efficiency=hint.power_efficiency,
        fallback_reason=fallback_reason,
    )


def describe_device(
    device: Device,
    *,
    fallback_reason: str | None = None,
    user_selected: bool = False,
) -> BackendDescriptor:
    """Builds the backend descriptor for running on one device."""
    backend_type = VENDOR_BACKENDS[device.vendor]
    if backend_type is BackendType.CPU:
        return cpu_descriptor(fallback_reason)
    hint = performance_hints(backend_type, device.category)
    label = _VENDOR_LABELS.get(device.vendor, str(device.vendor))
    display_name = f"{label} ({device.display_name})"
    if user_selected:
        display_name = f"{display_name} (User Selected)"
    return BackendDescriptor(
        backend_type=backend_type,
        display_name=display_name,
        vendor=device.vendor,
        device_config=DeviceConfig(
            device_id=device.id,
            memory_mb=device.memory_mb,
            category=device.category,
            runtime_id=device.runtime_id,
        ),
        expected_speedup=hint.expected_speedup,
        power_efficiency=hint.power_efficiency,
        fallback_reason=fallback_reason,
        user_selected=user_selected,
    )


def _best_compatible_device(
    vendor: Vendor,
    availability: DeviceAvailability,
    model_id: str,
) -> tuple[Device | None, str | None]:
    """Returns the best compatible device of a vendor, or the reason none qualified."""
    devices = tuple(classify_device(device) for device in availability.devices_for(vendor))
    backend_type = VENDOR_BACKENDS.get(vendor)
    if backend_type is None:
        return None, f"{vendor} devices have no acceleration backend"
    if not availability.runtime_available(backend_type):
        return None, f"{backend_type} runtime unavailable"
    if not devices:
        return None, f"no {vendor} devices detected"
    rejections: list[str] = []
    for device in rank_devices(devices):
        verdict = validate(device, model_id, backend_type)
        if verdict.supported:
            logger.debug(
                "Device %s is compatible with %s (score %s).",
                device.display_name,
                model_id,
                verdict.score,
            )
            return device, None
        rejections.extend(verdict.errors)
    detail = "; ".join(rejections)
    return None, f"no {vendor} device met the requirements of '{model_id}' ({detail})"


def select_optimal(
    preference_order: Sequence[str | Vendor],
    availability: DeviceAvailability,
    model_id: str,
) -> BackendDescriptor:
    """Selects the first compatible backend in preference order, else CPU."""
    reasons: list[str] = []
    for entry in preference_order:
        vendor = _parse_vendor(entry)
        if vendor is None:
            logger.warning("Ignoring unknown vendor %r in GPU preference.", entry)
            continue
        if vendor is Vendor.CPU:
            if reasons:
                break
            logger.info("CPU processing is the preferred backend.")
            return cpu_descriptor()
        device, reason = _best_compatible_device(vendor, availability, model_id)
        if device is not None:
            descriptor = describe_device(device)
            logger.info(
                "Selected %s for model %s.", descriptor.display_name, model_id
            )
            return descriptor
        reasons.append(reason or f"no usable {vendor} device")
        logger.info("Skipping %s: %s.", vendor, reason)

    fallback_reason = "; ".join(reasons) if reasons else EXHAUSTED_REASON
    logger.info("Falling back to CPU processing: %s.", fallback_reason)
    return cpu_descriptor(fallback_reason)


def resolve_specific(
    identifier: object,
    availability: DeviceAvailability,
) -> BackendDescriptor | None:
    """Resolves an explicit user-chosen device id; returns None when it is unknown."""
    if not isinstance(identifier, str) or not identifier:
        return None
    if identifier == CPU_DEVICE_ID:
        return BackendDescriptor(
            backend_type=BackendType.CPU,
            display_name=f"{CPU_DISPLAY_NAME} (User Selected)",
            vendor=Vendor.CPU,
            user_selected=True,
        )
    device = availability.find(identifier)
    if device is None or device.vendor not in VENDOR_BACKENDS:
        return None
    return describe_device(device, user_selected=True)


def build_fallback_chain(
    primary: BackendDescriptor,
    availability: DeviceAvailability,
    preference_order: Sequence[str | Vendor],
    model_id: str,
) -> FallbackChain:
    """Builds primary -> remaining preferred vendors -> CPU."""
    candidates: list[BackendDescriptor] = [primary]
    if primary.is_cpu:
        return FallbackChain(tuple(candidates))
    seen_devices = {primary.device_id}
    degrade_reason = f"{primary.display_name} failed to load"
    for entry in preference_order:
        vendor = _parse_vendor(entry)
        if vendor is None or vendor is Vendor.CPU:
            continue
        device, _ = _best_compatible_device(vendor, availability, model_id)
        if device is None or device.id in seen_devices:
            continue
        seen_devices.add(device.id)
        candidates.append(describe_device(device, fallback_reason=degrade_reason))
    candidates.append(cpu_descriptor("GPU acceleration failed"))
    return FallbackChain(tuple(candidates))
