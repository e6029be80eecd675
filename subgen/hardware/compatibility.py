"""Device/model compatibility scoring."""

from __future__ import annotations

import logging
import re
from typing import Final

from subgen.domain import (
    VENDOR_BACKENDS,
    BackendType,
    CompatibilityVerdict,
    Device,
    DeviceCategory,
)
from subgen.hardware.classification import classify, is_elevated_integrated
from subgen.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

BASE_SCORE: Final = 60
MEMORY_HEADROOM_BONUS: Final = 20
DISCRETE_BONUS: Final = 10
DRIVER_BONUS: Final = 10
MAX_SCORE: Final = 100
MEMORY_HEADROOM_FACTOR: Final = 1.5
UNKNOWN_MODEL_MEMORY_MB: Final = 2048

MODEL_MEMORY_REQUIREMENTS_MB: Final[dict[str, int]] = {
    "tiny": 1024,
    "base": 1024,
    "small": 2048,
    "medium": 3072,
    "turbo": 3584,
    "large-v3-turbo": 3584,
    "large": 6400,
    "large-v1": 6400,
    "large-v2": 6400,
    "large-v3": 6400,
}

_QUANTIZATION_SUFFIX = re.compile(r"-q\d+_\d+$")
_ENGLISH_ONLY_SUFFIX = ".en"
_DRIVER_VERSION = re.compile(r"^\d+(?:\.\d+)+$")


def _normalize_model_id(model_id: str) -> str:
    normalized = model_id.strip().lower()
    normalized = _QUANTIZATION_SUFFIX.sub("", normalized)
    normalized = normalized.removeprefix("ggml-").removesuffix(".bin")
    return normalized.removesuffix(_ENGLISH_ONLY_SUFFIX)


def model_memory_requirement_mb(model_id: str) -> int:
    """Returns the dedicated memory footprint required to run a model."""
    normalized = _normalize_model_id(model_id)
    requirement = MODEL_MEMORY_REQUIREMENTS_MB.get(normalized)
    if requirement is None:
        logger.debug(
            "No memory requirement known for model %r; assuming %s MB.",
            model_id,
            UNKNOWN_MODEL_MEMORY_MB,
        )
        return UNKNOWN_MODEL_MEMORY_MB
    return requirement


def is_known_driver_version(driver_version: str | None) -> bool:
    """Returns whether a driver version string is a detected dotted version."""
    if not driver_version:
        return False
    return bool(_DRIVER_VERSION.match(driver_version.strip()))


def _rejected(*errors: str, warnings: tuple[str, ...] = ()) -> CompatibilityVerdict:
    return CompatibilityVerdict(
        supported=False,
        score=0,
        errors=tuple(errors),
        warnings=warnings,
    )


def validate(
    device: Device,
    model_id: str,
    backend_type: BackendType | None = None,
) -> CompatibilityVerdict:
    """Validates one device against a model's requirements and scores the fit."""
    vendor_backend = VENDOR_BACKENDS.get(device.vendor)
    if vendor_backend is None:
        return _rejected(
            f"Vendor {device.vendor} has no supported acceleration path "
            f"for {device.display_name}."
        )
    requested_backend = backend_type or vendor_backend
    if requested_backend is not vendor_backend and requested_backend is not BackendType.CPU:
        return _rejected(
            f"Vendor {device.vendor} does not support the {requested_backend} "
            "acceleration path."
        )
    if not device.capabilities.supports(requested_backend):
        return _rejected(
            f"{device.display_name} reports missing {requested_backend} "
            "acceleration support."
        )

    score = BASE_SCORE
    warnings: list[str] = []
    recommendations: list[str] = []
    required_mb = model_memory_requirement_mb(model_id)

    if device.has_dedicated_memory:
        available_mb = int(device.memory_mb)
        if available_mb < required_mb:
            return _rejected(
                "Insufficient dedicated memory for this model: "
                f"{available_mb} MB available, {required_mb} MB required "
                f"for '{model_id}'."
            )
        if available_mb >= required_mb * MEMORY_HEADROOM_FACTOR:
            score += MEMORY_HEADROOM_BONUS
            recommendations.append(
                f"Sufficient dedicated memory for '{model_id}' "
                f"({available_mb} MB available, {required_mb} MB required)."
            )
        else:
            warnings.append(
                "Insufficient dedicated memory headroom for this model: "
                f"{available_mb} MB available, {required_mb} MB required for "
                f"'{model_id}'; expect memory pressure."
            )
    else:
        warnings.append(
            f"{device.display_name} shares system memory; assuming enough memory "
            f"is available for '{model_id}' ({required_mb} MB required)."
        )

    classification = classify(device.display_name, device.memory_mb)
    category = classification.category if classification.matched else device.category
    if category is DeviceCategory.DISCRETE:
        score += DISCRETE_BONUS
        recommendations.append("Discrete GPU provides optimal performance.")
    elif is_elevated_integrated(classification):
        recommendations.append(
            "Next-generation integrated graphics offer good power efficiency."
        )
    else:
        warnings.append("Integrated graphics may have reduced performance.")

    if is_known_driver_version(device.driver_version):
        score += DRIVER_BONUS
    else:
        warnings.append(
            f"Driver version for {device.display_name} could not be verified."
        )

    return CompatibilityVerdict(
        supported=True,
        score=min(score, MAX_SCORE),
        warnings=tuple(warnings),
        recommendations=tuple(recommendations),
    )
