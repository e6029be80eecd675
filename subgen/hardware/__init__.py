"""Device classification, compatibility validation and enumeration."""

from .classification import Classification, classify, classify_device
from .compatibility import model_memory_requirement_mb, validate
from .enumeration import DeviceAvailability, DeviceInventory

__all__ = [
    "Classification",
    "DeviceAvailability",
    "DeviceInventory",
    "classify",
    "classify_device",
    "model_memory_requirement_mb",
    "validate",
]
