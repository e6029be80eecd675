"""Tests for rule-table classification of device names."""

import pytest

from subgen.domain import (
    Device,
    DeviceCategory,
    PerformanceBand,
    PowerBand,
    Vendor,
)
from subgen.hardware.classification import (
    CLASSIFICATION_RULES,
    UNKNOWN_CLASSIFICATION,
    classify,
    classify_device,
    infer_vendor,
    is_elevated_integrated,
)


@pytest.mark.parametrize(
    ("name", "family", "category"),
    [
        ("Intel(R) Arc(TM) A770 Graphics", "intel_arc_discrete", DeviceCategory.DISCRETE),
        ("Intel Arc B580", "intel_arc_discrete", DeviceCategory.DISCRETE),
        ("NVIDIA GeForce RTX 4090", "nvidia_discrete", DeviceCategory.DISCRETE),
        ("AMD Radeon RX 7900 XTX", "amd_radeon_discrete", DeviceCategory.DISCRETE),
        (
            "Intel(R) Core(TM) Ultra 7 155H with Intel(R) Arc(TM) Graphics",
            "intel_core_ultra",
            DeviceCategory.INTEGRATED,
        ),
        ("Intel(R) Arc(TM) Graphics", "intel_core_ultra", DeviceCategory.INTEGRATED),
        ("Apple M2 Max", "apple_silicon", DeviceCategory.INTEGRATED),
        ("Intel(R) Iris(R) Xe MAX Graphics", "intel_iris_xe_max", DeviceCategory.INTEGRATED),
        ("Intel(R) Iris(R) Xe Graphics", "intel_iris_xe", DeviceCategory.INTEGRATED),
        ("Intel Xe Graphics", "intel_xe", DeviceCategory.INTEGRATED),
        ("Intel(R) UHD Graphics 630", "intel_uhd", DeviceCategory.INTEGRATED),
        ("AMD Radeon(TM) Graphics", "amd_radeon_integrated", DeviceCategory.INTEGRATED),
        ("Intel(R) HD Graphics 620", "intel_hd", DeviceCategory.INTEGRATED),
    ],
)
def test_classify_maps_known_families(
    name: str,
    family: str,
    category: DeviceCategory,
) -> None:
    """Known device names should land in the family and category of their rule."""
    classification = classify(name)

    assert classification.family == family
    assert classification.category is category
    assert classification.matched is True


def test_classify_orders_tiers_across_families() -> None:
    """Higher-tier discrete > lower-tier discrete > elevated integrated > legacy integrated."""
    ranked = [
        classify("Intel Arc A770"),
        classify("Intel Arc A380"),
        classify("Intel(R) Core(TM) Ultra 7 155H with Intel(R) Arc(TM) Graphics"),
        classify("Intel(R) Iris(R) Xe Graphics"),
        classify("Intel(R) UHD Graphics 630"),
        classify("Intel(R) HD Graphics 620"),
    ]

    priorities = [classification.priority for classification in ranked]
    assert priorities == sorted(priorities, reverse=True)
    assert len(set(priorities)) == len(priorities)


def test_classify_applies_model_tier_bands() -> None:
    """Tier entries should adjust bands as well as priority."""
    a770 = classify("Intel Arc A770")
    a380 = classify("Intel Arc A380")

    assert a770.priority == 70
    assert a770.performance_band is PerformanceBand.HIGH
    assert a380.priority == 62
    assert a380.performance_band is PerformanceBand.MEDIUM
    assert a380.power_band is PowerBand.GOOD


def test_classify_memory_bonus_prefers_name_then_reported_memory() -> None:
    """Memory hints in the name win over reported memory for memory-scaled families."""
    from_name = classify("Arc A770 16GB", memory_mb=4096)
    from_reported = classify("Intel Arc A770", memory_mb=16384)
    without_memory = classify("Intel Arc A770")

    assert from_name.priority == without_memory.priority + 8
    assert from_reported.priority == without_memory.priority + 8
    assert classify("Intel Arc A770", memory_mb="shared").priority == without_memory.priority


def test_classify_memory_bonus_does_not_apply_to_integrated_families() -> None:
    """Integrated families ignore memory hints."""
    assert classify("Intel Iris Xe Graphics 8GB").priority == classify(
        "Intel Iris Xe Graphics"
    ).priority


@pytest.mark.parametrize("name", ["", "   ", "Matrox G200", "Generic VGA adapter"])
def test_classify_unknown_names_get_conservative_default(name: str) -> None:
    """Unrecognized names should never be ranked above known integrated families."""
    classification = classify(name)

    assert classification == UNKNOWN_CLASSIFICATION
    assert classification.category is DeviceCategory.INTEGRATED
    assert classification.priority == 1
    assert classification.performance_band is PerformanceBand.LOW


@pytest.mark.parametrize("value", [None, 42, ["Arc A770"], {"name": "Arc"}])
def test_classify_tolerates_non_string_input(value: object) -> None:
    """Non-string names should classify as unknown instead of raising."""
    assert classify(value) == UNKNOWN_CLASSIFICATION


def test_classify_is_idempotent_and_case_insensitive() -> None:
    """Same input should always yield the same classification regardless of casing."""
    first = classify("NVIDIA GeForce RTX 3060")

    assert classify("NVIDIA GeForce RTX 3060") == first
    assert classify("nvidia geforce rtx 3060") == first
    assert classify("NVIDIA GEFORCE RTX 3060") == first


def test_classification_rules_are_data_with_unique_families() -> None:
    """Each rule row should describe one family."""
    families = [rule.family for rule in CLASSIFICATION_RULES]

    assert len(families) == len(set(families))
    assert all(rule.base_priority >= 1 for rule in CLASSIFICATION_RULES)


def test_classify_device_copies_bands_onto_device() -> None:
    """classify_device should derive category, priority and bands from the name."""
    device = Device(
        id="intel_gpu_1",
        display_name="Intel(R) Arc(TM) A770 Graphics",
        vendor=Vendor.INTEL,
        memory_mb=16384,
    )

    classified = classify_device(device)

    assert classified is not device
    assert classified.category is DeviceCategory.DISCRETE
    assert classified.priority == 78
    assert classified.performance_band is PerformanceBand.HIGH
    assert device.category is DeviceCategory.INTEGRATED


def test_classify_device_keeps_enumerator_values_for_unknown_names() -> None:
    """Unknown names should keep enumerator-provided placement and bands."""
    device = Device(
        id="apple_gpu",
        display_name="Apple M-series GPU",
        vendor=Vendor.APPLE,
        priority=30,
        power_band=PowerBand.EXCELLENT,
    )

    classified = classify_device(device)

    assert classified.priority == 30
    assert classified.power_band is PowerBand.EXCELLENT


def test_infer_vendor_and_elevated_integrated() -> None:
    """Vendor inference and elevated-integrated detection follow the rule table."""
    core_ultra = classify("Intel(R) Core(TM) Ultra 9 185H with Intel(R) Arc(TM) Graphics")

    assert infer_vendor("NVIDIA RTX A4000") is Vendor.NVIDIA
    assert infer_vendor("Unknown adapter") is None
    assert is_elevated_integrated(core_ultra) is True
    assert is_elevated_integrated(classify("Intel(R) UHD Graphics 630")) is False
    assert is_elevated_integrated(classify("Intel Arc A770")) is False
