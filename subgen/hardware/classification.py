"""Rule-table classification of accelerator names into ranking bands."""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass
from functools import lru_cache

from subgen.domain import (
    Device,
    DeviceCategory,
    DeviceMemory,
    PerformanceBand,
    PowerBand,
    Vendor,
)

MINIMUM_PRIORITY = 1


@dataclass(frozen=True, slots=True)
class TierBonus:
    """Priority bonus for one model tier inside a family."""

    token: str
    bonus: int
    performance_band: PerformanceBand | None = None
    power_band: PowerBand | None = None


@dataclass(frozen=True, slots=True)
class ClassificationRule:
    """One (pattern -> classification) row, evaluated top to bottom."""

    family: str
    pattern: re.Pattern[str]
    category: DeviceCategory
    base_priority: int
    performance_band: PerformanceBand
    power_band: PowerBand
    vendor: Vendor | None = None
    tiers: tuple[TierBonus, ...] = ()
    memory_scaled: bool = False


@dataclass(frozen=True, slots=True)
class Classification:
    """Structured classification derived from a device name."""

    family: str
    category: DeviceCategory
    priority: int
    performance_band: PerformanceBand
    power_band: PowerBand
    vendor: Vendor | None = None
    matched: bool = True


def _rule_pattern(expression: str) -> re.Pattern[str]:
    return re.compile(expression, re.IGNORECASE)


# (name token, bonus) pairs; the first matching token wins.
_NAME_MEMORY_TIERS: tuple[tuple[re.Pattern[str], int], ...] = (
    (_rule_pattern(r"\b24\s*gb\b"), 10),
    (_rule_pattern(r"\b16\s*gb\b"), 8),
    (_rule_pattern(r"\b12\s*gb\b"), 6),
    (_rule_pattern(r"\b8\s*gb\b"), 4),
    (_rule_pattern(r"\b4\s*gb\b"), 2),
)

# (minimum dedicated MB, bonus) pairs used when the name carries no size.
_REPORTED_MEMORY_TIERS: tuple[tuple[int, int], ...] = (
    (24_000, 10),
    (16_000, 8),
    (12_000, 6),
    (8_000, 4),
    (4_000, 2),
)

_TRADEMARK_MARKS = re.compile(r"\((?:r|tm|c)\)")

_HIGH = PerformanceBand.HIGH
_MEDIUM = PerformanceBand.MEDIUM
_LOW = PerformanceBand.LOW

CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        family="intel_arc_discrete",
        pattern=_rule_pattern(r"\barc\s*(?:pro\s*)?[ab]\d{2,3}m?\b"),
        category=DeviceCategory.DISCRETE,
        base_priority=50,
        performance_band=_HIGH,
        power_band=PowerBand.MODERATE,
        vendor=Vendor.INTEL,
        tiers=(
            TierBonus("a770", 20),
            TierBonus("b580", 19),
            TierBonus("a750", 18),
            TierBonus("b570", 17),
            TierBonus("a580", 15, _MEDIUM),
            TierBonus("a380", 12, _MEDIUM, PowerBand.GOOD),
            TierBonus("a310", 10, _MEDIUM, PowerBand.GOOD),
        ),
        memory_scaled=True,
    ),
    ClassificationRule(
        family="nvidia_discrete",
        pattern=_rule_pattern(
            r"\b(?:geforce|rtx|gtx|quadro|tesla)\b|\bnvidia\s+[aghl]\d{2,3}\b"
        ),
        category=DeviceCategory.DISCRETE,
        base_priority=50,
        performance_band=_HIGH,
        power_band=PowerBand.MODERATE,
        vendor=Vendor.NVIDIA,
        tiers=(
            TierBonus("h100", 32),
            TierBonus("a100", 31),
            TierBonus("4090", 30),
            TierBonus("4080", 28),
            TierBonus("3090", 27),
            TierBonus("4070", 25),
            TierBonus("3080", 24),
            TierBonus("3070", 22),
            TierBonus("4060", 20),
            TierBonus("3060", 18),
            TierBonus("2080", 16),
            TierBonus("2070", 14),
            TierBonus("2060", 12, _MEDIUM),
            TierBonus("1660", 10, _MEDIUM, PowerBand.GOOD),
            TierBonus("1080", 10, _MEDIUM),
            TierBonus("1070", 8, _MEDIUM),
            TierBonus("1060", 6, _MEDIUM, PowerBand.GOOD),
            TierBonus("1050", 4, _MEDIUM, PowerBand.GOOD),
        ),
        memory_scaled=True,
    ),
    ClassificationRule(
        family="amd_radeon_discrete",
        pattern=_rule_pattern(r"\bradeon\s*(?:rx|pro)\s*\w*\d{3,4}"),
        category=DeviceCategory.DISCRETE,
        base_priority=45,
        performance_band=_HIGH,
        power_band=PowerBand.MODERATE,
        vendor=Vendor.AMD,
        tiers=(
            TierBonus("7900", 20),
            TierBonus("7800", 17),
            TierBonus("6900", 16),
            TierBonus("6800", 14),
            TierBonus("7600", 12, _MEDIUM),
            TierBonus("6600", 10, _MEDIUM, PowerBand.GOOD),
        ),
        memory_scaled=True,
    ),
    ClassificationRule(
        family="intel_core_ultra",
        pattern=_rule_pattern(
            r"intel\s*core\s*ultra.*arc.*graphics"
            r"|core\s*ultra.*intel\s*arc"
            r"|intel\s*core\s*ultra.*integrated.*graphic"
            r"|^\s*intel\s*arc\s*graphics\s*$"
        ),
        category=DeviceCategory.INTEGRATED,
        base_priority=30,
        performance_band=_MEDIUM,
        power_band=PowerBand.EXCELLENT,
        vendor=Vendor.INTEL,
        tiers=(TierBonus("ultra 9", 4), TierBonus("ultra 7", 2)),
    ),
    ClassificationRule(
        family="apple_silicon",
        pattern=_rule_pattern(r"\bapple\s*m\d\b|\bm\d\s*(?:pro|max|ultra)\b"),
        category=DeviceCategory.INTEGRATED,
        base_priority=30,
        performance_band=_MEDIUM,
        power_band=PowerBand.EXCELLENT,
        vendor=Vendor.APPLE,
        tiers=(
            TierBonus("ultra", 8, _HIGH),
            TierBonus("max", 6, _HIGH),
            TierBonus("pro", 4),
        ),
    ),
    ClassificationRule(
        family="intel_iris_xe_max",
        pattern=_rule_pattern(r"\biris\s*xe\s*max\b"),
        category=DeviceCategory.INTEGRATED,
        base_priority=25,
        performance_band=_MEDIUM,
        power_band=PowerBand.EXCELLENT,
        vendor=Vendor.INTEL,
    ),
    ClassificationRule(
        family="intel_iris_xe",
        pattern=_rule_pattern(r"\biris\s*xe\b"),
        category=DeviceCategory.INTEGRATED,
        base_priority=22,
        performance_band=_MEDIUM,
        power_band=PowerBand.EXCELLENT,
        vendor=Vendor.INTEL,
    ),
    ClassificationRule(
        family="intel_xe",
        pattern=_rule_pattern(r"\bxe\b"),
        category=DeviceCategory.INTEGRATED,
        base_priority=20,
        performance_band=_MEDIUM,
        power_band=PowerBand.EXCELLENT,
        vendor=Vendor.INTEL,
    ),
    ClassificationRule(
        family="intel_iris",
        pattern=_rule_pattern(r"\biris\b"),
        category=DeviceCategory.INTEGRATED,
        base_priority=18,
        performance_band=_LOW,
        power_band=PowerBand.EXCELLENT,
        vendor=Vendor.INTEL,
        tiers=(TierBonus("plus", 2), TierBonus("pro", 1)),
    ),
    ClassificationRule(
        family="intel_uhd",
        pattern=_rule_pattern(r"\buhd\b"),
        category=DeviceCategory.INTEGRATED,
        base_priority=15,
        performance_band=_LOW,
        power_band=PowerBand.GOOD,
        vendor=Vendor.INTEL,
        tiers=(TierBonus("770", 3), TierBonus("750", 2), TierBonus("730", 1)),
    ),
    ClassificationRule(
        family="amd_radeon_integrated",
        pattern=_rule_pattern(r"\bradeon\b.*\b(?:graphics|vega)\b"),
        category=DeviceCategory.INTEGRATED,
        base_priority=12,
        performance_band=_LOW,
        power_band=PowerBand.GOOD,
        vendor=Vendor.AMD,
    ),
    ClassificationRule(
        family="intel_hd",
        pattern=_rule_pattern(r"\bhd\s*graphics\b"),
        category=DeviceCategory.INTEGRATED,
        base_priority=10,
        performance_band=_LOW,
        power_band=PowerBand.GOOD,
        vendor=Vendor.INTEL,
    ),
)

UNKNOWN_CLASSIFICATION = Classification(
    family="unknown",
    category=DeviceCategory.INTEGRATED,
    priority=MINIMUM_PRIORITY,
    performance_band=PerformanceBand.LOW,
    power_band=PowerBand.GOOD,
    matched=False,
)


def _memory_bonus(normalized_name: str, memory_mb: DeviceMemory | None) -> int:
    for pattern, bonus in _NAME_MEMORY_TIERS:
        if pattern.search(normalized_name):
            return bonus
    if isinstance(memory_mb, int) and not isinstance(memory_mb, bool):
        for minimum_mb, bonus in _REPORTED_MEMORY_TIERS:
            if memory_mb >= minimum_mb:
                return bonus
    return 0


def _apply_rule(
    rule: ClassificationRule,
    normalized_name: str,
    memory_mb: DeviceMemory | None,
) -> Classification:
    priority = rule.base_priority
    performance_band = rule.performance_band
    power_band = rule.power_band
    for tier in rule.tiers:
        if tier.token in normalized_name:
            priority += tier.bonus
            performance_band = tier.performance_band or performance_band
            power_band = tier.power_band or power_band
            break
    if rule.memory_scaled:
        priority += _memory_bonus(normalized_name, memory_mb)
    return Classification(
        family=rule.family,
        category=rule.category,
        priority=max(MINIMUM_PRIORITY, priority),
        performance_band=performance_band,
        power_band=power_band,
        vendor=rule.vendor,
    )


def classify(name: object, memory_mb: DeviceMemory | None = None) -> Classification:
    """Classifies a free-text device name; unknown names get the conservative default."""
    if not isinstance(name, str):
        return UNKNOWN_CLASSIFICATION
    if not isinstance(memory_mb, (int, str)):
        memory_mb = None
    normalized_name = " ".join(_TRADEMARK_MARKS.sub(" ", name.lower()).split())
    return _classify_normalized(normalized_name, memory_mb)


@lru_cache(maxsize=512)
def _classify_normalized(
    normalized_name: str, memory_mb: DeviceMemory | None
) -> Classification:
    if not normalized_name:
        return UNKNOWN_CLASSIFICATION
    for rule in CLASSIFICATION_RULES:
        if rule.pattern.search(normalized_name):
            return _apply_rule(rule, normalized_name, memory_mb)
    return UNKNOWN_CLASSIFICATION


def classify_device(device: Device) -> Device:
    """Returns a copy of ``device`` with category and bands derived from its name."""
    classification = classify(device.display_name, device.memory_mb)
    if not classification.matched:
        return dataclasses.replace(
            device,
            priority=max(MINIMUM_PRIORITY, device.priority),
        )
    return dataclasses.replace(
        device,
        category=classification.category,
        priority=classification.priority,
        performance_band=classification.performance_band,
        power_band=classification.power_band,
    )


def infer_vendor(name: str) -> Vendor | None:
    """Returns the vendor implied by a known device family name."""
    return classify(name).vendor


def is_elevated_integrated(classification: Classification) -> bool:
    """Returns whether an integrated device belongs to a next-generation family."""
    return (
        classification.category is DeviceCategory.INTEGRATED
        and classification.power_band is PowerBand.EXCELLENT
        and classification.priority >= 30
    )
