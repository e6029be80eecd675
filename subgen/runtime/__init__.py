"""Run supervision helpers: error taxonomy, phase timing and recovery."""

from .failures import (
    CancellationRequested,
    EngineFault,
    InvalidUserSelection,
    RecoveryFailed,
    SelectionExhausted,
    describe_failure,
)

__all__ = [
    "CancellationRequested",
    "EngineFault",
    "InvalidUserSelection",
    "RecoveryFailed",
    "SelectionExhausted",
    "describe_failure",
]
