"""Tests for run failure classification and user-facing messages."""

import pytest

from subgen.runtime.failures import (
    CancellationRequested,
    EngineFault,
    FailureKind,
    InvalidUserSelection,
    classify_failure,
    describe_failure,
)


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (RuntimeError("CUDA error: out of memory"), FailureKind.MEMORY),
        (MemoryError(), FailureKind.MEMORY),
        (RuntimeError("No CUDA GPUs are available"), FailureKind.DRIVER),
        (RuntimeError("OpenVINO device GPU.1 lost"), FailureKind.DRIVER),
        (RuntimeError("Failed to load model large-v3"), FailureKind.MODEL),
        (ImportError("No module named 'openvino'"), FailureKind.ADDON),
        (RuntimeError("ffmpeg exited with status 1"), FailureKind.AUDIO),
        (InvalidUserSelection("cuda_9"), FailureKind.SELECTION),
        (RuntimeError("something odd happened"), FailureKind.GENERIC),
        (RuntimeError("No room left in the decode buffer"), FailureKind.GENERIC),
        (RuntimeError("Invalid zoom level for spectrogram"), FailureKind.GENERIC),
        (RuntimeError("CUDA OOM while allocating 2.00 GiB"), FailureKind.MEMORY),
    ],
)
def test_classify_failure_by_marker(error: BaseException, kind: FailureKind) -> None:
    """Known fault messages should map to their recovery category."""
    assert classify_failure(error).kind is kind


def test_engine_fault_is_classified_through_its_cause() -> None:
    """Wrapped engine faults should classify by the original exception message."""
    try:
        try:
            raise RuntimeError("CUDA error: out of memory")
        except RuntimeError as err:
            raise EngineFault("Inference engine failed") from err
    except EngineFault as fault:
        classification = classify_failure(fault)

    assert classification.kind is FailureKind.MEMORY
    assert classification.recoverable is True


def test_engine_fault_backend_name_does_not_decide_kind() -> None:
    """A generic fault on an OpenVINO backend should not be reported as a driver fault."""
    try:
        try:
            raise RuntimeError("segment index out of range")
        except RuntimeError as err:
            raise EngineFault(
                "Inference engine failed on Intel OpenVINO (Intel Arc A770): "
                f"{err}"
            ) from err
    except EngineFault as fault:
        classification = classify_failure(fault)

    assert classification.kind is FailureKind.GENERIC


def test_audio_failures_are_not_recoverable() -> None:
    """Unreadable audio cannot be fixed by switching backend or model."""
    assert classify_failure(RuntimeError("Invalid data found when processing input")).recoverable is False


def test_describe_failure_hides_exception_internals() -> None:
    """User messages should not echo raw exception text."""
    message = describe_failure(RuntimeError("segfault at 0xdeadbeef"))

    assert "0xdeadbeef" not in message
    assert message


def test_cancellation_is_not_a_runtime_error() -> None:
    """Cancellation must escape `except RuntimeError` fault handling."""
    assert not issubclass(CancellationRequested, RuntimeError)
    assert InvalidUserSelection("cuda_9").identifier == "cuda_9"
