"""
Subgen command-line interface

Entry point for accelerated subtitle generation. It lists the compute devices
the backend selector can see, runs supervised transcriptions and prints the
performance history collected by previous runs.

Usage:
    subgen devices [--model MODEL]
    subgen transcribe AUDIO [--output PATH] [--model MODEL] [--language LANG]
                            [--device DEVICE_ID] [--cpu]
    subgen report
"""

import argparse
import logging
import sys
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from colored import attr, fg
from dotenv import load_dotenv
from halo import Halo

from subgen.config import AppConfig, reload_settings
from subgen.domain import RunState
from subgen.hardware.compatibility import validate
from subgen.hardware.enumeration import DeviceAvailability, DeviceInventory
from subgen.monitoring.performance import PerformanceMonitor, PerformanceReport
from subgen.runtime.contracts import (
    CancellationToken,
    RunOutcome,
    StatusEvent,
    TranscriptionJob,
)
from subgen.runtime.supervisor import TranscriptionSupervisor
from subgen.utils import configure_logging, get_logger
from subgen.utils.subtitles import FileArtifactWriter, failed_artifact

logger: logging.Logger = get_logger("subgen")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130

_EXIT_CODES: dict[RunState, int] = {
    RunState.COMPLETED: EXIT_OK,
    RunState.CANCELLED: EXIT_CANCELLED,
    RunState.ERRORED: EXIT_ERROR,
}


def color_txt(string: str, fg_color: str) -> str:
    """Colorizes a string for terminal output."""
    return f"{fg(fg_color)}{string}{attr('reset')}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="subgen",
        description="Accelerated subtitle generation",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Override LOG_LEVEL for this invocation (DEBUG, INFO, WARNING, ERROR).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    devices = commands.add_parser("devices", help="List detected compute devices")
    devices.add_argument(
        "--model",
        type=str,
        default=None,
        help="Model used for the compatibility column",
    )

    transcribe = commands.add_parser("transcribe", help="Transcribe one audio file")
    transcribe.add_argument("audio", type=Path, help="Path to the audio file")
    transcribe.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Subtitle output path (.srt or .vtt); defaults to AUDIO with .srt",
    )
    transcribe.add_argument("--model", type=str, default=None, help="Whisper model name")
    transcribe.add_argument("--language", type=str, default=None, help="Audio language")
    transcribe.add_argument(
        "--device",
        type=str,
        default=None,
        help="Explicit device id from `subgen devices`, or `cpu`",
    )
    transcribe.add_argument(
        "--cpu",
        action="store_true",
        help="Skip GPU selection and run on CPU",
    )

    commands.add_parser("report", help="Print the stored performance report")
    return parser


def _print_devices(availability: DeviceAvailability, model_id: str) -> None:
    if not availability.devices:
        print(color_txt("No accelerator devices detected; CPU processing only.", "yellow"))
    for device in availability.devices:
        verdict = validate(device, model_id)
        status = (
            color_txt(f"compatible (score {verdict.score})", "green")
            if verdict.supported
            else color_txt("incompatible", "red")
        )
        memory = (
            f"{device.memory_mb} MB" if device.has_dedicated_memory else "shared memory"
        )
        print(
            f"{color_txt(device.id, 'cyan')}  {device.display_name}  "
            f"[{device.vendor}, {device.category}, priority {device.priority}, {memory}]  "
            f"{model_id}: {status}"
        )
        for message in verdict.errors + verdict.warnings + verdict.recommendations:
            print(f"    - {message}")
    for runtime in sorted(availability.missing_runtimes):
        print(color_txt(f"Runtime unavailable: {runtime}", "yellow"))
    print(f"{color_txt('cpu', 'cyan')}  CPU Processing  {model_id}: always available")


def _run_devices(args: argparse.Namespace, settings: AppConfig) -> int:
    inventory = DeviceInventory(
        timeout_seconds=settings.selection.enumeration_timeout_seconds
    )
    with Halo(text="Detecting devices...", spinner="dots", text_color="green"):
        availability = inventory.refresh()
    _print_devices(availability, args.model or settings.models.default_model)
    return EXIT_OK


def _job_from_args(args: argparse.Namespace, settings: AppConfig) -> TranscriptionJob:
    audio_path: Path = args.audio
    return TranscriptionJob(
        audio_path=audio_path,
        output_path=args.output or audio_path.with_suffix(".srt"),
        model_id=args.model or settings.models.default_model,
        language=args.language or settings.transcription.language,
        device_id=args.device,
        force_cpu=args.cpu,
    )


def _report_outcome(spinner: Halo, outcome: RunOutcome) -> None:
    backend = outcome.backend.display_name if outcome.backend else "no backend"
    if outcome.state is RunState.COMPLETED:
        speedup = outcome.metrics.speedup_factor if outcome.metrics else 1.0
        spinner.succeed(
            f"Subtitles written to {outcome.output_path} using {backend} "
            f"({speedup:.1f}x speedup)"
        )
    elif outcome.state is RunState.CANCELLED:
        spinner.warn(f"Cancelled; placeholder written to {outcome.output_path}")
    elif outcome.recovered:
        spinner.warn(f"{outcome.error_message} Recovered output: {outcome.output_path}")
    else:
        spinner.fail(f"{outcome.error_message} Output: {outcome.output_path}")


def _run_transcribe(args: argparse.Namespace, settings: AppConfig) -> int:
    job = _job_from_args(args, settings)
    if not args.audio.exists():
        logger.error("Audio file not found: %s", args.audio)
        try:
            FileArtifactWriter().write(job.output_path, failed_artifact(job.output_path))
        except OSError:
            logger.error("Failed to write %s.", job.output_path, exc_info=True)
        return EXIT_ERROR
    supervisor = TranscriptionSupervisor.from_settings(settings)
    token = CancellationToken()
    spinner = Halo(text="Detecting devices...", spinner="dots", text_color="green")
    spinner.start()

    def on_progress(job_id: str, percent: float) -> None:
        spinner.text = f"[{job_id}] Transcribing... {percent:.0f}%"

    def on_status(event: StatusEvent) -> None:
        label = event.backend_name or ""
        spinner.text = f"[{event.job_id}] {event.state.capitalize()} {label}".rstrip()

    try:
        supervisor.inventory.refresh()
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="subgen-run") as executor:
            future = executor.submit(
                supervisor.run,
                job,
                token=token,
                on_progress=on_progress,
                on_status=on_status,
            )
            try:
                outcome = future.result()
            except KeyboardInterrupt:
                spinner.text = "Cancelling after the current step..."
                token.cancel()
                outcome = future.result()
    finally:
        spinner.stop()
    _report_outcome(spinner, outcome)
    return _EXIT_CODES[outcome.state]


def _print_report(report: PerformanceReport) -> None:
    summary = report.summary
    if summary.total_sessions == 0:
        print(color_txt("No performance history recorded yet.", "yellow"))
        return
    print(color_txt("Performance summary", "green"))
    print(f"  Sessions:            {summary.total_sessions}")
    print(f"  Average speedup:     {summary.average_speedup:.2f}x")
    print(f"  Processing time:     {summary.total_processing_time_ms / 1000.0:.1f}s")
    print(f"  Audio time:          {summary.total_audio_duration_ms / 1000.0:.1f}s")
    print(f"  Most used backend:   {summary.most_used_backend}")
    print(f"  Average peak memory: {summary.average_peak_memory_mb:.0f} MB")
    print(color_txt("Per model", "green"))
    for average in report.averages:
        print(
            f"  {average.backend_type:<9} {average.model_id:<16} "
            f"{average.session_count:>4} runs  {average.average_speedup:.2f}x"
        )
    print(color_txt("Trends", "green"))
    for trend in report.trends:
        print(f"  {trend.backend_type:<9} {trend.direction} ({trend.average_speedup:.2f}x)")
    if report.recommendations:
        print(color_txt("Recommendations", "green"))
        for recommendation in report.recommendations:
            print(f"  - {recommendation}")


def _run_report(args: argparse.Namespace, settings: AppConfig) -> int:
    del args
    monitoring = settings.monitoring
    if monitoring.history_file is None:
        logger.error("SUBGEN_HISTORY_FILE is not set; no performance history to report.")
        return EXIT_ERROR
    monitor = PerformanceMonitor(
        history_capacity=monitoring.history_capacity,
        cpu_baseline_realtime_ratio=monitoring.cpu_baseline_realtime_ratio,
        regression_window=monitoring.regression_window,
        history_file=monitoring.history_file,
    )
    _print_report(monitor.get_performance_report())
    return EXIT_OK


_COMMANDS = {
    "devices": _run_devices,
    "transcribe": _run_transcribe,
    "report": _run_report,
}


def main(argv: Sequence[str] | None = None) -> None:
    """
    Main function to handle the command line interface logic.
    """
    load_dotenv()
    args: argparse.Namespace = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    settings = reload_settings()
    try:
        exit_code = _COMMANDS[args.command](args, settings)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        exit_code = EXIT_CANCELLED
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
