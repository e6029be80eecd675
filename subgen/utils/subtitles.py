import logging
import os
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from subgen.domain import TranscriptSegment
from subgen.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

CANCELLED_TEXT = "Task was cancelled by user"
CANCELLED_END_MS = 1000
FAILED_TEXT = "Processing failed - please try with a different model or CPU processing"
FAILED_END_MS = 5000


class SubtitleFormatter(ABC):
    """Abstract base class for subtitle formatters."""

    header: str = ""

    @abstractmethod
    def format_time(self, milliseconds: int) -> str:
        """Convert a time in milliseconds to a formatted time string."""

    @abstractmethod
    def generate_entry(self, index: int, segment: TranscriptSegment) -> str:
        """Generate a single subtitle entry."""

    def render(self, segments: Iterable[TranscriptSegment]) -> str:
        """Render segments into the full subtitle document."""
        entries = [
            self.generate_entry(index, segment)
            for index, segment in enumerate(segments, 1)
        ]
        return self.header + "\n".join(entries)


def _split_milliseconds(milliseconds: int) -> tuple[int, int, int, int]:
    total = max(0, int(milliseconds))
    hours, remainder = divmod(total, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    seconds, millis = divmod(remainder, 1000)
    return hours, minutes, seconds, millis


class SRTFormatter(SubtitleFormatter):
    """Formatter for SRT subtitles."""

    def format_time(self, milliseconds: int) -> str:
        hours, minutes, secs, millis = _split_milliseconds(milliseconds)
        return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"

    def generate_entry(self, index: int, segment: TranscriptSegment) -> str:
        start_time = self.format_time(segment.start_ms)
        end_time = self.format_time(segment.end_ms)
        logger.debug("SRT Entry: Start %s, End %s, Text %s", start_time, end_time, segment.text)
        return f"{index}\n{start_time} --> {end_time}\n{segment.text}\n"


class VTTFormatter(SubtitleFormatter):
    """Formatter for WebVTT subtitles."""

    header = "WEBVTT\n\n"

    def format_time(self, milliseconds: int) -> str:
        hours, minutes, secs, millis = _split_milliseconds(milliseconds)
        return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"

    def generate_entry(self, index: int, segment: TranscriptSegment) -> str:
        start_time = self.format_time(segment.start_ms)
        end_time = self.format_time(segment.end_ms)
        logger.debug("VTT Entry: Start %s, End %s, Text %s", start_time, end_time, segment.text)
        return f"{start_time} --> {end_time}\n{segment.text}\n"


FORMATTERS: dict[str, SubtitleFormatter] = {
    "srt": SRTFormatter(),
    "vtt": VTTFormatter(),
}


def formatter_for(output_path: str | Path) -> SubtitleFormatter:
    """Returns the formatter matching the output suffix, SRT by default."""
    suffix = Path(output_path).suffix.lower().lstrip(".")
    return FORMATTERS.get(suffix, FORMATTERS["srt"])


def render_segments(segments: Iterable[TranscriptSegment], output_path: str | Path) -> str:
    """Render transcript segments in the format implied by the output path."""
    return formatter_for(output_path).render(segments)


def placeholder_artifact(text: str, end_ms: int, output_path: str | Path) -> str:
    """Render a one-entry placeholder subtitle document."""
    return render_segments((TranscriptSegment(0, end_ms, text),), output_path)


def cancelled_artifact(output_path: str | Path) -> str:
    return placeholder_artifact(CANCELLED_TEXT, CANCELLED_END_MS, output_path)


def failed_artifact(output_path: str | Path) -> str:
    return placeholder_artifact(FAILED_TEXT, FAILED_END_MS, output_path)


class ArtifactWriter(Protocol):
    """Destination for run outputs."""

    def write(self, path: Path, content: str) -> None:
        """Write content so that ``path`` exists with exactly these bytes."""
        ...


class FileArtifactWriter:
    """Writes artifacts atomically through a sibling temp file."""

    def write(self, path: Path, content: str) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        descriptor, temp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
        try:
            with os.fdopen(descriptor, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(temp_name, path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
        logger.info("Subtitle file written: %s", path)
