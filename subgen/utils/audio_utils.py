import logging
from pathlib import Path

import ffmpeg
import soundfile as sf

from subgen.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

DEFAULT_AUDIO_DURATION_MS = 30_000


def _probe_with_ffmpeg(file_path: str) -> int:
    metadata = ffmpeg.probe(file_path)
    duration = float(metadata["format"]["duration"])
    return int(round(duration * 1000.0))


def _probe_with_soundfile(file_path: str) -> int:
    info = sf.info(file_path)
    return int(round(float(info.duration) * 1000.0))


def probe_duration_ms(
    file_path: str | Path,
    default_ms: int = DEFAULT_AUDIO_DURATION_MS,
) -> int:
    """
    Probe the duration of an audio file.

    Tries ffprobe first and falls back to soundfile. Never raises: when both
    probes fail the run proceeds with ``default_ms``.

    Arguments:
        file_path (str | Path): Path to the audio file.
        default_ms (int): Duration to assume when probing fails.

    Returns:
        int: Duration in milliseconds.
    """
    path = str(file_path)
    logger.debug("Probing audio duration: %s", path)
    try:
        duration_ms = _probe_with_ffmpeg(path)
        if duration_ms > 0:
            return duration_ms
    except (ffmpeg.Error, FileNotFoundError, KeyError, ValueError) as err:
        logger.debug("ffprobe could not read %s: %s", path, err)

    try:
        duration_ms = _probe_with_soundfile(path)
        if duration_ms > 0:
            return duration_ms
    except (RuntimeError, OSError, ValueError) as err:
        logger.debug("soundfile could not read %s: %s", path, err)

    logger.warning(
        "Could not determine duration of %s; assuming %s ms.", path, default_ms
    )
    return default_ms
