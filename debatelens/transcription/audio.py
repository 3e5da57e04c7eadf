"""
Audio normalisation: validation, conversion to mono 16 kHz MP3, duration
probing and fixed-length segmentation of long recordings.

Every file this module creates lives in the temp directory under a unique
name and is handed back to the caller as an owned temp file to delete.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from pathlib import Path
from typing import Iterable, Optional

from debatelens.errors import AcquisitionError, ProcessError, TranscriptionError
from debatelens.transcription.process import ProcessRunner, run_process

log = logging.getLogger(__name__)

ACCEPTED_EXTENSIONS = frozenset(
    {".mp3", ".mp4", ".wav", ".flac", ".m4a", ".ogg", ".webm", ".avi", ".mov"}
)
AUDIO_EXTENSIONS = frozenset({".mp3", ".wav", ".flac", ".m4a", ".ogg"})

SAMPLE_RATE = 16_000
BITRATE = "128k"


class AudioNormalizer:
    def __init__(
        self,
        temp_dir: Path,
        *,
        ffmpeg: str = "ffmpeg",
        ffprobe: str = "ffprobe",
        max_bytes: int = 100 * 1024 * 1024,
        chunk_seconds: int = 600,
        timeout: float = 600.0,
        runner: ProcessRunner = run_process,
    ):
        self.temp_dir = Path(temp_dir)
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.max_bytes = max_bytes
        self.chunk_seconds = chunk_seconds
        self.timeout = timeout
        self._run = runner

    def temp_path(self, suffix: str) -> Path:
        """Unique path in the temp directory (created on demand)."""
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        return self.temp_dir / f"{uuid.uuid4().hex}{suffix}"

    # -----------------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------------

    def validate(self, path: Path, *, enforce_size_limit: bool = True) -> None:
        """Raise ``TranscriptionError`` if ``path`` is not usable media."""
        path = Path(path)
        if not path.is_file():
            raise TranscriptionError(f"File not found: {path}")
        size = path.stat().st_size
        if size == 0:
            raise TranscriptionError(f"File is empty: {path.name}")
        if enforce_size_limit and size > self.max_bytes:
            raise TranscriptionError(
                f"File too large: {size / 1024 / 1024:.1f}MB "
                f"(max {self.max_bytes / 1024 / 1024:.0f}MB)"
            )
        if path.suffix.lower() not in ACCEPTED_EXTENSIONS:
            raise TranscriptionError(
                f"Unsupported format {path.suffix or '(none)'}; "
                f"accepted: {', '.join(sorted(ACCEPTED_EXTENSIONS))}"
            )

    # -----------------------------------------------------------------------
    # Conversion
    # -----------------------------------------------------------------------

    async def to_audio(self, path: Path) -> tuple[Path, bool]:
        """Return ``(audio_path, created)``.

        Audio containers pass through untouched; anything else is converted
        to a mono 16 kHz MP3 in the temp directory.
        """
        path = Path(path)
        if path.suffix.lower() in AUDIO_EXTENSIONS:
            return path, False

        output = self.temp_path(".mp3")
        log.info("Converting %s to mono %d Hz MP3", path.name, SAMPLE_RATE)
        try:
            result = await self._run(
                [
                    self.ffmpeg, "-y", "-i", str(path),
                    "-vn", "-acodec", "libmp3lame", "-b:a", BITRATE,
                    "-ac", "1", "-ar", str(SAMPLE_RATE),
                    str(output),
                ],
                timeout=self.timeout,
            )
        except ProcessError as e:
            remove_temp_files([output])
            raise AcquisitionError(f"Audio conversion failed: {e}") from e
        except asyncio.CancelledError:
            remove_temp_files([output])
            raise
        if not result.ok:
            remove_temp_files([output])
            raise AcquisitionError(
                f"Audio conversion failed (ffmpeg exit {result.returncode}): {result.diagnostics()}"
            )
        return output, True

    # -----------------------------------------------------------------------
    # Duration & segmentation
    # -----------------------------------------------------------------------

    async def probe_duration(self, path: Path) -> Optional[float]:
        """Duration in seconds via ffprobe, or None if it cannot be read."""
        try:
            result = await self._run(
                [
                    self.ffprobe, "-v", "error",
                    "-show_entries", "format=duration",
                    "-of", "default=noprint_wrappers=1:nokey=1",
                    str(path),
                ],
                timeout=60,
            )
        except ProcessError as e:
            log.warning("Could not probe duration of %s: %s", Path(path).name, e)
            return None
        if not result.ok:
            return None
        try:
            duration = float(result.stdout.strip().splitlines()[0])
        except (IndexError, ValueError):
            return None
        return duration if math.isfinite(duration) and duration > 0 else None

    def needs_segmentation(self, duration: Optional[float]) -> bool:
        return duration is not None and duration > self.chunk_seconds

    async def segment(self, path: Path, duration: float) -> list[Path]:
        """Cut ``path`` into sequential chunks of at most ``chunk_seconds``.

        On failure every chunk created so far is removed before raising.
        """
        count = math.ceil(duration / self.chunk_seconds)
        log.info("Splitting %.0fs of audio into %d segment(s)", duration, count)

        segments: list[Path] = []
        try:
            for i in range(count):
                start = i * self.chunk_seconds
                output = self.temp_path(f"_segment_{i}.mp3")
                segments.append(output)
                result = await self._run(
                    [
                        self.ffmpeg, "-y",
                        "-ss", str(start), "-t", str(self.chunk_seconds),
                        "-i", str(path),
                        "-vn", "-acodec", "libmp3lame", "-b:a", BITRATE,
                        "-ac", "1", "-ar", str(SAMPLE_RATE),
                        str(output),
                    ],
                    timeout=self.timeout,
                )
                if not result.ok:
                    raise AcquisitionError(
                        f"Segmentation failed at segment {i + 1}/{count} "
                        f"(ffmpeg exit {result.returncode}): {result.diagnostics()}"
                    )
        except ProcessError as e:
            remove_temp_files(segments)
            raise AcquisitionError(f"Segmentation failed: {e}") from e
        except (AcquisitionError, asyncio.CancelledError):
            remove_temp_files(segments)
            raise
        return segments


def remove_temp_files(paths: Iterable[Path]) -> None:
    """Delete temp files, logging (not raising) on failure."""
    for path in paths:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            log.warning("Could not delete temp file %s: %s", path, e)
