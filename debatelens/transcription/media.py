"""
Remote media acquisition.

A URL is resolved to a local mono 16 kHz MP3 by trying an ordered list of
downloaders: the yt-dlp command line first, then the yt_dlp library
in-process.  The list is resolved once when the acquirer is built.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import uuid
from pathlib import Path
from typing import Optional, Protocol, Sequence

import yt_dlp

from debatelens.errors import AcquisitionError, ProcessError
from debatelens.transcription.audio import SAMPLE_RATE, remove_temp_files
from debatelens.transcription.process import ProcessRunner, run_process

log = logging.getLogger(__name__)

AUDIO_QUALITY = "128"


class Downloader(Protocol):
    name: str

    def available(self) -> bool: ...

    async def download(self, url: str, stem: str) -> Path: ...


def _find_output(temp_dir: Path, stem: str) -> Path:
    """The downloaded file for ``stem``, preferring the .mp3."""
    mp3 = temp_dir / f"{stem}.mp3"
    if mp3.is_file():
        return mp3
    candidates = sorted(p for p in temp_dir.glob(f"{stem}.*") if p.is_file())
    if not candidates:
        raise AcquisitionError("Download finished but no audio file was produced")
    return candidates[0]


def _discard(temp_dir: Path, stem: str) -> None:
    remove_temp_files(temp_dir.glob(f"{stem}*"))


# ---------------------------------------------------------------------------
# Downloaders
# ---------------------------------------------------------------------------

class YtDlpCommandDownloader:
    """yt-dlp run as a subprocess: audio only, 128k MP3, no playlists."""

    name = "yt-dlp command"

    def __init__(
        self,
        command: Sequence[str],
        temp_dir: Path,
        *,
        timeout: float = 1800.0,
        runner: ProcessRunner = run_process,
    ):
        self.command = list(command)
        self.temp_dir = Path(temp_dir)
        self.timeout = timeout
        self._run = runner

    def available(self) -> bool:
        return bool(self.command) and shutil.which(self.command[0]) is not None

    async def download(self, url: str, stem: str) -> Path:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        args = [
            *self.command,
            "--extract-audio",
            "--audio-format", "mp3",
            "--audio-quality", f"{AUDIO_QUALITY}K",
            "--postprocessor-args", f"ExtractAudio:-ac 1 -ar {SAMPLE_RATE}",
            "--no-playlist",
            "--no-warnings",
            "--quiet",
            "--output", str(self.temp_dir / f"{stem}.%(ext)s"),
            url,
        ]
        try:
            result = await self._run(args, timeout=self.timeout)
        except ProcessError as e:
            _discard(self.temp_dir, stem)
            raise AcquisitionError(str(e)) from e
        if not result.ok:
            _discard(self.temp_dir, stem)
            raise AcquisitionError(f"exit code {result.returncode}: {result.diagnostics()}")
        return _find_output(self.temp_dir, stem)


class YtDlpLibraryDownloader:
    """yt_dlp used in-process (in a worker thread) with the same output format."""

    name = "yt_dlp library"

    def __init__(self, temp_dir: Path, *, ffmpeg_location: Optional[str] = None):
        self.temp_dir = Path(temp_dir)
        self.ffmpeg_location = ffmpeg_location

    def available(self) -> bool:
        return True

    def _options(self, stem: str) -> dict:
        opts = {
            "format": "bestaudio/best",
            "outtmpl": str(self.temp_dir / f"{stem}.%(ext)s"),
            "noplaylist": True,
            "quiet": True,
            "no_warnings": True,
            "postprocessors": [
                {
                    "key": "FFmpegExtractAudio",
                    "preferredcodec": "mp3",
                    "preferredquality": AUDIO_QUALITY,
                }
            ],
            "postprocessor_args": {"extractaudio": ["-ac", "1", "-ar", str(SAMPLE_RATE)]},
        }
        if self.ffmpeg_location:
            opts["ffmpeg_location"] = self.ffmpeg_location
        return opts

    def _download_sync(self, url: str, stem: str) -> None:
        with yt_dlp.YoutubeDL(self._options(stem)) as ydl:
            ydl.download([url])

    async def download(self, url: str, stem: str) -> Path:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        try:
            await asyncio.to_thread(self._download_sync, url, stem)
        except (yt_dlp.utils.YoutubeDLError, OSError) as e:
            _discard(self.temp_dir, stem)
            raise AcquisitionError(str(e)) from e
        return _find_output(self.temp_dir, stem)


# ---------------------------------------------------------------------------
# Acquirer
# ---------------------------------------------------------------------------

class MediaAcquirer:
    def __init__(self, downloaders: Sequence[Downloader]):
        self.downloaders = list(downloaders)

    @classmethod
    def build(
        cls,
        temp_dir: Path,
        *,
        ytdlp_command: Sequence[str],
        ffmpeg: Optional[str] = None,
        timeout: float = 1800.0,
        runner: ProcessRunner = run_process,
    ) -> "MediaAcquirer":
        """Probe each downloader once and keep the usable ones, in order."""
        candidates: list[Downloader] = [
            YtDlpCommandDownloader(ytdlp_command, temp_dir, timeout=timeout, runner=runner),
            YtDlpLibraryDownloader(temp_dir, ffmpeg_location=shutil.which(ffmpeg) if ffmpeg else None),
        ]
        usable = [d for d in candidates if d.available()]
        for d in candidates:
            if d not in usable:
                log.warning("Downloader '%s' is not available and will be skipped", d.name)
        return cls(usable)

    async def acquire(self, url: str) -> Path:
        """Download ``url`` to a temp audio file; the caller owns (and deletes) it."""
        stem = f"{uuid.uuid4().hex}_remote"
        failures: list[str] = []
        for downloader in self.downloaders:
            try:
                path = await downloader.download(url, stem)
            except AcquisitionError as e:
                log.warning("%s failed for %s: %s", downloader.name, url, e)
                failures.append(f"{downloader.name}: {e}")
                continue
            log.info("Downloaded %s via %s", url, downloader.name)
            return path

        detail = "; ".join(failures) if failures else "no downloader available"
        raise AcquisitionError(f"Could not download audio from {url} ({detail})")
