"""
Speech-to-text via the Whisper command line.

Handles the three kinds of source a job can have:
  - an uploaded media file (validated, converted to audio if needed)
  - a remote video URL (downloaded first by the MediaAcquirer)
  - any of the above longer than the chunk length (segmented, transcribed
    chunk by chunk and stitched back together in order)
"""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from typing import Optional

from debatelens.config import Settings
from debatelens.errors import ProcessError, TranscriptionError
from debatelens.models import SourceKind, Transcript
from debatelens.transcription.audio import AudioNormalizer, remove_temp_files
from debatelens.transcription.media import MediaAcquirer
from debatelens.transcription.process import ProcessRunner, run_process

log = logging.getLogger(__name__)


class TranscriptionEngine:
    def __init__(
        self,
        normalizer: AudioNormalizer,
        acquirer: MediaAcquirer,
        *,
        command: list[str],
        model: str = "base",
        timeout: float = 3600.0,
        runner: ProcessRunner = run_process,
    ):
        self.normalizer = normalizer
        self.acquirer = acquirer
        self.command = list(command)
        self.model = model
        self.timeout = timeout
        self._run = runner

    @classmethod
    def from_settings(cls, settings: Settings, runner: ProcessRunner = run_process) -> "TranscriptionEngine":
        normalizer = AudioNormalizer(
            settings.temp_dir,
            ffmpeg=settings.ffmpeg_binary,
            ffprobe=settings.ffprobe_binary,
            max_bytes=settings.max_upload_bytes,
            chunk_seconds=settings.chunk_seconds,
            timeout=settings.convert_timeout,
            runner=runner,
        )
        acquirer = MediaAcquirer.build(
            settings.temp_dir,
            ytdlp_command=settings.ytdlp_command,
            ffmpeg=settings.ffmpeg_binary,
            timeout=settings.download_timeout,
            runner=runner,
        )
        return cls(
            normalizer,
            acquirer,
            command=settings.whisper_command,
            model=settings.whisper_model,
            timeout=settings.transcribe_timeout,
            runner=runner,
        )

    # -----------------------------------------------------------------------
    # Engine invocation
    # -----------------------------------------------------------------------

    async def transcribe_audio(self, audio: Path, language: str) -> str:
        """One Whisper run over one audio file; returns the trimmed text."""
        output_dir = self.normalizer.temp_path("_whisper")
        output_dir.mkdir(parents=True)
        args = [
            *self.command,
            str(Path(audio).resolve()),
            "--model", self.model,
            "--language", language,
            "--task", "transcribe",
            "--output_dir", str(output_dir),
            "--output_format", "txt",
            "--verbose", "False",
        ]
        try:
            try:
                result = await self._run(args, timeout=self.timeout)
            except ProcessError as e:
                raise TranscriptionError(f"Whisper could not run: {e}") from e
            if not result.ok:
                raise TranscriptionError(
                    f"Whisper exited with code {result.returncode}: {result.diagnostics()}"
                )
            # Whisper names the file after the input; don't rely on it
            produced = sorted(output_dir.glob("*.txt"))
            if not produced:
                raise TranscriptionError("Whisper finished but produced no transcript file")
            return produced[0].read_text(encoding="utf-8").strip()
        finally:
            try:
                shutil.rmtree(output_dir)
            except OSError as e:
                log.warning("Could not remove Whisper output directory %s: %s", output_dir, e)

    # -----------------------------------------------------------------------
    # Sources
    # -----------------------------------------------------------------------

    async def transcribe_file(
        self,
        path: Path,
        language: str,
        *,
        source_kind: SourceKind = SourceKind.UPLOADED_MEDIA,
        enforce_size_limit: bool = True,
    ) -> Transcript:
        """Validate, normalise, segment if long, and transcribe a local file.

        The input file itself is never deleted; only temp files made here are.
        """
        path = Path(path)
        self.normalizer.validate(path, enforce_size_limit=enforce_size_limit)

        owned: list[Path] = []
        try:
            audio, created = await self.normalizer.to_audio(path)
            if created:
                owned.append(audio)
            duration = await self.normalizer.probe_duration(audio)

            if self.normalizer.needs_segmentation(duration):
                segments = await self.normalizer.segment(audio, duration)
                owned.extend(segments)
                parts = []
                for i, segment in enumerate(segments, 1):
                    log.info("Transcribing segment %d/%d of %s", i, len(segments), path.name)
                    parts.append(await self.transcribe_audio(segment, language))
                text = " ".join(part for part in parts if part)
                segment_count = len(segments)
            else:
                log.info("Transcribing %s", path.name)
                text = await self.transcribe_audio(audio, language)
                segment_count = 1
        finally:
            remove_temp_files(owned)

        if not text:
            raise TranscriptionError(f"No speech was transcribed from {path.name}")

        return Transcript(
            text=text,
            language=language,
            duration=duration,
            source_kind=source_kind,
            segment_count=segment_count,
            model=self.model,
        )

    async def transcribe_url(self, url: str, language: str) -> Transcript:
        audio = await self.acquirer.acquire(url)
        try:
            # Downloads are already mono MP3 and may legitimately exceed the upload cap
            return await self.transcribe_file(
                audio,
                language,
                source_kind=SourceKind.REMOTE_URL,
                enforce_size_limit=False,
            )
        finally:
            remove_temp_files([audio])

    async def transcribe_source(
        self,
        kind: SourceKind,
        ref: str,
        language: str,
    ) -> Transcript:
        if kind is SourceKind.UPLOADED_MEDIA:
            return await self.transcribe_file(Path(ref), language)
        if kind is SourceKind.REMOTE_URL:
            return await self.transcribe_url(ref, language)
        raise TranscriptionError(f"Source kind '{kind.value}' does not need transcription")

    async def test_connection(self) -> bool:
        """True if the Whisper command can be started."""
        try:
            result = await self._run([*self.command, "--help"], timeout=60)
        except ProcessError as e:
            log.error("Whisper is not available: %s", e)
            return False
        return result.ok

    @property
    def downloaders(self) -> list[str]:
        return [d.name for d in self.acquirer.downloaders]

    def describe(self) -> dict[str, Optional[str]]:
        return {"model": self.model, "command": " ".join(self.command)}
