"""AudioNormalizer: validation, conversion, probing and segmentation."""

import asyncio
from pathlib import Path

import pytest

from debatelens.errors import (
    AcquisitionError,
    ProcessSpawnError,
    ProcessTimeoutError,
    TranscriptionError,
)
from debatelens.transcription.audio import AudioNormalizer, remove_temp_files

from conftest import FakeRunner, failed, ok


def _touch(path: Path, size: int = 16) -> Path:
    path.write_bytes(b"\0" * size)
    return path


def _write_output(args):
    Path(args[-1]).write_bytes(b"mp3")
    return ok(args)


class TestValidate:
    def test_accepts_supported_file(self, tmp_path):
        AudioNormalizer(tmp_path / "temp").validate(_touch(tmp_path / "debate.MP4"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(TranscriptionError, match="not found"):
            AudioNormalizer(tmp_path).validate(tmp_path / "nope.mp3")

    def test_empty_file(self, tmp_path):
        with pytest.raises(TranscriptionError, match="empty"):
            AudioNormalizer(tmp_path).validate(_touch(tmp_path / "a.mp3", 0))

    def test_too_large(self, tmp_path):
        normalizer = AudioNormalizer(tmp_path, max_bytes=10)
        with pytest.raises(TranscriptionError, match="too large"):
            normalizer.validate(_touch(tmp_path / "a.mp3", 11))
        normalizer.validate(tmp_path / "a.mp3", enforce_size_limit=False)

    def test_unsupported_extension(self, tmp_path):
        with pytest.raises(TranscriptionError, match="Unsupported"):
            AudioNormalizer(tmp_path).validate(_touch(tmp_path / "notes.txt"))


class TestToAudio:
    def test_audio_container_is_not_converted(self, tmp_path):
        runner = FakeRunner(_write_output)
        source = _touch(tmp_path / "debate.wav")
        path, created = asyncio.run(AudioNormalizer(tmp_path / "temp", runner=runner).to_audio(source))
        assert path == source
        assert created is False
        assert runner.calls == []

    def test_video_is_converted_to_mono_16k_mp3(self, tmp_path):
        runner = FakeRunner(_write_output)
        source = _touch(tmp_path / "debate.mov")
        path, created = asyncio.run(AudioNormalizer(tmp_path / "temp", runner=runner).to_audio(source))

        assert created is True
        assert path.parent == tmp_path / "temp"
        assert path.suffix == ".mp3"
        args = runner.calls[0]
        assert args[0] == "ffmpeg"
        assert args[args.index("-ac") + 1] == "1"
        assert args[args.index("-ar") + 1] == "16000"
        assert args[args.index("-acodec") + 1] == "libmp3lame"

    def test_conversion_failure(self, tmp_path):
        runner = FakeRunner(lambda args: failed(args, 1, "Invalid data found"))
        normalizer = AudioNormalizer(tmp_path / "temp", runner=runner)
        with pytest.raises(AcquisitionError, match="Invalid data found"):
            asyncio.run(normalizer.to_audio(_touch(tmp_path / "debate.avi")))

    def test_missing_ffmpeg(self, tmp_path):
        def handler(args):
            raise ProcessSpawnError("Could not start ffmpeg")

        normalizer = AudioNormalizer(tmp_path / "temp", runner=FakeRunner(handler))
        with pytest.raises(AcquisitionError, match="Could not start ffmpeg"):
            asyncio.run(normalizer.to_audio(_touch(tmp_path / "debate.webm")))

    def test_timeout_removes_partial_output(self, tmp_path):
        def handler(args):
            Path(args[-1]).write_bytes(b"half an mp3")
            raise ProcessTimeoutError("ffmpeg timed out after 600s")

        temp = tmp_path / "temp"
        normalizer = AudioNormalizer(temp, runner=FakeRunner(handler))
        with pytest.raises(AcquisitionError, match="timed out"):
            asyncio.run(normalizer.to_audio(_touch(tmp_path / "talk.mp4")))
        assert list(temp.iterdir()) == []


class TestProbeDuration:
    @pytest.mark.parametrize(
        "stdout, expected",
        [("1200.500000\n", 1200.5), ("N/A\n", None), ("", None), ("0\n", None)],
    )
    def test_parses_ffprobe_output(self, tmp_path, stdout, expected):
        normalizer = AudioNormalizer(tmp_path, runner=FakeRunner(lambda args: ok(args, stdout)))
        assert asyncio.run(normalizer.probe_duration(tmp_path / "a.mp3")) == expected

    def test_failed_probe(self, tmp_path):
        normalizer = AudioNormalizer(tmp_path, runner=FakeRunner(lambda args: failed(args)))
        assert asyncio.run(normalizer.probe_duration(tmp_path / "a.mp3")) is None


class TestSegment:
    def test_twenty_minutes_gives_two_chunks(self, tmp_path):
        runner = FakeRunner(_write_output)
        normalizer = AudioNormalizer(tmp_path / "temp", chunk_seconds=600, runner=runner)
        assert normalizer.needs_segmentation(1200.0)
        assert not normalizer.needs_segmentation(600.0)
        assert not normalizer.needs_segmentation(None)

        segments = asyncio.run(normalizer.segment(tmp_path / "long.mp3", 1200.0))

        assert len(segments) == 2
        assert all(p.is_file() for p in segments)
        starts = [c[c.index("-ss") + 1] for c in runner.calls]
        lengths = {c[c.index("-t") + 1] for c in runner.calls}
        assert starts == ["0", "600"]
        assert lengths == {"600"}

    def test_partial_last_chunk(self, tmp_path):
        runner = FakeRunner(_write_output)
        normalizer = AudioNormalizer(tmp_path / "temp", chunk_seconds=600, runner=runner)
        assert len(asyncio.run(normalizer.segment(tmp_path / "long.mp3", 1250.0))) == 3

    def test_failure_cleans_up_created_chunks(self, tmp_path):
        def handler(args):
            if args[args.index("-ss") + 1] == "600":
                return failed(args)
            return _write_output(args)

        normalizer = AudioNormalizer(tmp_path / "temp", runner=FakeRunner(handler))
        with pytest.raises(AcquisitionError, match="segment 2/2"):
            asyncio.run(normalizer.segment(tmp_path / "long.mp3", 1200.0))
        assert list((tmp_path / "temp").iterdir()) == []


def test_remove_temp_files_logs_failures(tmp_path, caplog):
    blocker = tmp_path / "dir"
    blocker.mkdir()
    (blocker / "child").write_text("x")
    keep = _touch(tmp_path / "gone.mp3")

    remove_temp_files([blocker, keep, tmp_path / "missing.mp3"])

    assert not keep.exists()
    assert blocker.exists()
    assert "Could not delete temp file" in caplog.text


class TestSegmentInterrupted:
    @staticmethod
    def _second_chunk_raises(exc):
        def handler(args):
            Path(args[-1]).write_bytes(b"mp3")
            if args[args.index("-ss") + 1] == "600":
                raise exc
            return ok(args)

        return handler

    def test_timeout_removes_every_chunk(self, tmp_path):
        handler = self._second_chunk_raises(ProcessTimeoutError("ffmpeg timed out"))
        normalizer = AudioNormalizer(tmp_path / "temp", runner=FakeRunner(handler))
        with pytest.raises(AcquisitionError, match="timed out"):
            asyncio.run(normalizer.segment(tmp_path / "long.mp3", 1200.0))
        assert list((tmp_path / "temp").iterdir()) == []

    def test_cancellation_removes_every_chunk(self, tmp_path):
        handler = self._second_chunk_raises(asyncio.CancelledError())
        normalizer = AudioNormalizer(tmp_path / "temp", runner=FakeRunner(handler))
        with pytest.raises(asyncio.CancelledError):
            asyncio.run(normalizer.segment(tmp_path / "long.mp3", 1200.0))
        assert list((tmp_path / "temp").iterdir()) == []
