"""
Async subprocess helper shared by ffmpeg, Whisper and yt-dlp invocations.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from debatelens.errors import ProcessSpawnError, ProcessTimeoutError

log = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    args: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def diagnostics(self, limit: int = 2000) -> str:
        """Tail of stderr (or stdout if stderr is empty) for error messages."""
        text = (self.stderr or self.stdout).strip()
        return text[-limit:] if len(text) > limit else text


ProcessRunner = Callable[..., Awaitable[ProcessResult]]


async def run_process(
    args: Sequence[str],
    *,
    timeout: Optional[float] = None,
    cwd: Optional[str] = None,
) -> ProcessResult:
    """Run ``args`` to completion, capturing output.

    Raises ``ProcessSpawnError`` if the executable cannot be started and
    ``ProcessTimeoutError`` (after killing the process) if it overruns.
    """
    args = [str(a) for a in args]
    log.debug("Running %s", " ".join(args))
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env={**os.environ, "PYTHONIOENCODING": "utf-8"},
        )
    except OSError as e:
        raise ProcessSpawnError(f"Could not start {args[0]}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ProcessTimeoutError(f"{args[0]} timed out after {timeout:.0f}s") from None

    return ProcessResult(
        args=args,
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
