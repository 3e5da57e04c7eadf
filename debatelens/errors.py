"""
Exception hierarchy.

Intake problems surface as ``InputValidationError`` before a job exists.
Everything raised inside the background pipeline ends up as the job's
error message via ``JobService.fail``.
"""

from __future__ import annotations


class DebateLensError(Exception):
    """Base class for every error raised by this package."""


# ---------------------------------------------------------------------------
# Intake / job lifecycle
# ---------------------------------------------------------------------------

class InputValidationError(DebateLensError):
    """Bad source reference, too-short text or invalid participant list."""


class JobNotFoundError(DebateLensError):
    def __init__(self, job_id: str):
        super().__init__(f"Analysis {job_id} not found")
        self.job_id = job_id


class ConflictError(DebateLensError):
    """A status transition was refused because of the job's current state."""


# ---------------------------------------------------------------------------
# Media / transcription
# ---------------------------------------------------------------------------

class ProcessError(DebateLensError):
    """An external tool could not be run to completion."""


class ProcessSpawnError(ProcessError):
    pass


class ProcessTimeoutError(ProcessError):
    pass


class AcquisitionError(DebateLensError):
    """Remote media download or media conversion failed."""


class TranscriptionError(DebateLensError):
    """Speech-to-text failed or the input media is unusable."""


# ---------------------------------------------------------------------------
# Reasoning backend
# ---------------------------------------------------------------------------

class ReasoningError(DebateLensError):
    """A single reasoning call failed or returned nothing usable."""


class ReasoningUnavailableError(ReasoningError):
    """No participant could be scored on either the primary or fallback model."""
