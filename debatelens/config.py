"""
Configuration, logging & LLM client construction.

Loads API keys from .env and exposes a frozen ``Settings`` object read from
the environment.  Reasoning clients are built on demand from those settings;
nothing here holds a process-wide client or database handle.
"""

from __future__ import annotations

import logging
import os
import shlex
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ConfigDict, Field
from rich.logging import RichHandler

load_dotenv()


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "google/gemini-2.0-flash-exp:free"
FALLBACK_MODEL = "google/gemini-1.5-flash:free"

MAX_UPLOAD_BYTES = 100 * 1024 * 1024
LONG_AUDIO_SECONDS = 600  # anything longer is transcribed in 10-minute chunks


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


def _env_command(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    return shlex.split(raw) if raw else default


class Settings(BaseModel):
    """Runtime settings.  Build with ``load_settings()``."""

    model_config = ConfigDict(frozen=True)

    # Reasoning backend (any OpenAI-compatible endpoint, OpenRouter by default)
    api_key: Optional[str] = None
    base_url: str = OPENROUTER_BASE_URL
    primary_model: str = DEFAULT_MODEL
    fallback_model: Optional[str] = FALLBACK_MODEL
    temperature: float = Field(default=0.3, ge=0, le=2)
    top_p: float = Field(default=0.9, gt=0, le=1)
    max_tokens: int = Field(default=4096, gt=0)
    request_timeout: float = 120.0
    max_retries: int = 2
    app_url: str = "http://localhost:3000"
    app_title: str = "DebateLens"
    scoring_concurrency: int = Field(default=10, ge=1)

    # Transcription
    whisper_command: list[str] = Field(default_factory=lambda: [sys.executable, "-m", "whisper"])
    whisper_model: str = "base"
    language: str = "it"
    ytdlp_command: list[str] = Field(default_factory=lambda: [sys.executable, "-m", "yt_dlp"])
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    chunk_seconds: int = LONG_AUDIO_SECONDS
    convert_timeout: float = 600.0
    transcribe_timeout: float = 3600.0
    download_timeout: float = 1800.0

    # Storage
    database_path: Path = Path("./data/debatelens.db")
    temp_dir: Path = Path("./temp")

    @property
    def database_url(self) -> str:
        return f"sqlite+aiosqlite:///{self.database_path}"


def load_settings() -> Settings:
    """Read every setting from the environment (after .env has been loaded)."""
    return Settings(
        api_key=os.getenv("OPENROUTER_API_KEY") or os.getenv("OPENAI_API_KEY"),
        base_url=os.getenv("OPENROUTER_BASE_URL", OPENROUTER_BASE_URL),
        primary_model=os.getenv("DEBATELENS_MODEL", DEFAULT_MODEL),
        fallback_model=os.getenv("DEBATELENS_FALLBACK_MODEL", FALLBACK_MODEL) or None,
        temperature=_env_float("DEBATELENS_TEMPERATURE", 0.3),
        top_p=_env_float("DEBATELENS_TOP_P", 0.9),
        max_tokens=_env_int("DEBATELENS_MAX_TOKENS", 4096),
        request_timeout=_env_float("DEBATELENS_REQUEST_TIMEOUT", 120.0),
        max_retries=_env_int("DEBATELENS_MAX_RETRIES", 2),
        app_url=os.getenv("DEBATELENS_APP_URL", "http://localhost:3000"),
        app_title=os.getenv("DEBATELENS_APP_TITLE", "DebateLens"),
        scoring_concurrency=_env_int("DEBATELENS_SCORING_CONCURRENCY", 10),
        whisper_command=_env_command("WHISPER_COMMAND", [sys.executable, "-m", "whisper"]),
        whisper_model=os.getenv("WHISPER_MODEL", "base"),
        language=os.getenv("WHISPER_LANGUAGE", "it"),
        ytdlp_command=_env_command("YTDLP_COMMAND", [sys.executable, "-m", "yt_dlp"]),
        ffmpeg_binary=os.getenv("FFMPEG_BINARY", "ffmpeg"),
        ffprobe_binary=os.getenv("FFPROBE_BINARY", "ffprobe"),
        max_upload_bytes=_env_int("DEBATELENS_MAX_UPLOAD_BYTES", MAX_UPLOAD_BYTES),
        chunk_seconds=_env_int("DEBATELENS_CHUNK_SECONDS", LONG_AUDIO_SECONDS),
        convert_timeout=_env_float("DEBATELENS_CONVERT_TIMEOUT", 600.0),
        transcribe_timeout=_env_float("DEBATELENS_TRANSCRIBE_TIMEOUT", 3600.0),
        download_timeout=_env_float("DEBATELENS_DOWNLOAD_TIMEOUT", 1800.0),
        database_path=Path(os.getenv("DEBATELENS_DB_PATH", "./data/debatelens.db")),
        temp_dir=Path(os.getenv("DEBATELENS_TEMP_DIR", "./temp")),
    )


# ---------------------------------------------------------------------------
# LLM clients
# ---------------------------------------------------------------------------

def build_chat_model(settings: Settings, model: str) -> ChatOpenAI:
    """Chat client for one model on the configured OpenAI-compatible endpoint.

    ``max_retries`` covers 429s and transient network errors; model-level
    fallback is handled by the caller.
    """
    return ChatOpenAI(
        model=model,
        api_key=settings.api_key,
        base_url=settings.base_url,
        temperature=settings.temperature,
        top_p=settings.top_p,
        max_tokens=settings.max_tokens,
        timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        default_headers={
            "HTTP-Referer": settings.app_url,
            "X-Title": settings.app_title,
        },
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
