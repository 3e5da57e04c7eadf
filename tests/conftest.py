from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Callable, Optional, Union

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from debatelens.debate.judge import DebateJudge
from debatelens.errors import AcquisitionError
from debatelens.models import CATEGORY_KEYS
from debatelens.store import SqlAnalysisStore
from debatelens.transcription.process import ProcessResult

_SPEAKER_IN_PROMPT = re.compile(r"Analyse the contribution of \*\*(.+?)\*\*")


# ---------------------------------------------------------------------------
# Reasoning backend fakes
# ---------------------------------------------------------------------------

def speaker_payload(name: str, base: float = 6.0) -> str:
    scores = {key: round(base + i * 0.5, 1) for i, key in enumerate(CATEGORY_KEYS)}
    return json.dumps({
        "speaker": name,
        "scores": scores,
        "explanations": {key: f"{name} on {key}" for key in CATEGORY_KEYS},
        "highlights": [f"{name} made a strong opening"],
        "improvements": [f"{name} should cite more sources"],
        "overall_assessment": f"{name} argued clearly.",
    })


def comparison_payload(winner: str, others: list[str]) -> str:
    return json.dumps({
        "winner_overall": winner,
        "category_winners": {key: winner for key in CATEGORY_KEYS},
        "summary": f"{winner} was more convincing than {', '.join(others)}.",
        "key_differences": ["Use of data", "Clarity"],
    })


def prompt_speaker(prompt: str) -> Optional[str]:
    match = _SPEAKER_IN_PROMPT.search(prompt)
    return match.group(1) if match else None


def is_comparison(prompt: str) -> bool:
    return prompt.startswith("Compare the performance")


Reply = Union[str, BaseException]


class FakeChatModel:
    """Stands in for ChatOpenAI: ``reply(model, prompt)`` returns text or an exception to raise."""

    def __init__(self, model: str, reply: Callable[[str, str], Reply], calls: list):
        self.model = model
        self._reply = reply
        self._calls = calls

    async def ainvoke(self, messages):
        prompt = next(m.content for m in messages if isinstance(m, HumanMessage))
        self._calls.append((self.model, prompt))
        result = self._reply(self.model, prompt)
        if isinstance(result, BaseException):
            raise result
        return AIMessage(content=result)


def default_reply(model: str, prompt: str) -> Reply:
    if is_comparison(prompt):
        names = re.search(r"PARTICIPANTS: (.+)", prompt).group(1).split(", ")
        return comparison_payload(names[0], names[1:])
    speaker = prompt_speaker(prompt) or "unknown"
    return speaker_payload(speaker)


def make_judge(
    reply: Callable[[str, str], Reply] = default_reply,
    *,
    fallback: Optional[str] = "fallback-model",
) -> tuple[DebateJudge, list]:
    calls: list = []
    judge = DebateJudge(
        lambda model: FakeChatModel(model, reply, calls),
        primary_model="primary-model",
        fallback_model=fallback,
    )
    return judge, calls


# ---------------------------------------------------------------------------
# Subprocess fake
# ---------------------------------------------------------------------------

class FakeRunner:
    """Records commands; ``handler(args)`` returns a ProcessResult or raises."""

    def __init__(self, handler: Callable[[list[str]], ProcessResult]):
        self.handler = handler
        self.calls: list[list[str]] = []

    async def __call__(self, args, *, timeout=None, cwd=None) -> ProcessResult:
        args = [str(a) for a in args]
        self.calls.append(args)
        return self.handler(args)

    def commands(self, executable: str) -> list[list[str]]:
        return [c for c in self.calls if c[0] == executable]


def ok(args: list[str], stdout: str = "") -> ProcessResult:
    return ProcessResult(args=args, returncode=0, stdout=stdout, stderr="")


def failed(args: list[str], code: int = 1, stderr: str = "boom") -> ProcessResult:
    return ProcessResult(args=args, returncode=code, stdout="", stderr=stderr)


def arg_after(args: list[str], flag: str) -> str:
    return args[args.index(flag) + 1]


def write_whisper_output(args: list[str], text: str) -> None:
    out_dir = Path(arg_after(args, "--output_dir"))
    audio = Path(args[args.index("--model") - 1])
    (out_dir / f"{audio.stem}.txt").write_text(f"  {text}\n", encoding="utf-8")


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "debatelens.db"


async def open_store(path: Path) -> SqlAnalysisStore:
    store = SqlAnalysisStore.for_path(path)
    await store.init()
    return store


def debate_text() -> str:
    alice = (
        "Alice: Nuclear power is the only low-carbon source that can deliver firm baseload "
        "electricity at scale, and France decarbonised its grid in fifteen years with it."
    )
    bob = (
        "Bob: Renewables paired with storage are now cheaper per megawatt hour, and new "
        "reactors in Europe have run a decade late and billions over their budgets."
    )
    return f"{alice}\n\n{bob}"


# ---------------------------------------------------------------------------
# Downloader double
# ---------------------------------------------------------------------------

class FakeLibrary:
    """Downloader recording calls and writing an mp3 for the requested stem."""

    name = "fake library"

    def __init__(self, temp_dir: Path, fail: bool = False):
        self.temp_dir = temp_dir
        self.fail = fail
        self.calls = []

    def available(self) -> bool:
        return True

    async def download(self, url, stem):
        self.calls.append((url, stem))
        if self.fail:
            raise AcquisitionError("HTTP Error 403: Forbidden")
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        path = self.temp_dir / f"{stem}.mp3"
        path.write_bytes(b"mp3")
        return path
