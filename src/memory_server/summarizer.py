"""Summarizers used by the default compactor to build a session's context."""
from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from .models import MemoryMessage

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "[… earlier context truncated]\n"

SUMMARY_PROMPT = """Progressively summarize the conversation below, adding onto the previous summary and returning a new summary.

Keep:
- facts the user stated about themselves
- decisions made and open questions
- anything the assistant promised to do

Be factual. No interpretation. Keep it under {max_chars} characters.

PREVIOUS SUMMARY:
{context}

NEW LINES OF CONVERSATION:
{conversation}

NEW SUMMARY:"""


def _transcript(messages: List[MemoryMessage]) -> str:
    lines: List[str] = []
    for m in messages:
        content = re.sub(r"\s+", " ", (m.content or "").strip())
        if content:
            lines.append(f"{m.role}: {content}")
    return "\n".join(lines)


class Summarizer(ABC):
    """Condenses chronological messages (plus prior context) into one string."""

    @abstractmethod
    async def summarize(self, messages: List[MemoryMessage], context: Optional[str]) -> str:
        ...

    async def aclose(self) -> None:
        return None


class ExtractiveSummarizer(Summarizer):
    """Role-aware transcript appended to the previous context, bounded in size.

    When over budget the oldest text is cut, so the context always ends with
    the most recently folded messages.
    """

    def __init__(self, max_chars: int = 4000) -> None:
        self.max_chars = max(int(max_chars), len(TRUNCATION_MARKER) + 1)

    async def summarize(self, messages: List[MemoryMessage], context: Optional[str]) -> str:
        parts = [p for p in ((context or "").strip(), _transcript(messages)) if p]
        joined = "\n".join(parts)
        if len(joined) <= self.max_chars:
            return joined
        keep = self.max_chars - len(TRUNCATION_MARKER)
        return TRUNCATION_MARKER + joined[-keep:].lstrip()


class OpenAISummarizer(Summarizer):
    """Progressive summary via an OpenAI-compatible ``/chat/completions`` API."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        max_chars: int = 4000,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.model = model
        self.max_chars = max_chars
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout, connect=5.0),
        )
        self._headers = {"Authorization": f"Bearer {api_key}"}

    async def summarize(self, messages: List[MemoryMessage], context: Optional[str]) -> str:
        prompt = SUMMARY_PROMPT.format(
            max_chars=self.max_chars,
            context=(context or "").strip() or "(none)",
            conversation=_transcript(messages),
        )
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0.2,
        }
        r = await self._client.post("/chat/completions", json=payload, headers=self._headers)
        r.raise_for_status()
        data = r.json()
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"Unexpected completion payload: {data!r}") from e
        return str(text).strip()

    async def aclose(self) -> None:
        await self._client.aclose()


def create_summarizer(cfg: Dict[str, Any]) -> Summarizer:
    """Build the summarizer named by ``compaction.summarizer``."""
    comp = cfg.get("compaction", {}) or {}
    kind = str(comp.get("summarizer", "extractive")).lower()
    max_chars = int(comp.get("max_context_chars", 4000))

    if kind == "extractive":
        return ExtractiveSummarizer(max_chars=max_chars)
    if kind == "openai":
        oa = comp.get("openai", {}) or {}
        api_key = oa.get("api_key") or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError("compaction.summarizer is 'openai' but no API key is configured.")
        return OpenAISummarizer(
            str(api_key),
            model=str(oa.get("model", "gpt-4o-mini")),
            base_url=str(oa.get("base_url", "https://api.openai.com/v1")),
            timeout=float(oa.get("timeout", 30.0)),
            max_chars=max_chars,
        )
    raise RuntimeError(f"Unknown summarizer {kind!r}; expected 'extractive' or 'openai'.")
