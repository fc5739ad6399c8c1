from __future__ import annotations

"""Offline extractive generator used without an LLM provider."""

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator

if TYPE_CHECKING:
    from src.rag.llm import GenerationRequest

DEFAULT_REFUSAL = "I don't know based on the available articles."

_FRAGMENT_RE = re.compile(r"\S+\s*")


@dataclass(frozen=True)
class ExtractiveGenerator:
    """Return a short extract from the highest scoring article chunk."""
    max_chars: int = 480

    async def generate(self, request: GenerationRequest) -> str:
        """Generate an extractive answer from the retrieved documents."""
        if not request.documents:
            return DEFAULT_REFUSAL
        best = max(request.documents, key=lambda document: document.score)
        snippet = self._truncate(best.text.strip())
        if not snippet:
            return DEFAULT_REFUSAL
        title = best.metadata.get("doc_title") or best.metadata.get("title")
        if title:
            return f"According to \"{title}\": {snippet}"
        return f"Based on the available articles: {snippet}"

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Yield the extractive answer word by word."""
        answer = await self.generate(request)
        for fragment in _FRAGMENT_RE.findall(answer):
            yield fragment

    def _truncate(self, text: str) -> str:
        """Trim text to the max character budget without cutting words."""
        if len(text) <= self.max_chars:
            return text
        return text[: self.max_chars].rsplit(" ", 1)[0] + "..."
