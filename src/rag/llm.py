from __future__ import annotations

"""Chat generation providers with whole-response and streaming modes."""

from dataclasses import dataclass, field
import json
import logging
from typing import Any, AsyncIterator, Protocol

import httpx

from src.rag.answerer import ExtractiveGenerator
from src.rag.errors import ProviderError
from src.rag.types import RetrievedDocument


class LLMError(ProviderError):
    """Raised when LLM requests fail or responses are invalid."""
    pass


logger = logging.getLogger(__name__)


_SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions about news articles. "
    "Only use the information from the provided news articles to answer the question. "
    "If the information is not in the context, say that you don't know "
    "based on the available articles. "
    "Do not use external knowledge. "
    "Provide a concise, accurate answer and mention sources where appropriate."
)


def base_system_prompt() -> str:
    """Return the default system prompt for answer generation."""
    return _SYSTEM_PROMPT


@dataclass(frozen=True)
class GenerationRequest:
    """Everything a generator needs for one turn."""
    system_prompt: str
    prompt: str
    query: str
    history: list[dict[str, str]] = field(default_factory=list)
    documents: list[RetrievedDocument] = field(default_factory=list)


class ChatGenerator(Protocol):
    """Protocol for generation providers."""

    async def generate(self, request: GenerationRequest) -> str:
        ...

    def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        ...


def _chat_messages(request: GenerationRequest) -> list[dict[str, str]]:
    """Build a role-tagged message list: system, history, then the prompt."""
    messages = [{"role": "system", "content": request.system_prompt}]
    for turn in request.history:
        role = turn.get("role", "user").strip().lower()
        content = turn.get("content", "").strip()
        if not content:
            continue
        if role not in {"user", "assistant"}:
            role = "user"
        messages.append({"role": role, "content": content})
    messages.append({"role": "user", "content": request.prompt})
    return messages


@dataclass(frozen=True)
class OllamaGenerator:
    """Generator backed by the Ollama chat API."""
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    transport: httpx.AsyncBaseTransport | None = None

    def _payload(self, request: GenerationRequest, stream: bool) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": _chat_messages(request),
            "stream": stream,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }

    async def generate(self, request: GenerationRequest) -> str:
        """Generate a whole answer using Ollama."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/api/chat", json=self._payload(request, stream=False)
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMError(str(exc)) from exc
        message = data.get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Invalid LLM response")
        return content

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Stream answer fragments from Ollama's NDJSON response."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/api/chat",
                    json=self._payload(request, stream=True),
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        data = json.loads(line)
                        if data.get("error"):
                            raise LLMError(str(data["error"]))
                        content = (data.get("message") or {}).get("content")
                        if content:
                            yield content
                        if data.get("done"):
                            break
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMError(str(exc)) from exc


@dataclass(frozen=True)
class OpenAIGenerator:
    """Generator backed by OpenAI-compatible chat completions."""
    api_key: str
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    transport: httpx.AsyncBaseTransport | None = None

    def _payload(self, request: GenerationRequest, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": _chat_messages(request),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if stream:
            payload["stream"] = True
        return payload

    async def generate(self, request: GenerationRequest) -> str:
        """Generate a whole answer using chat completions."""
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=self._payload(request, stream=False),
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMError(str(exc)) from exc

        choices = data.get("choices") or []
        if not choices:
            raise LLMError("Invalid OpenAI response")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Invalid OpenAI response content")
        return content

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Stream answer fragments from server-sent completion deltas."""
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    json=self._payload(request, stream=True),
                    headers=headers,
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:") :].strip()
                        if data == "[DONE]":
                            break
                        choices = json.loads(data).get("choices") or []
                        if not choices:
                            continue
                        content = (choices[0].get("delta") or {}).get("content")
                        if content:
                            yield content
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMError(str(exc)) from exc


@dataclass(frozen=True)
class GeminiGenerator:
    """Generator backed by Gemini chat sessions."""
    api_key: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float

    def _start_chat(self, request: GenerationRequest) -> Any:
        try:
            import google.generativeai as genai
        except ImportError as exc:
            raise LLMError("google-generativeai is required for GeminiGenerator") from exc
        genai.configure(api_key=self.api_key)
        model = genai.GenerativeModel(self.model, system_instruction=request.system_prompt)
        history = [
            {
                "role": "model" if message["role"] == "assistant" else "user",
                "parts": [message["content"]],
            }
            for message in _chat_messages(request)[1:-1]
        ]
        return model.start_chat(history=history)

    def _generation_config(self) -> dict[str, Any]:
        return {"temperature": self.temperature, "max_output_tokens": self.max_tokens}

    async def generate(self, request: GenerationRequest) -> str:
        """Generate a whole answer using Gemini."""
        chat = self._start_chat(request)
        try:
            response = await chat.send_message_async(
                request.prompt,
                generation_config=self._generation_config(),
                request_options={"timeout": self.timeout},
            )
            return getattr(response, "text", "") or ""
        except Exception as exc:
            raise LLMError(str(exc)) from exc

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Stream answer fragments from Gemini."""
        chat = self._start_chat(request)
        try:
            response = await chat.send_message_async(
                request.prompt,
                stream=True,
                generation_config=self._generation_config(),
                request_options={"timeout": self.timeout},
            )
            async for chunk in response:
                text = getattr(chunk, "text", "")
                if text:
                    yield text
        except Exception as exc:
            raise LLMError(str(exc)) from exc


def build_llm_generator(
    provider: str,
    *,
    api_key_openai: str | None,
    api_key_gemini: str | None,
    openai_base_url: str,
    openai_model: str | None,
    gemini_model: str | None,
    ollama_base_url: str,
    ollama_model: str,
    temperature: float,
    max_tokens: int,
    timeout: float,
) -> OllamaGenerator | OpenAIGenerator | GeminiGenerator | ExtractiveGenerator:
    """Factory for generators based on provider."""
    normalized = provider.strip().lower()
    if normalized in {"", "extractive"}:
        return ExtractiveGenerator()
    if normalized == "openai":
        if not api_key_openai:
            raise LLMError("OPENAI_API_KEY is required for OpenAI provider")
        if not openai_model:
            raise LLMError("OPENAI_CHAT_MODEL is required for OpenAI provider")
        return OpenAIGenerator(
            api_key=api_key_openai,
            base_url=openai_base_url.rstrip("/"),
            model=openai_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    if normalized in {"gemini", "google"}:
        if not api_key_gemini:
            raise LLMError("GEMINI_API_KEY is required for Gemini provider")
        if not gemini_model:
            raise LLMError("GEMINI_CHAT_MODEL is required for Gemini provider")
        return GeminiGenerator(
            api_key=api_key_gemini,
            model=gemini_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    if normalized == "ollama":
        return OllamaGenerator(
            base_url=ollama_base_url.rstrip("/"),
            model=ollama_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    raise LLMError(f"Unsupported LLM provider: {provider}")
