"""Text-generation client shared by every planning stage.

Wraps a LangChain chat model (Gemini by default) with the resilience rules the
pipeline depends on:

* a hard wall-clock timeout per call (shorter for single-shot, longer for
  streamed generation),
* bounded retries with exponential backoff and jitter, only for rate limiting,
* normalization of provider content into plain text, with typed errors instead
  of empty strings.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from config import (
    DEFAULT_MODEL_NAME,
    DEFAULT_TEMPERATURE,
    LLM_BACKOFF_BASE_SECONDS,
    LLM_BACKOFF_JITTER_SECONDS,
    LLM_RATE_LIMIT_RETRIES,
    LLM_STREAM_TIMEOUT_SECONDS,
    LLM_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], Union[None, Awaitable[None]]]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TextGenerationError(Exception):
    """Base class for failures of the text-generation capability."""


class RateLimitError(TextGenerationError):
    """Provider kept rate limiting after the retry budget was spent."""


class GenerationTimeoutError(TextGenerationError):
    """The call exceeded its wall-clock timeout."""


class EmptyResponseError(TextGenerationError):
    """The provider answered without usable text."""


class UnsupportedContentError(TextGenerationError):
    """The provider answered with a content shape we cannot turn into text."""


# ---------------------------------------------------------------------------
# Request / response types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GenerationOptions:
    temperature: float = DEFAULT_TEMPERATURE
    max_output_tokens: Optional[int] = None
    system_instruction: Optional[str] = None


class Completion(BaseModel):
    text: str
    finish_reason: Optional[str] = None
    usage: Dict[str, Any] = Field(default_factory=dict)
    model: Optional[str] = None


# ---------------------------------------------------------------------------
# Content normalization
# ---------------------------------------------------------------------------

_TEXT_PART_TYPES = {"text", "output_text"}


def _fragment_text(fragment: Any) -> str:
    if isinstance(fragment, str):
        return fragment
    if isinstance(fragment, dict):
        part_type = fragment.get("type", "text")
        if part_type not in _TEXT_PART_TYPES:
            # thinking/reasoning parts are not part of the answer
            return ""
        text = fragment.get("text")
        if isinstance(text, str):
            return text
        raise UnsupportedContentError(f"Content fragment without text: {sorted(fragment)}")
    text = getattr(fragment, "text", None)
    if isinstance(text, str):
        return text
    raise UnsupportedContentError(f"Unsupported content fragment type: {type(fragment).__name__}")


def normalize_content(content: Any) -> str:
    """Convert a provider content payload into plain text.

    Recognized shapes:

    * ``str``: returned unchanged.
    * ``list``/``tuple`` of fragments (strings, ``{"type": "text", "text": ...}``
      parts, or objects with a ``text`` attribute): concatenated in order.
    * ``dict`` whose keys are all numeric strings (a string that was spread
      into an object): characters re-assembled in index order.
    * ``dict`` with a ``text`` entry: that entry.

    ``None`` raises :class:`EmptyResponseError`; anything else raises
    :class:`UnsupportedContentError`.
    """

    if content is None:
        raise EmptyResponseError("AI returned no content")
    if isinstance(content, str):
        return content
    if isinstance(content, (list, tuple)):
        return "".join(_fragment_text(fragment) for fragment in content)
    if isinstance(content, dict):
        if content and all(str(key).isdigit() for key in content):
            ordered = sorted(content.items(), key=lambda item: int(item[0]))
            return "".join(str(value) for _, value in ordered)
        text = content.get("text")
        if isinstance(text, str):
            return text
        raise UnsupportedContentError(f"Unsupported content object with keys {sorted(content)[:5]}")
    raise UnsupportedContentError(f"Unsupported content type: {type(content).__name__}")


def _is_rate_limited(exc: BaseException) -> bool:
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if value == 429 or (isinstance(value, str) and value.upper() in {"429", "RESOURCE_EXHAUSTED"}):
            return True
    status = getattr(getattr(exc, "response", None), "status_code", None)
    if status == 429:
        return True
    if type(exc).__name__ in {"ResourceExhausted", "TooManyRequests"}:
        return True
    message = str(exc).lower()
    return "429" in message or "resource_exhausted" in message or "rate limit" in message


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class TextGenerationClient:
    """Single entry point for prompt -> text calls."""

    def __init__(
        self,
        model: Optional[Any] = None,
        *,
        model_name: str = DEFAULT_MODEL_NAME,
        timeout: float = LLM_TIMEOUT_SECONDS,
        stream_timeout: float = LLM_STREAM_TIMEOUT_SECONDS,
        max_retries: int = LLM_RATE_LIMIT_RETRIES,
        backoff_base: float = LLM_BACKOFF_BASE_SECONDS,
        backoff_jitter: float = LLM_BACKOFF_JITTER_SECONDS,
    ) -> None:
        self._model = model
        self.model_name = model_name
        self.timeout = timeout
        self.stream_timeout = stream_timeout
        self.max_retries = max(0, max_retries)
        self.backoff_base = backoff_base
        self.backoff_jitter = backoff_jitter
        self._models: Dict[tuple, Any] = {}

    # ------------------------------------------------------------------
    # Model plumbing
    # ------------------------------------------------------------------
    def _ensure_llm(self, options: GenerationOptions) -> Any:
        if self._model is not None:
            return self._model
        key = (options.temperature, options.max_output_tokens)
        llm = self._models.get(key)
        if llm is None:
            kwargs: Dict[str, Any] = {
                "model": self.model_name,
                "temperature": options.temperature,
                "max_retries": 0,
            }
            if options.max_output_tokens:
                kwargs["max_output_tokens"] = options.max_output_tokens
            llm = ChatGoogleGenerativeAI(**kwargs)
            self._models[key] = llm
        return llm

    @staticmethod
    def _build_messages(prompt: str, options: GenerationOptions) -> List[Any]:
        messages: List[Any] = []
        if options.system_instruction:
            messages.append(SystemMessage(content=options.system_instruction))
        messages.append(HumanMessage(content=prompt))
        return messages

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(RateLimitError),
            wait=wait_exponential(multiplier=self.backoff_base, min=0, max=30)
            + wait_random(0, self.backoff_jitter),
            stop=stop_after_attempt(self.max_retries + 1),
            before_sleep=lambda state: logger.warning(
                "Rate limited by text-generation provider (attempt %s/%s), backing off",
                state.attempt_number,
                self.max_retries + 1,
            ),
            reraise=True,
        )

    # ------------------------------------------------------------------
    # Single-shot
    # ------------------------------------------------------------------
    async def complete(self, prompt: str, options: Optional[GenerationOptions] = None) -> Completion:
        """Generate text for ``prompt``; never returns empty text."""

        options = options or GenerationOptions()
        llm = self._ensure_llm(options)
        messages = self._build_messages(prompt, options)

        try:
            async for attempt in self._retrying():
                with attempt:
                    return await self._invoke_once(llm, messages)
        except RateLimitError as exc:
            raise RateLimitError(
                f"Rate limit exceeded after {self.max_retries} retries. Please try again later."
            ) from exc
        raise TextGenerationError("Text generation produced no attempt")  # pragma: no cover

    async def _invoke_once(self, llm: Any, messages: List[Any]) -> Completion:
        try:
            message = await asyncio.wait_for(llm.ainvoke(messages), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise GenerationTimeoutError(f"Request timeout after {self.timeout:g}s") from exc
        except TextGenerationError:
            raise
        except Exception as exc:
            if _is_rate_limited(exc):
                raise RateLimitError(str(exc)) from exc
            raise TextGenerationError(f"Text generation failed: {exc}") from exc

        text = normalize_content(getattr(message, "content", None))
        if not text.strip():
            raise EmptyResponseError("AI returned empty response")

        metadata = getattr(message, "response_metadata", None) or {}
        usage = getattr(message, "usage_metadata", None) or metadata.get("usage_metadata") or {}
        return Completion(
            text=text,
            finish_reason=metadata.get("finish_reason"),
            usage=dict(usage),
            model=metadata.get("model_name") or self.model_name,
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------
    async def stream(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
        on_token: Optional[TokenCallback] = None,
    ) -> Completion:
        """Generate text incrementally, forwarding each text piece to ``on_token``."""

        options = options or GenerationOptions()
        llm = self._ensure_llm(options)
        messages = self._build_messages(prompt, options)
        pieces: List[str] = []
        finish_reason: Optional[str] = None

        async def _consume() -> None:
            nonlocal finish_reason
            async for chunk in llm.astream(messages):
                content = getattr(chunk, "content", None)
                piece = normalize_content(content) if content else ""
                metadata = getattr(chunk, "response_metadata", None) or {}
                finish_reason = metadata.get("finish_reason") or finish_reason
                if not piece:
                    continue
                pieces.append(piece)
                if on_token is not None:
                    result = on_token(piece)
                    if inspect.isawaitable(result):
                        await result

        try:
            await asyncio.wait_for(_consume(), timeout=self.stream_timeout)
        except asyncio.TimeoutError as exc:
            raise GenerationTimeoutError(f"Stream timeout after {self.stream_timeout:g}s") from exc
        except TextGenerationError:
            raise
        except Exception as exc:
            if _is_rate_limited(exc):
                raise RateLimitError(str(exc)) from exc
            raise TextGenerationError(f"Streaming failed: {exc}") from exc

        text = "".join(pieces)
        if not text.strip():
            raise EmptyResponseError("AI returned empty response")
        return Completion(text=text, finish_reason=finish_reason or "stop", model=self.model_name)


__all__ = [
    "Completion",
    "EmptyResponseError",
    "GenerationOptions",
    "GenerationTimeoutError",
    "RateLimitError",
    "TextGenerationClient",
    "TextGenerationError",
    "UnsupportedContentError",
    "normalize_content",
]
