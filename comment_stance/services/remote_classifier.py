from __future__ import annotations

import asyncio
import logging
import re
from importlib import import_module
from typing import Any, Protocol

from comment_stance.errors import CommentStanceError
from comment_stance.models.stance import Stance, parse_stance

LOGGER = logging.getLogger("comment_stance.remote_classifier")

_MAX_PROMPT_COMMENT_CHARS = 2_000
_MAX_PROMPT_TITLE_CHARS = 300
# google-genai formats API errors as "<code> <STATUS>. {...}".
_LEADING_RATE_LIMIT_CODE = re.compile(r"^\s*429\b")


class RemoteClassifierError(CommentStanceError):
    pass


class RemoteRateLimitedError(RemoteClassifierError):
    pass


class RemoteTransientError(RemoteClassifierError):
    pass


class StanceCompletionBackend(Protocol):
    async def complete(self, prompt: str) -> str:
        ...


class GeminiCompletionBackend:
    def __init__(self, client: Any, *, model: str) -> None:
        self._client = client
        self._model = model

    async def complete(self, prompt: str) -> str:
        response = await self._client.aio.models.generate_content(
            model=self._model,
            contents=prompt,
        )
        text = getattr(response, "text", None)
        if not isinstance(text, str):
            raise RemoteTransientError("Gemini response did not contain text")
        return text


def build_gemini_backend(*, api_key: str | None, model: str) -> GeminiCompletionBackend | None:
    """Return a Gemini backend, or None when the SDK or credentials are unavailable."""
    if api_key is None:
        LOGGER.warning("gemini api key not configured; remote stance classification disabled")
        return None
    try:
        genai_module = import_module("google.genai")
    except ImportError:
        LOGGER.warning(
            "google-genai dependency missing; remote stance classification disabled",
            exc_info=True,
        )
        return None

    client_cls: Any = genai_module.Client
    try:
        client = client_cls(api_key=api_key)
    except Exception:
        LOGGER.warning("gemini client construction failed", exc_info=True)
        return None
    return GeminiCompletionBackend(client, model=model)


def build_stance_prompt(text: str, context: str) -> str:
    comment = text.strip()[:_MAX_PROMPT_COMMENT_CHARS]
    title = context.strip()[:_MAX_PROMPT_TITLE_CHARS] or "YouTube Video"
    return (
        f'Analyze the stance of this YouTube comment for the video titled "{title}".\n'
        'Categorize it as one of: "agree" (supports the content), "disagree" (opposes the '
        'content), or "neutral" (neither clearly agrees nor disagrees).\n'
        f'Comment: "{comment}"\n\n'
        'Return ONLY one word: either "agree", "disagree", or "neutral".'
    )


class RemoteClassifier:
    """
    One outbound stance classification per call.

    A `None` backend stands for a client that could not be built; every call then
    fails as transient so callers fall back instead of crashing.
    """

    def __init__(
        self,
        backend: StanceCompletionBackend | None,
        *,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._backend = backend
        self._timeout_seconds = max(0.1, timeout_seconds)

    @property
    def configured(self) -> bool:
        return self._backend is not None

    async def classify(self, text: str, context: str) -> Stance:
        if self._backend is None:
            raise RemoteTransientError("Remote classifier is not configured")

        prompt = build_stance_prompt(text, context)
        try:
            raw_reply = await asyncio.wait_for(
                self._backend.complete(prompt),
                timeout=self._timeout_seconds,
            )
        except (RemoteRateLimitedError, RemoteTransientError):
            raise
        except TimeoutError as exc:
            raise RemoteTransientError(
                f"Remote classifier timed out after {self._timeout_seconds}s"
            ) from exc
        except Exception as exc:
            if _is_rate_limit_error(exc):
                raise RemoteRateLimitedError(_summarize_exception_message(exc)) from exc
            raise RemoteTransientError(_summarize_exception_message(exc)) from exc

        stance = parse_stance(raw_reply)
        if stance is None:
            LOGGER.warning(
                "remote classifier returned an unexpected label; using neutral reply=%r",
                _summarize_reply(raw_reply),
            )
            return Stance.NEUTRAL
        return stance


def _is_rate_limit_error(exc: Exception) -> bool:
    for attribute in ("code", "status", "status_code"):
        raw_value = getattr(exc, attribute, None)
        if raw_value == 429:
            return True
        if isinstance(raw_value, str) and raw_value.strip().upper() in {
            "429",
            "RESOURCE_EXHAUSTED",
        }:
            return True

    class_name = exc.__class__.__name__.lower()
    if ("rate" in class_name and "limit" in class_name) or "resourceexhausted" in class_name:
        return True

    message = str(exc).lower()
    if _LEADING_RATE_LIMIT_CODE.match(message):
        return True
    markers = (
        "too many requests",
        "resource_exhausted",
        "resource exhausted",
        "quota",
        "rate limit",
    )
    return any(marker in message for marker in markers)


def _summarize_exception_message(exc: Exception, *, max_length: int = 400) -> str:
    raw = str(exc).strip()
    if not raw:
        raw = repr(exc)
    if len(raw) <= max_length:
        return raw
    return f"{raw[: max_length - 3]}..."


def _summarize_reply(raw_reply: object, *, max_length: int = 40) -> str:
    compact = re.sub(r"\s+", " ", str(raw_reply)).strip()
    if len(compact) <= max_length:
        return compact
    return f"{compact[:max_length]}..."
