"""LLM text-completion client and response parsing.

The model is asked for JSON but frequently wraps it in prose or code
fences. ``parse_json_response`` locates the JSON span, validates it
against a pydantic schema and returns either ``Parsed`` or
``ParseFailure`` - never a half-filled object.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Generic, Iterator, List, Literal, Optional, Sequence, Tuple, TypeVar, Union

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from var_sandbox.config import Settings
from var_sandbox.errors import VarSandboxError

logger = logging.getLogger(__name__)

T = TypeVar("T")

OPENERS = {"[": "]", "{": "}"}


class LLMError(VarSandboxError):
    """The completion endpoint failed or returned no text."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ChatMessage(BaseModel):
    role: Literal["user", "model"]
    content: str


@dataclass(frozen=True)
class Parsed(Generic[T]):
    value: T


@dataclass(frozen=True)
class ParseFailure:
    raw_text: str
    reason: str


ParseResult = Union[Parsed[T], ParseFailure]


class LLMClient:
    """Gemini ``generateContent`` client over httpx."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None
    ) -> "LLMClient":
        return cls(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            timeout=settings.llm_timeout,
            transport=transport,
        )

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout, transport=self._transport)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "LLMClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def complete(self, messages: Sequence[ChatMessage]) -> str:
        """Send a role-tagged history and return the completion text."""
        if not self._api_key:
            raise LLMError("no LLM API key configured (set GEMINI_API_KEY)")
        if not messages:
            raise LLMError("at least one message is required")

        payload = {
            "contents": [
                {"role": m.role, "parts": [{"text": m.content}]} for m in messages
            ]
        }
        url = f"{self.base_url}/models/{self.model}:generateContent"

        logger.debug("Calling %s with %d message(s)", self.model, len(messages))
        try:
            response = self.client.post(url, params={"key": self._api_key}, json=payload)
        except httpx.HTTPError as exc:
            raise LLMError(f"LLM request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            detail = (data.get("error") or {}).get("message") if isinstance(data, dict) else None
            raise LLMError(
                f"LLM API error {response.status_code}: {detail or response.text}",
                status_code=response.status_code,
            )

        text = _candidate_text(data)
        if not text:
            raise LLMError("LLM response contained no text", status_code=response.status_code)
        return text

    def ask(self, prompt: str, history: Sequence[ChatMessage] = ()) -> str:
        return self.complete([*history, ChatMessage(role="user", content=prompt)])


def _candidate_text(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
    return "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))


def iter_json_spans(text: str) -> Iterator[Tuple[int, int]]:
    """Yield (start, end) of balanced [...] / {...} spans, left to right.

    Brackets inside JSON strings are ignored.
    """
    start = 0
    while True:
        positions = [p for p in (text.find("[", start), text.find("{", start)) if p != -1]
        if not positions:
            return
        begin = min(positions)
        end = _match_bracket(text, begin)
        if end is not None:
            yield begin, end + 1
        start = begin + 1


def _match_bracket(text: str, begin: int) -> Optional[int]:
    stack: List[str] = []
    in_string = False
    escaped = False
    for i in range(begin, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in OPENERS:
            stack.append(OPENERS[ch])
        elif ch in ("]", "}"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return i
    return None


def extract_json(text: str) -> Optional[Any]:
    """Decode the first JSON array/object embedded in ``text``."""
    for begin, end in iter_json_spans(text):
        try:
            return json.loads(text[begin:end])
        except json.JSONDecodeError:
            continue
    return None


def parse_json_response(text: str, schema: Any) -> ParseResult:
    """
    Locate the JSON span in ``text`` and validate it against ``schema``.

    ``schema`` is any type pydantic can validate (a model,
    ``List[Model]`` ...). The first span that decodes and validates
    wins; otherwise the reason from the first decoded span is reported.
    """
    adapter = TypeAdapter(schema)
    first_reason: Optional[str] = None

    for begin, end in iter_json_spans(text):
        try:
            payload = json.loads(text[begin:end])
        except json.JSONDecodeError:
            continue
        try:
            return Parsed(adapter.validate_python(payload))
        except ValidationError as exc:
            if first_reason is None:
                error = exc.errors()[0]
                location = ".".join(str(part) for part in error["loc"])
                first_reason = (
                    f"response failed validation ({exc.error_count()} error(s)): "
                    f"{error['msg']} at '{location}'"
                )

    reason = first_reason or "no JSON array or object found in response"
    logger.warning("Could not parse LLM response: %s", reason)
    return ParseFailure(raw_text=text, reason=reason)
