"""PDF statement extraction through the OpenAI Responses API.

Public API:
    - :class:`DocumentExtractor` (protocol the importer depends on)
    - :class:`OpenAIStatementExtractor`

No side effects occur at import time (no client creation, no environment
reads). The client is created lazily on the first ``extract`` call.
"""

from __future__ import annotations

import base64
import json
import os
import random
import time
from collections.abc import Callable
from typing import Any, Protocol

from openai import OpenAI
from openai.types.responses import ResponseTextConfigParam

from .logging_setup import get_logger

_DEFAULT_MODEL: str = "gpt-5"
_MODEL_ENV: str = "BANK_IMPORT_EXTRACTION_MODEL"
_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

_logger = get_logger("bank_import.extract_client")

_INSTRUCTIONS = (
    "You read {context} documents. Return a single JSON object with the keys "
    '"amount_unit" (always "major") and "transactions" (array). Each '
    'transaction has "booking_date" (YYYY-MM-DD), "value_date" (YYYY-MM-DD or '
    'null), "amount" (signed decimal number in major currency units, negative '
    'for debits), "counterpart_name", "counterpart_iban", "purpose" and '
    '"booking_text" (strings or null). Copy values verbatim from the document; '
    "do not invent transactions. Omit opening and closing balances."
)

_TEXT_CONFIG: ResponseTextConfigParam = {"format": {"type": "json_object"}}


class DocumentExtractor(Protocol):
    """Turns a binary document into loosely structured JSON."""

    def extract(self, payload: bytes, *, mime_type: str, context: str) -> Any: ...


def _response_text(resp: Any) -> str:
    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                text = txt_obj if isinstance(txt_obj, str) else getattr(txt_obj, "value", None)
        except (AttributeError, IndexError, TypeError):
            text = None
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")
    return text


def _is_retryable(exc: BaseException) -> bool:
    """Return True only for HTTP 429 and 5xx errors."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    idx = min(attempt_no - 1, len(_BACKOFF_SCHEDULE_SEC) - 1)
    base = _BACKOFF_SCHEDULE_SEC[idx]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


class OpenAIStatementExtractor:
    """Send a PDF to the model and decode the JSON it returns.

    ``client_factory`` exists for tests; by default an ``OpenAI()`` client is
    built on first use (reading ``OPENAI_API_KEY`` from the environment).
    Only HTTP 429/5xx responses are retried; a reply that is not JSON is a
    terminal ``ValueError``.
    """

    def __init__(
        self,
        *,
        model: str | None = None,
        client_factory: Callable[[], Any] | None = None,
        max_attempts: int = _MAX_ATTEMPTS,
    ) -> None:
        self.model = model or os.getenv(_MODEL_ENV) or _DEFAULT_MODEL
        self._client_factory = client_factory or OpenAI
        self._client: Any | None = None
        self.max_attempts = max(1, max_attempts)

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    def _input(self, payload: bytes, mime_type: str, context: str) -> list[dict[str, Any]]:
        encoded = base64.b64encode(payload).decode("ascii")
        return [
            {
                "role": "user",
                "content": [
                    {
                        "type": "input_file",
                        "filename": f"{context}.pdf",
                        "file_data": f"data:{mime_type};base64,{encoded}",
                    },
                    {
                        "type": "input_text",
                        "text": f"Extract every booked transaction from this {context} as JSON.",
                    },
                ],
            }
        ]

    def extract(self, payload: bytes, *, mime_type: str, context: str) -> Any:
        client = self._get_client()
        request_input = self._input(payload, mime_type, context)
        attempt = 1
        while True:
            t0 = time.perf_counter()
            try:
                resp = client.responses.create(
                    model=self.model,
                    instructions=_INSTRUCTIONS.format(context=context.replace("_", " ")),
                    input=request_input,
                    text=_TEXT_CONFIG,
                )
                text = _response_text(resp)
                try:
                    decoded = json.loads(text)
                except json.JSONDecodeError as e:
                    raise ValueError("Model output was not valid JSON") from e
                _logger.info(
                    "extract:done bytes=%d latency_ms=%.2f",
                    len(payload),
                    (time.perf_counter() - t0) * 1000.0,
                )
                return decoded
            except Exception as e:  # noqa: BLE001
                dt_ms = (time.perf_counter() - t0) * 1000.0
                if attempt >= self.max_attempts or not _is_retryable(e):
                    _logger.error(
                        "extract:failed_terminal bytes=%d latency_ms=%.2f error=%s attempt=%d",
                        len(payload),
                        dt_ms,
                        e.__class__.__name__,
                        attempt,
                    )
                    if isinstance(e, ValueError):
                        raise
                    raise RuntimeError(f"document extraction failed: {e}") from e
                _logger.warning(
                    "extract:retry latency_ms=%.2f error=%s attempt=%d",
                    dt_ms,
                    e.__class__.__name__,
                    attempt,
                )
                _sleep_backoff(attempt)
                attempt += 1


__all__ = ["DocumentExtractor", "OpenAIStatementExtractor"]
