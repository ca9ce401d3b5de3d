from __future__ import annotations

import base64
import json
import logging
import re
import time
from typing import Any

import httpx

from statement_converter.core.config import settings
from statement_converter.core.logging import get_logger, log_event, monotonic_ms

logger = get_logger(__name__)

Transaction = dict[str, Any]

_SYSTEM_PROMPT = (
    "You are a parser for bank statements. Extract EVERY transaction that appears in "
    "the attached statement document.\n\n"
    "For each transaction return:\n"
    "- date: transaction date as YYYY-MM-DD\n"
    "- description: the narrative / description text\n"
    "- debit: amount taken out of the account as a number, or null\n"
    "- credit: amount paid into the account as a number, or null\n"
    "- balance: running balance after the transaction as a number, or null if not shown\n\n"
    "Respond with a JSON array of transaction objects and nothing else: no prose, no "
    "markdown. If no transactions can be found, respond with [].\n\n"
    "Example:\n"
    '[{"date":"2024-01-15","description":"GROCERY STORE","debit":45.50,'
    '"credit":null,"balance":1234.50}]'
)

_USER_PROMPT = "Extract all transactions from this bank statement. Return only the JSON array."

_FENCE_OPEN_RE = re.compile(r"^```[A-Za-z]*\s*")


class ExtractionError(RuntimeError):
    pass


class ExtractorNotConfiguredError(ExtractionError):
    pass


class UpstreamError(ExtractionError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamRateLimitedError(UpstreamError):
    pass


class UpstreamQuotaExhaustedError(UpstreamError):
    pass


class Extractor:
    def extract(self, pdf_bytes: bytes) -> list[Transaction]:  # pragma: no cover
        raise NotImplementedError


class GatewayExtractor(Extractor):
    """Sends the PDF to an OpenAI-compatible chat completions gateway."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        model: str,
        timeout_seconds: float = 60.0,
        max_tokens: int = 8000,
        transport: httpx.BaseTransport | None = None,
    ):
        self._api_key = api_key
        self._url = base_url.rstrip("/") + "/chat/completions"
        self._model = model
        self._timeout = timeout_seconds
        self._max_tokens = max_tokens
        self._transport = transport

    def build_payload(self, pdf_bytes: bytes) -> dict[str, Any]:
        encoded = base64.b64encode(pdf_bytes).decode("ascii")
        return {
            "model": self._model,
            "temperature": 0.1,
            "max_tokens": self._max_tokens,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": _USER_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:application/pdf;base64,{encoded}"},
                        },
                    ],
                },
            ],
        }

    def extract(self, pdf_bytes: bytes) -> list[Transaction]:
        if not self._api_key:
            raise ExtractorNotConfiguredError("AI gateway API key is not configured")

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        start = time.monotonic()
        log_event(
            logger,
            "extraction.ai.request",
            model=self._model,
            byte_size=len(pdf_bytes),
        )
        try:
            with httpx.Client(
                transport=self._transport, timeout=self._timeout, follow_redirects=True
            ) as client:
                resp = client.post(self._url, headers=headers, json=self.build_payload(pdf_bytes))
        except httpx.TimeoutException as e:
            log_event(
                logger,
                "extraction.ai.timeout",
                level=logging.WARNING,
                duration_ms=monotonic_ms(start),
            )
            raise UpstreamError("AI gateway timed out") from e
        except httpx.HTTPError as e:
            log_event(
                logger,
                "extraction.ai.transport_error",
                level=logging.WARNING,
                error_type=type(e).__name__,
                duration_ms=monotonic_ms(start),
            )
            raise UpstreamError("AI gateway unreachable") from e

        if resp.status_code >= 400:
            log_event(
                logger,
                "extraction.ai.http_error",
                level=logging.WARNING,
                status_code=resp.status_code,
                duration_ms=monotonic_ms(start),
            )
            _raise_for_upstream_status(resp.status_code)

        try:
            raw = resp.json()
        except ValueError as e:
            raise UpstreamError(
                "AI gateway returned a malformed response", status_code=resp.status_code
            ) from e

        content = _message_content(raw)
        transactions = parse_transactions(content)
        log_event(
            logger,
            "extraction.ai.response",
            status_code=resp.status_code,
            content_chars=len(content),
            transaction_count=len(transactions),
            duration_ms=monotonic_ms(start),
        )
        return transactions


def _raise_for_upstream_status(status_code: int) -> None:
    if status_code == 429:
        raise UpstreamRateLimitedError(
            "Too many requests. Please try again later.", status_code=status_code
        )
    if status_code == 402:
        raise UpstreamQuotaExhaustedError(
            "AI service credits exhausted.", status_code=status_code
        )
    raise UpstreamError(
        f"Failed to process document ({status_code})", status_code=status_code
    )


def _message_content(raw: Any) -> str:
    try:
        content = raw["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return "[]"
    if not isinstance(content, str) or not content.strip():
        return "[]"
    return content


def strip_code_fences(content: str) -> str:
    c = (content or "").strip()
    c = _FENCE_OPEN_RE.sub("", c, count=1)
    if c.endswith("```"):
        c = c[:-3]
    return c.strip()


def parse_transactions(content: str) -> list[Transaction]:
    """
    Parse model output into transaction objects.

    Anything that is not a JSON array yields an empty list; non-object entries are dropped.
    """
    cleaned = strip_code_fences(content)
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        log_event(
            logger,
            "extraction.ai.unparseable",
            level=logging.WARNING,
            content_chars=len(cleaned),
        )
        return []

    if not isinstance(parsed, list):
        log_event(
            logger,
            "extraction.ai.non_array",
            level=logging.WARNING,
            parsed_type=type(parsed).__name__,
        )
        return []

    out = [t for t in parsed if isinstance(t, dict)]
    if len(out) != len(parsed):
        log_event(
            logger,
            "extraction.ai.dropped_entries",
            level=logging.WARNING,
            dropped=len(parsed) - len(out),
        )
    return out


_extractor: Extractor | None = None


def get_extractor() -> Extractor:
    global _extractor  # noqa: PLW0603
    if _extractor is not None:
        return _extractor
    _extractor = GatewayExtractor(
        api_key=settings.ai_api_key,
        base_url=settings.ai_base_url,
        model=settings.ai_model,
        timeout_seconds=settings.ai_timeout_seconds,
        max_tokens=settings.ai_max_tokens,
    )
    return _extractor
