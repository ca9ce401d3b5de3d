from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Literal

import httpx

from statement_converter.core.logging import get_logger, log_event, log_exception

logger = get_logger(__name__)

ConversionStep = Literal["uploading", "parsing", "extracting", "generating", "complete"]

DEFAULT_ERROR_MESSAGE = "Conversion failed"
RATE_LIMIT_FALLBACK_MESSAGE = "Rate limit exceeded. Try again tomorrow."


class ConversionInProgressError(RuntimeError):
    pass


@dataclass(frozen=True)
class ConversionState:
    step: ConversionStep = "uploading"
    progress: int = 0
    error: str | None = None
    is_processing: bool = False


@dataclass(frozen=True)
class ConversionOutcome:
    file_bytes: bytes
    file_name: str
    transaction_count: int
    remaining_quota: int


class _ConversionFailed(Exception):
    pass


def _int_header(response: httpx.Response, name: str) -> int:
    try:
        return int(response.headers.get(name) or "0")
    except ValueError:
        return 0


def error_message_for(response: httpx.Response) -> str:
    """Message to show for a failed response; the server's own wording wins."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if not isinstance(data, dict):
        return DEFAULT_ERROR_MESSAGE
    message = data.get("message")
    if response.status_code == 429:
        return message if isinstance(message, str) and message else RATE_LIMIT_FALLBACK_MESSAGE
    for candidate in (message, data.get("error")):
        if isinstance(candidate, str) and candidate:
            return candidate
    return DEFAULT_ERROR_MESSAGE


class ConversionController:
    """
    Drives one statement conversion at a time against the conversion endpoint.

    Progress values are milestones set around a single request/response; they do not
    reflect server-side progress. Observers get every state change via ``on_change``.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        *,
        endpoint: str = "/convert",
        token_provider: Callable[[], str | None] | None = None,
        on_change: Callable[[ConversionState], None] | None = None,
        step_delay: float = 0.2,
    ):
        self._http = http_client
        self._endpoint = endpoint
        self._token_provider = token_provider
        self._on_change = on_change
        self._step_delay = step_delay
        self._flight = threading.Lock()
        self._state = ConversionState()

    @property
    def state(self) -> ConversionState:
        return self._state

    @property
    def is_processing(self) -> bool:
        return self._state.is_processing

    def _set(self, **changes) -> None:
        self._state = replace(self._state, **changes)
        if self._on_change is not None:
            self._on_change(self._state)

    def reset(self) -> None:
        self._set(step="uploading", progress=0, error=None, is_processing=False)

    def convert(
        self, *, file_name: str, body: bytes, output_format: str = "csv"
    ) -> ConversionOutcome | None:
        if not self._flight.acquire(blocking=False):
            raise ConversionInProgressError("A conversion is already in progress")
        try:
            return self._run(file_name=file_name, body=body, output_format=output_format)
        finally:
            self._set(is_processing=False)
            self._flight.release()

    def _run(self, *, file_name: str, body: bytes, output_format: str) -> ConversionOutcome | None:
        self._set(step="uploading", progress=0, error=None, is_processing=True)
        try:
            self._set(progress=10)
            if self._step_delay > 0:
                time.sleep(self._step_delay)
            self._set(step="parsing", progress=20)

            files = {"file": (file_name, body, "application/pdf")}
            data = {"format": output_format}

            self._set(step="extracting", progress=30)
            headers: dict[str, str] = {}
            token = self._token_provider() if self._token_provider else None
            if token:
                headers["Authorization"] = f"Bearer {token}"
            self._set(progress=40)

            try:
                response = self._http.post(
                    self._endpoint, files=files, data=data, headers=headers
                )
            except httpx.HTTPError as e:
                raise _ConversionFailed(DEFAULT_ERROR_MESSAGE) from e

            self._set(step="generating", progress=70)
            if response.is_error:
                raise _ConversionFailed(error_message_for(response))

            self._set(progress=90)
            outcome = ConversionOutcome(
                file_bytes=response.content,
                file_name=f"{_strip_pdf_suffix(file_name)}.{output_format}",
                transaction_count=_int_header(response, "X-Transactions-Count"),
                remaining_quota=_int_header(response, "X-Remaining-Conversions"),
            )
            self._set(step="complete", progress=100)
            return outcome
        except _ConversionFailed as e:
            self._set(error=str(e))
            log_event(logger, "client.conversion.failed", step=self._state.step)
            return None
        except Exception:
            self._set(error=DEFAULT_ERROR_MESSAGE)
            log_exception(logger, "client.conversion.crashed", step=self._state.step)
            return None


def _strip_pdf_suffix(file_name: str) -> str:
    if file_name.lower().endswith(".pdf"):
        return file_name[:-4]
    return file_name
