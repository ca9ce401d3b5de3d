from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Literal

from sqlalchemy.exc import SQLAlchemyError

from statement_converter.core.config import settings
from statement_converter.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    set_identity_context,
)
from statement_converter.modules.conversion.errors import (
    ConversionError,
    ConversionFailedError,
    InvalidUploadError,
    NoTransactionsFoundError,
    QuotaExceededError,
    UpstreamRateLimitedConversionError,
    UpstreamUnavailableError,
    UsageTrackingUnavailableError,
)
from statement_converter.modules.exports.encoders import encode_transactions, normalize_format
from statement_converter.modules.extraction.ai import (
    ExtractionError,
    Extractor,
    ExtractorNotConfiguredError,
    Transaction,
    UpstreamQuotaExhaustedError,
    UpstreamRateLimitedError,
)
from statement_converter.modules.usage.service import Identity, admit
from statement_converter.modules.usage.store import QuotaStore, QuotaStoreError

logger = get_logger(__name__)

ChargePolicy = Literal["attempt", "valid_attempt"]

_PDF_SUFFIX_RE = re.compile(r"\.pdf$", re.IGNORECASE)
_UNSAFE_FILENAME_CHARS_RE = re.compile(r'["\\/\x00-\x1f\x7f]')


@dataclass(frozen=True)
class UploadRequest:
    filename: str | None
    content_type: str | None
    body: bytes | None
    output_format: str = "csv"


@dataclass(frozen=True)
class ConversionResult:
    body: bytes
    media_type: str
    file_name: str
    transaction_count: int
    remaining_quota: int


def validate_upload(upload: UploadRequest, *, max_bytes: int) -> None:
    if not upload.body:
        raise InvalidUploadError("No file provided")
    if "pdf" not in (upload.content_type or "").lower():
        raise InvalidUploadError("Only PDF files are supported")
    if len(upload.body) > max_bytes:
        max_mb = max_bytes // (1024 * 1024)
        raise InvalidUploadError(f"File size must be less than {max_mb}MB")


def output_file_name(filename: str | None, extension: str) -> str:
    name = re.split(r"[\\/]", filename or "")[-1]
    stem = _UNSAFE_FILENAME_CHARS_RE.sub("", _PDF_SUFFIX_RE.sub("", name)).strip()
    return f"{stem or 'statement'}.{extension}"


class ConversionService:
    """
    Runs one conversion: admission, validation, extraction, encoding.

    With the default ``"attempt"`` charge policy the quota is charged before the upload
    is validated, so a rejected upload still uses one conversion. ``"valid_attempt"``
    validates first and only charges uploads that pass validation.
    """

    def __init__(
        self,
        *,
        quota_store: QuotaStore,
        extractor: Extractor,
        charge_policy: ChargePolicy = "attempt",
        max_upload_bytes: int = 10 * 1024 * 1024,
        xlsx_mode: Literal["tsv", "workbook"] = "tsv",
    ):
        self._quota_store = quota_store
        self._extractor = extractor
        self._charge_policy = charge_policy
        self._max_upload_bytes = max_upload_bytes
        self._xlsx_mode = xlsx_mode

    @classmethod
    def from_settings(cls, *, quota_store: QuotaStore, extractor: Extractor) -> ConversionService:
        return cls(
            quota_store=quota_store,
            extractor=extractor,
            charge_policy=settings.quota_charge_policy,
            max_upload_bytes=settings.max_upload_bytes,
            xlsx_mode=settings.xlsx_mode,
        )

    @property
    def max_upload_bytes(self) -> int:
        return self._max_upload_bytes

    def convert(self, *, identity: Identity, upload: UploadRequest) -> ConversionResult:
        set_identity_context(identity.kind)
        start = time.monotonic()
        output_format = normalize_format(upload.output_format)
        log_event(
            logger,
            "conversion.request.received",
            output_format=output_format,
            content_type=upload.content_type,
            byte_size=len(upload.body) if upload.body is not None else None,
            charge_policy=self._charge_policy,
        )
        try:
            if self._charge_policy == "valid_attempt":
                validate_upload(upload, max_bytes=self._max_upload_bytes)
                remaining = self._admit(identity)
            else:
                remaining = self._admit(identity)
                validate_upload(upload, max_bytes=self._max_upload_bytes)

            transactions = self._extract(upload.body or b"")
            if not transactions:
                raise NoTransactionsFoundError()

            encoded = encode_transactions(transactions, output_format, xlsx_mode=self._xlsx_mode)
        except ConversionError as e:
            log_event(
                logger,
                "conversion.request.rejected",
                status_code=e.status_code,
                error=e.error,
                duration_ms=monotonic_ms(start),
            )
            raise
        except Exception as e:
            log_exception(logger, "conversion.request.failure", duration_ms=monotonic_ms(start))
            raise ConversionFailedError() from e

        result = ConversionResult(
            body=encoded.body,
            media_type=encoded.media_type,
            file_name=output_file_name(upload.filename, encoded.extension),
            transaction_count=len(transactions),
            remaining_quota=remaining,
        )
        log_event(
            logger,
            "conversion.request.completed",
            output_format=output_format,
            transaction_count=result.transaction_count,
            remaining=result.remaining_quota,
            output_bytes=len(result.body),
            duration_ms=monotonic_ms(start),
        )
        return result

    def _admit(self, identity: Identity) -> int:
        try:
            decision, limit = admit(self._quota_store, identity)
        except (QuotaStoreError, SQLAlchemyError) as e:
            # Fail closed: no counter, no conversion.
            raise UsageTrackingUnavailableError() from e
        if not decision.allowed:
            raise QuotaExceededError.for_limit(limit=limit, authenticated=identity.is_authenticated)
        return decision.remaining

    def _extract(self, pdf_bytes: bytes) -> list[Transaction]:
        try:
            return self._extractor.extract(pdf_bytes)
        except UpstreamRateLimitedError as e:
            raise UpstreamRateLimitedConversionError() from e
        except UpstreamQuotaExhaustedError as e:
            raise UpstreamUnavailableError() from e
        except ExtractorNotConfiguredError as e:
            log_exception(logger, "extraction.not_configured")
            raise ConversionFailedError("Conversion service is not configured.") from e
        except ExtractionError as e:
            log_event(
                logger,
                "extraction.failed",
                error_type=type(e).__name__,
                upstream_status=getattr(e, "status_code", None),
            )
            raise ConversionFailedError(
                "Failed to process document. Please try again."
            ) from e
