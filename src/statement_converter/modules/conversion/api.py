from __future__ import annotations

from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from statement_converter.api.deps import get_request_identity
from statement_converter.modules.conversion.schemas import ConversionErrorOut
from statement_converter.modules.conversion.service import (
    ConversionResult,
    ConversionService,
    UploadRequest,
)
from statement_converter.modules.extraction.ai import get_extractor
from statement_converter.modules.usage.service import Identity
from statement_converter.modules.usage.store import get_quota_store

router = APIRouter(tags=["conversion"])

TRANSACTIONS_COUNT_HEADER = "X-Transactions-Count"
REMAINING_CONVERSIONS_HEADER = "X-Remaining-Conversions"

_ERROR_RESPONSES = {
    code: {"model": ConversionErrorOut} for code in (400, 422, 429, 500, 503)
}


def get_conversion_service() -> ConversionService:
    return ConversionService.from_settings(
        quota_store=get_quota_store(), extractor=get_extractor()
    )


def content_disposition(file_name: str) -> str:
    try:
        file_name.encode("ascii")
    except UnicodeEncodeError:
        fallback = file_name.encode("ascii", errors="ignore").decode("ascii").strip()
        if not fallback or fallback.startswith("."):
            fallback = "statement" + fallback
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(file_name)}"
    return f'attachment; filename="{file_name}"'


def _file_response(result: ConversionResult) -> Response:
    return Response(
        content=result.body,
        media_type=result.media_type,
        headers={
            "Content-Disposition": content_disposition(result.file_name),
            TRANSACTIONS_COUNT_HEADER: str(result.transaction_count),
            REMAINING_CONVERSIONS_HEADER: str(result.remaining_quota),
        },
    )


@router.post("/convert", responses=_ERROR_RESPONSES)
@router.post("/functions/v1/convert-statement", include_in_schema=False)
async def convert_statement(
    file: UploadFile | None = File(None),
    output_format: str = Form("csv", alias="format"),
    identity: Identity = Depends(get_request_identity),
    service: ConversionService = Depends(get_conversion_service),
) -> Response:
    # One byte past the cap is enough for the size check to reject the upload.
    body = await file.read(service.max_upload_bytes + 1) if file is not None else None
    upload = UploadRequest(
        filename=file.filename if file is not None else None,
        content_type=file.content_type if file is not None else None,
        body=body,
        output_format=output_format,
    )
    result = await run_in_threadpool(service.convert, identity=identity, upload=upload)
    return _file_response(result)
