from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from statement_converter.api.router import router as api_router
from statement_converter.bootstrap import bootstrap
from statement_converter.core.logging import RequestContextMiddleware
from statement_converter.modules.conversion.api import (
    REMAINING_CONVERSIONS_HEADER,
    TRANSACTIONS_COUNT_HEADER,
)
from statement_converter.modules.conversion.errors import ConversionError
from statement_converter.modules.conversion.schemas import ConversionErrorOut

CORS_ALLOW_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "x-request-id",
]


async def conversion_error_handler(_: Request, exc: ConversionError) -> JSONResponse:
    body = ConversionErrorOut(**exc.to_payload()).model_dump(exclude_none=True)
    return JSONResponse(status_code=exc.status_code, content=body)


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        bootstrap()
        yield

    app = FastAPI(title="Statement Converter", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=CORS_ALLOW_HEADERS,
        expose_headers=[
            TRANSACTIONS_COUNT_HEADER,
            REMAINING_CONVERSIONS_HEADER,
            "Content-Disposition",
        ],
    )
    app.add_exception_handler(ConversionError, conversion_error_handler)
    app.include_router(api_router)
    return app


app = create_app()
