from __future__ import annotations

from fastapi import APIRouter

from statement_converter.modules.conversion.api import router as conversion_router
from statement_converter.modules.identity.api import router as identity_router

router = APIRouter()

router.include_router(identity_router, prefix="/api")
router.include_router(conversion_router)


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}
