from __future__ import annotations

from pydantic import BaseModel


class ConversionErrorOut(BaseModel):
    error: str
    message: str
    remaining: int | None = None
    limit: int | None = None
