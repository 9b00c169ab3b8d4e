"""Shared response models for the HTTP layer."""
from __future__ import annotations

from typing import Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field


class ErrorBody(BaseModel):
    error: str


class BlocklistStatus(BaseModel):
    loaded: bool
    size: int = Field(default=0, ge=0)


class HealthReport(BaseModel):
    status: str
    blocklist: BlocklistStatus
    upstream: Optional[dict] = None


def ok(data: object) -> dict:
    return {"status": "ok", "data": data}


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorBody(error=message).model_dump())
