"""Pydantic schemas for secret administration. Never carry secret material out."""

from datetime import datetime

from pydantic import BaseModel, Field


class SecretCreate(BaseModel):
    version: int = Field(..., ge=1)
    secret: str = Field(..., min_length=1, repr=False)


class DefaultVersionUpdate(BaseModel):
    version: int = Field(..., ge=1)


class SecretVersionResponse(BaseModel):
    version: int
    created_at: datetime
    is_default: bool = False
