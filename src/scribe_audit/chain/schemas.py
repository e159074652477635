"""Pydantic schemas for audit chain API responses."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class AuditEntryResponse(BaseModel):
    id: str
    chain_id: str
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    # Raw stored value, so a corrupted row is still listed as-is.
    metadata: Any = None
    secret_version: Optional[int] = None
    prev_hash: Optional[str] = None
    hash: Optional[str] = None
    created_at: datetime
