"""Pydantic schemas for verification results and run history."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class ChainVerification(BaseModel):
    intact: bool
    status: str
    total_entries: int
    verified_entries: int
    broken_at_id: Optional[str] = None
    expected: Optional[str] = None
    actual: Optional[str] = None
    reason: Optional[str] = None
    chain_id: Optional[str] = None
    error: Optional[str] = None


class VerificationResponse(ChainVerification):
    chains_checked: int = 0
    chains: list[ChainVerification] = []
    run_id: Optional[str] = None


class VerificationRunResponse(BaseModel):
    id: str
    run_at: datetime
    kind: str
    chain_id: Optional[str] = None
    status: str
    intact: bool
    total_entries: int
    verified_entries: int
    chains_checked: int
    broken_at_id: Optional[str] = None
    broken_chain_id: Optional[str] = None
    expected: Optional[str] = None
    actual: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0
    details: dict[str, Any] = {}

    model_config = {"from_attributes": True}


class RunSummary(BaseModel):
    total_runs: int
    failed_runs: int
    error_runs: int
    success_rate: Optional[float] = None
