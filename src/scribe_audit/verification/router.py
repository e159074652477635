"""Verification API router for operator dashboards."""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query

from scribe_audit.common.security import require_api_key
from scribe_audit.verification.schemas import (
    ChainVerification,
    RunSummary,
    VerificationResponse,
    VerificationRunResponse,
)
from scribe_audit.verification.verifier import VerificationResult

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_db():
    from scribe_audit.deps import get_db
    return get_db()


def _get_recorder():
    from scribe_audit.deps import get_run_recorder
    return get_run_recorder()


def _response(result: VerificationResult, run_id: str | None = None) -> VerificationResponse:
    data = result.to_dict()
    chains = [ChainVerification(**c) for c in data.pop("chains")]
    data.pop("chains_checked")
    return VerificationResponse(
        **data, chains_checked=result.chains_checked, chains=chains, run_id=run_id,
    )


async def _verify(kind: str, chain_id: str | None, record: bool) -> VerificationResponse:
    from scribe_audit.deps import get_full_verifier, get_incremental_verifier

    db = _get_db()
    try:
        if kind == "full":
            result = await get_full_verifier().verify_chain(db, chain_id)
        else:
            result = await get_incremental_verifier().verify_incremental(db, chain_id)
    except Exception:
        logger.exception("Verification request failed", extra={"kind": kind, "chain_id": chain_id})
        raise HTTPException(status_code=503, detail="Verification could not complete")

    run_id = None
    if record:
        async with db.get_session() as session:
            run = await _get_recorder().record(
                session, result, kind, chain_id=chain_id, source="api",
            )
            run_id = run.id
    return _response(result, run_id)


@router.post("/audit/verify", response_model=VerificationResponse)
async def verify_chain(
    chain_id: str | None = Query(None),
    record: bool = Query(False),
    _=Depends(require_api_key),
):
    return await _verify("full", chain_id, record)


@router.post("/audit/verify/incremental", response_model=VerificationResponse)
async def verify_incremental(
    chain_id: str | None = Query(None),
    record: bool = Query(False),
    _=Depends(require_api_key),
):
    return await _verify("incremental", chain_id, record)


@router.get("/audit/runs", response_model=list[VerificationRunResponse])
async def list_runs(
    kind: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _=Depends(require_api_key),
):
    db = _get_db()
    async with db.get_session() as session:
        runs = await _get_recorder().list_runs(session, kind=kind, limit=limit, offset=offset)
        return [VerificationRunResponse.model_validate(r) for r in runs]


@router.get("/audit/runs/latest", response_model=VerificationRunResponse)
async def latest_run(kind: str | None = Query(None), _=Depends(require_api_key)):
    db = _get_db()
    async with db.get_session() as session:
        run = await _get_recorder().latest_run(session, kind=kind)
        if run is None:
            raise HTTPException(status_code=404, detail="No verification runs recorded")
        return VerificationRunResponse.model_validate(run)


@router.get("/audit/runs/summary", response_model=RunSummary)
async def runs_summary(
    days: int = Query(7, ge=1, le=366),
    _=Depends(require_api_key),
):
    since = datetime.now(timezone.utc) - timedelta(days=days)
    db = _get_db()
    async with db.get_session() as session:
        return RunSummary(**await _get_recorder().summarize(session, since=since))
