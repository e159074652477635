"""Audit chain read API router. Appends happen in-process, never over HTTP."""

from fastapi import APIRouter, Depends, Query

from scribe_audit.chain.schemas import AuditEntryResponse
from scribe_audit.common.security import require_api_key

router = APIRouter()


def _get_writer():
    from scribe_audit.deps import get_chain_writer
    return get_chain_writer()


def _get_db():
    from scribe_audit.deps import get_db
    return get_db()


@router.get("/audit/chains", response_model=list[str])
async def list_chains(_=Depends(require_api_key)):
    writer = _get_writer()
    db = _get_db()
    async with db.get_session() as session:
        return await writer.list_chain_ids(session)


@router.get("/audit/chains/{chain_id}/entries", response_model=list[AuditEntryResponse])
async def get_chain_entries(
    chain_id: str,
    action: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _=Depends(require_api_key),
):
    writer = _get_writer()
    db = _get_db()
    async with db.get_session() as session:
        entries = await writer.get_entries(
            session, chain_id, action=action, limit=limit, offset=offset,
        )
        return [
            AuditEntryResponse(
                id=e.id,
                chain_id=e.chain_id,
                action=e.action,
                resource_type=e.resource_type,
                resource_id=e.resource_id,
                metadata=e.metadata_,
                secret_version=e.secret_version,
                prev_hash=e.prev_hash,
                hash=e.hash,
                created_at=e.created_at,
            )
            for e in entries
        ]
