"""Secret administration API router (restricted, human-operated)."""

from fastapi import APIRouter, Depends, HTTPException

from scribe_audit.common.exceptions import (
    InvalidSecretError,
    MissingSecretError,
    SecretVersionExistsError,
)
from scribe_audit.common.security import require_admin_key
from scribe_audit.secrets.schemas import (
    DefaultVersionUpdate,
    SecretCreate,
    SecretVersionResponse,
)

router = APIRouter()


def _get_store():
    from scribe_audit.deps import get_secret_store
    return get_secret_store()


def _get_db():
    from scribe_audit.deps import get_db
    return get_db()


@router.get("/admin/secrets", response_model=list[SecretVersionResponse])
async def list_secret_versions(_=Depends(require_admin_key)):
    store = _get_store()
    db = _get_db()
    async with db.get_session() as session:
        versions = await store.list_versions(session)
        return [
            SecretVersionResponse(
                version=v.version, created_at=v.created_at, is_default=v.is_default,
            )
            for v in versions
        ]


@router.post("/admin/secrets", response_model=SecretVersionResponse, status_code=201)
async def add_secret(body: SecretCreate, _=Depends(require_admin_key)):
    store = _get_store()
    db = _get_db()
    try:
        async with db.get_session() as session:
            row = await store.add_secret(session, body.version, body.secret)
            return SecretVersionResponse(version=row.version, created_at=row.created_at)
    except SecretVersionExistsError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except InvalidSecretError as e:
        raise HTTPException(status_code=422, detail=e.message)


@router.put("/admin/secrets/default", response_model=SecretVersionResponse)
async def set_default_version(body: DefaultVersionUpdate, _=Depends(require_admin_key)):
    store = _get_store()
    db = _get_db()
    try:
        async with db.get_session() as session:
            await store.set_default_version(session, body.version)
            versions = await store.list_versions(session)
    except MissingSecretError as e:
        raise HTTPException(status_code=404, detail=e.message)
    current = next(v for v in versions if v.version == body.version)
    return SecretVersionResponse(
        version=current.version, created_at=current.created_at, is_default=True,
    )
