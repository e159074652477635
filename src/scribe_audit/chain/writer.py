"""Chain writer — append hash-chained audit entries inside the caller's unit of work."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, NamedTuple

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from scribe_audit.chain.hashing import (
    GENESIS_HASH,
    as_utc,
    canonical_payload,
    compute_entry_hash,
)
from scribe_audit.chain.models import AuditEntryModel, ChainHeadModel
from scribe_audit.common.config import AuditSettings
from scribe_audit.common.database import insert_or_ignore
from scribe_audit.common.exceptions import (
    AppendConflictError,
    AppendError,
    MalformedEntryError,
    MissingSecretError,
)
from scribe_audit.common.models import generate_uuid, utcnow
from scribe_audit.secrets.service import SecretStore

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


class ChainHead(NamedTuple):
    last_hash: str
    last_created_at: datetime | None


class ChainWriter:
    """Appends entries to per-principal hash chains.

    ``append_entry`` never commits: it runs inside the session of the
    business write it audits, so both commit or both roll back.
    """

    def __init__(self, settings: AuditSettings, secret_store: SecretStore):
        self.settings = settings
        self.secret_store = secret_store

    # ── Write ──

    async def append_entry(
        self,
        session: AsyncSession,
        chain_id: str,
        action: str,
        resource_type: str,
        resource_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEntryModel:
        """Append a new entry to ``chain_id``'s chain.

        Raises AppendError (or AppendConflictError) on any failure; callers
        must treat that as a failed business operation.
        """
        for name, value in (("chain_id", chain_id), ("action", action),
                            ("resource_type", resource_type)):
            if not value:
                raise AppendError(f"Cannot append audit entry without {name}", code="MALFORMED_ENTRY")
        if metadata is None:
            metadata = {}
        elif not isinstance(metadata, dict):
            raise AppendError("Audit entry metadata must be an object", code="MALFORMED_ENTRY")
        metadata = dict(metadata)

        try:
            version, secret = await self.secret_store.current_signing_key(session)
        except MissingSecretError as exc:
            raise AppendError(
                f"Audit append refused: {exc.message}", code=exc.code,
            ) from exc

        max_retries = max(1, self.settings.append_max_retries)
        for attempt in range(max_retries):
            head = await self._load_head(session, chain_id)
            created_at = self._next_timestamp(head)
            try:
                canonical = canonical_payload(
                    action, resource_type, resource_id, metadata, created_at,
                )
            except MalformedEntryError as exc:
                raise AppendError(exc.message, code=exc.code) from exc
            digest = compute_entry_hash(secret, head.last_hash, canonical)
            entry_id = generate_uuid()

            if await self._advance_head(session, chain_id, head, entry_id, digest, created_at):
                entry = AuditEntryModel(
                    id=entry_id,
                    chain_id=chain_id,
                    created_at=created_at,
                    action=action,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    metadata_=metadata,
                    secret_version=version,
                    prev_hash=head.last_hash,
                    hash=digest,
                )
                session.add(entry)
                try:
                    await session.flush()
                except IntegrityError as exc:
                    # Another writer linked to the same predecessor.
                    raise AppendConflictError(
                        f"Chain {chain_id} already continues from {head.last_hash[:12]}"
                    ) from exc
                return entry

            logger.warning(
                "Audit chain head moved during append, retrying",
                extra={"chain_id": chain_id, "attempt": attempt + 1},
            )
            await asyncio.sleep(self.settings.append_retry_backoff * (2 ** attempt))

        raise AppendConflictError(
            f"Could not append to chain {chain_id} after {max_retries} attempts"
        )

    async def _load_head(self, session: AsyncSession, chain_id: str) -> ChainHead:
        result = await session.execute(
            select(ChainHeadModel.last_hash, ChainHeadModel.last_created_at)
            .where(ChainHeadModel.chain_id == chain_id)
        )
        row = result.first()
        if row is not None:
            return ChainHead(row.last_hash, row.last_created_at)

        # First append through the writer: seed from existing entries.
        latest = await self.get_chain_head(session, chain_id)
        last_created_at = (
            await session.execute(
                select(func.max(AuditEntryModel.created_at))
                .where(AuditEntryModel.chain_id == chain_id)
            )
        ).scalar()
        values = {
            "chain_id": chain_id,
            "last_entry_id": latest.id if latest else None,
            "last_hash": latest.hash if latest else GENESIS_HASH,
            "last_created_at": last_created_at,
            "updated_at": utcnow(),
        }
        await insert_or_ignore(session, ChainHeadModel, values, ["chain_id"])

        result = await session.execute(
            select(ChainHeadModel.last_hash, ChainHeadModel.last_created_at)
            .where(ChainHeadModel.chain_id == chain_id)
        )
        row = result.one()
        return ChainHead(row.last_hash, row.last_created_at)

    @staticmethod
    def _next_timestamp(head: ChainHead) -> datetime:
        """Strictly after the head so (created_at, id) order is append order."""
        now = utcnow()
        if head.last_created_at is not None:
            floor = as_utc(head.last_created_at) + _TICK
            if now < floor:
                return floor
        return now

    @staticmethod
    async def _advance_head(
        session: AsyncSession,
        chain_id: str,
        head: ChainHead,
        entry_id: str,
        digest: str,
        created_at: datetime,
    ) -> bool:
        """Compare-and-swap the chain head. Holds the row lock until commit."""
        result = await session.execute(
            update(ChainHeadModel)
            .where(
                and_(
                    ChainHeadModel.chain_id == chain_id,
                    ChainHeadModel.last_hash == head.last_hash,
                )
            )
            .values(
                last_entry_id=entry_id,
                last_hash=digest,
                last_created_at=created_at,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ── Read ──

    async def get_chain_head(
        self, session: AsyncSession, chain_id: str,
    ) -> AuditEntryModel | None:
        """Return the most recent non-grandfathered entry of a chain."""
        result = await session.execute(
            select(AuditEntryModel)
            .where(
                AuditEntryModel.chain_id == chain_id,
                AuditEntryModel.hash.is_not(None),
            )
            .order_by(AuditEntryModel.created_at.desc(), AuditEntryModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_entries(
        self,
        session: AsyncSession,
        chain_id: str,
        action: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEntryModel]:
        """Paginated entry list, newest first."""
        query = select(AuditEntryModel).where(AuditEntryModel.chain_id == chain_id)
        if action:
            query = query.where(AuditEntryModel.action == action)
        query = (
            query.order_by(AuditEntryModel.created_at.desc(), AuditEntryModel.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    async def list_chain_ids(self, session: AsyncSession) -> list[str]:
        result = await session.execute(
            select(AuditEntryModel.chain_id).distinct().order_by(AuditEntryModel.chain_id)
        )
        return list(result.scalars().all())
