"""Full and incremental verification of audit chains.

Both verifiers walk a chain in ``(created_at, id)`` order, skip
grandfathered entries, and stop at the first break of each chain.
All-chain passes fan out over a bounded worker pool, one session per
chain, under an overall time budget.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, NamedTuple

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from scribe_audit.chain.hashing import GENESIS_HASH, check_hashable, recompute_hash
from scribe_audit.chain.models import AuditEntryModel
from scribe_audit.common.config import AuditSettings
from scribe_audit.common.database import DatabaseManager, insert_or_ignore
from scribe_audit.common.exceptions import (
    HashMismatchError,
    MalformedEntryError,
    MissingSecretError,
)
from scribe_audit.common.models import utcnow
from scribe_audit.secrets.service import SecretStore
from scribe_audit.verification.models import ChainCursorModel

logger = logging.getLogger(__name__)

INTACT = "intact"
BROKEN = "broken"
ERROR = "error"


@dataclass
class VerificationResult:
    """Outcome of verifying one chain, or the aggregate over many."""

    intact: bool
    total_entries: int = 0
    verified_entries: int = 0
    broken_at_id: str | None = None
    expected: str | None = None
    actual: str | None = None
    reason: str | None = None
    chain_id: str | None = None
    status: str = INTACT
    error: str | None = None
    chains_checked: int = 0
    chains: list["VerificationResult"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Position(NamedTuple):
    created_at: datetime
    entry_id: str


@dataclass
class _Walk:
    result: VerificationResult
    last_position: Position | None
    last_good_hash: str


def _error_result(chain_id: str, message: str) -> VerificationResult:
    return VerificationResult(
        intact=False, chain_id=chain_id, status=ERROR, error=message, chains_checked=1,
    )


def aggregate(outcomes: list[VerificationResult]) -> VerificationResult:
    """Fold per-chain outcomes; the first break in chain_id order is reported."""
    ordered = sorted(outcomes, key=lambda r: r.chain_id or "")
    first_break = next((r for r in ordered if r.status == BROKEN), None)
    errors = [r for r in ordered if r.status == ERROR]
    status = BROKEN if first_break else (ERROR if errors else INTACT)

    result = VerificationResult(
        intact=status == INTACT,
        total_entries=sum(r.total_entries for r in ordered),
        verified_entries=sum(r.verified_entries for r in ordered),
        status=status,
        chains_checked=len(ordered),
        chains=ordered,
    )
    if first_break is not None:
        result.broken_at_id = first_break.broken_at_id
        result.expected = first_break.expected
        result.actual = first_break.actual
        result.reason = first_break.reason
        result.chain_id = first_break.chain_id
    if errors:
        result.error = f"{len(errors)} chain(s) could not be verified"
    return result


class _ChainVerifier(ABC):
    """Per-entry check, keyset-paginated walk, and the bounded fan-out."""

    kind = ""

    def __init__(self, settings: AuditSettings, secret_store: SecretStore):
        self.settings = settings
        self.secret_store = secret_store

    async def _check_entry(
        self, session: AsyncSession, entry: AuditEntryModel, running_hash: str,
    ) -> None:
        check_hashable(entry)
        if entry.prev_hash != running_hash:
            raise HashMismatchError(
                entry.id, running_hash, entry.prev_hash, reason="prev_hash_mismatch",
            )
        secret = await self.secret_store.get_secret(session, entry.secret_version)
        expected = recompute_hash(secret, running_hash, entry)
        if expected != entry.hash:
            raise HashMismatchError(entry.id, expected, entry.hash)

    async def _fetch_batch(
        self, session: AsyncSession, chain_id: str, after: Position | None,
    ) -> list[AuditEntryModel]:
        query = select(AuditEntryModel).where(AuditEntryModel.chain_id == chain_id)
        if after is not None:
            query = query.where(
                or_(
                    AuditEntryModel.created_at > after.created_at,
                    and_(
                        AuditEntryModel.created_at == after.created_at,
                        AuditEntryModel.id > after.entry_id,
                    ),
                )
            )
        query = query.order_by(
            AuditEntryModel.created_at.asc(), AuditEntryModel.id.asc()
        ).limit(self.settings.verify_batch_size)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def _walk(
        self,
        session: AsyncSession,
        chain_id: str,
        running_hash: str,
        after: Position | None = None,
    ) -> _Walk:
        total = verified = 0
        position = after
        while True:
            batch = await self._fetch_batch(session, chain_id, position)
            if not batch:
                break
            for entry in batch:
                total += 1
                position = Position(entry.created_at, entry.id)
                if entry.hash is None:
                    # Grandfathered: invisible to the chain.
                    continue
                try:
                    await self._check_entry(session, entry, running_hash)
                except HashMismatchError as exc:
                    broken = VerificationResult(
                        intact=False, total_entries=total, verified_entries=verified,
                        broken_at_id=exc.entry_id, expected=exc.expected,
                        actual=exc.actual, reason=exc.reason, chain_id=chain_id,
                        status=BROKEN, chains_checked=1,
                    )
                    return _Walk(broken, position, running_hash)
                except MissingSecretError as exc:
                    broken = VerificationResult(
                        intact=False, total_entries=total, verified_entries=verified,
                        broken_at_id=entry.id, actual=entry.hash, reason="missing_secret",
                        chain_id=chain_id, status=BROKEN, error=exc.message,
                        chains_checked=1,
                    )
                    return _Walk(broken, position, running_hash)
                except MalformedEntryError as exc:
                    broken = VerificationResult(
                        intact=False, total_entries=total, verified_entries=verified,
                        broken_at_id=entry.id, actual=entry.hash, reason="malformed_entry",
                        chain_id=chain_id, status=BROKEN, error=exc.message,
                        chains_checked=1,
                    )
                    return _Walk(broken, position, running_hash)
                running_hash = entry.hash
                verified += 1
            session.expunge_all()

        intact = VerificationResult(
            intact=True, total_entries=total, verified_entries=verified,
            chain_id=chain_id, chains_checked=1,
        )
        return _Walk(intact, position, running_hash)

    @abstractmethod
    async def _verify_one(self, db: DatabaseManager, chain_id: str) -> VerificationResult:
        """Verify one chain in its own session."""

    async def _run(self, db: DatabaseManager, chain_id: str | None) -> VerificationResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.verify_timeout_seconds

        if chain_id is not None:
            chain_ids = [chain_id]
        else:
            async with db.get_session() as session:
                result = await session.execute(
                    select(AuditEntryModel.chain_id).distinct()
                    .order_by(AuditEntryModel.chain_id)
                )
                chain_ids = list(result.scalars().all())

        semaphore = asyncio.Semaphore(max(1, self.settings.verify_concurrency))

        async def guarded(cid: str) -> VerificationResult:
            async with semaphore:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return _error_result(cid, "verification timed out")
                try:
                    outcome = await asyncio.wait_for(self._verify_one(db, cid), timeout=remaining)
                except asyncio.TimeoutError:
                    logger.error(
                        "Chain verification timed out",
                        extra={"chain_id": cid, "kind": self.kind},
                    )
                    return _error_result(cid, "verification timed out")
                except Exception as exc:
                    logger.exception(
                        "Chain verification failed",
                        extra={"chain_id": cid, "kind": self.kind},
                    )
                    return _error_result(cid, f"{type(exc).__name__}: {exc}")
                if outcome.status == BROKEN:
                    logger.error(
                        "Audit chain break detected",
                        extra={
                            "chain_id": cid,
                            "kind": self.kind,
                            "broken_at_id": outcome.broken_at_id,
                            "reason": outcome.reason,
                        },
                    )
                return outcome

        outcomes = await asyncio.gather(*(guarded(cid) for cid in chain_ids))
        if chain_id is not None:
            return outcomes[0]
        return aggregate(list(outcomes))


class FullVerifier(_ChainVerifier):
    """Recompute whole chains from the seed value."""

    kind = "full"

    async def verify_chain(
        self, db: DatabaseManager, chain_id: str | None = None,
    ) -> VerificationResult:
        """Verify one chain, or every chain when ``chain_id`` is omitted."""
        return await self._run(db, chain_id)

    async def _verify_one(self, db: DatabaseManager, chain_id: str) -> VerificationResult:
        async with db.get_session() as session:
            walk = await self._walk(session, chain_id, GENESIS_HASH)
        return walk.result


class IncrementalVerifier(_ChainVerifier):
    """Verify only entries appended after each chain's cursor."""

    kind = "incremental"

    async def verify_incremental(
        self, db: DatabaseManager, chain_id: str | None = None,
    ) -> VerificationResult:
        return await self._run(db, chain_id)

    async def get_cursor(
        self, session: AsyncSession, chain_id: str,
    ) -> ChainCursorModel | None:
        return await session.get(ChainCursorModel, chain_id)

    async def _verify_one(self, db: DatabaseManager, chain_id: str) -> VerificationResult:
        async with db.get_session() as session:
            cursor = await self.get_cursor(session, chain_id)
            if cursor is None:
                start, after, start_id = GENESIS_HASH, None, None
            else:
                start = cursor.last_good_hash
                start_id = cursor.last_verified_id
                after = (
                    Position(cursor.last_verified_created_at, cursor.last_verified_id)
                    if cursor.last_verified_id is not None
                    else None
                )
            walk = await self._walk(session, chain_id, start, after)

        if walk.result.status != INTACT:
            return walk.result

        # Cursor writes run in their own short unit of work after the pass.
        async with db.get_session() as session:
            if cursor is None:
                await self._create_cursor(session, chain_id, walk)
            elif walk.last_position is not None and walk.last_position != after:
                await self._advance_cursor(session, chain_id, start_id, walk)
        return walk.result

    @staticmethod
    async def _create_cursor(session: AsyncSession, chain_id: str, walk: _Walk) -> None:
        position = walk.last_position
        await insert_or_ignore(
            session,
            ChainCursorModel,
            {
                "chain_id": chain_id,
                "last_verified_id": position.entry_id if position else None,
                "last_verified_created_at": position.created_at if position else None,
                "last_good_hash": walk.last_good_hash,
                "updated_at": utcnow(),
            },
            ["chain_id"],
        )

    @staticmethod
    async def _advance_cursor(
        session: AsyncSession, chain_id: str, previous_id: str | None, walk: _Walk,
    ) -> None:
        """Compare-and-swap on the previous position; a concurrent run may win."""
        if previous_id is None:
            at_previous = ChainCursorModel.last_verified_id.is_(None)
        else:
            at_previous = ChainCursorModel.last_verified_id == previous_id
        result = await session.execute(
            update(ChainCursorModel)
            .where(ChainCursorModel.chain_id == chain_id, at_previous)
            .values(
                last_verified_id=walk.last_position.entry_id,
                last_verified_created_at=walk.last_position.created_at,
                last_good_hash=walk.last_good_hash,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "Chain cursor already moved by a concurrent run",
                extra={"chain_id": chain_id},
            )
