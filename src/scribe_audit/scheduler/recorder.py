"""Run recorder — append-only history of verification passes."""

from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from scribe_audit.verification.models import VerificationRunModel
from scribe_audit.verification.verifier import BROKEN, ERROR, VerificationResult


class RunRecorder:
    """Persist and query VerificationRun records for dashboards and alerts."""

    async def record(
        self,
        session: AsyncSession,
        result: VerificationResult,
        kind: str,
        chain_id: str | None = None,
        source: str = "scheduler",
        duration_ms: int = 0,
    ) -> VerificationRunModel:
        details: dict[str, Any] = {"source": source}
        failed = [
            {
                "chain_id": r.chain_id,
                "status": r.status,
                "broken_at_id": r.broken_at_id,
                "reason": r.reason,
                "error": r.error,
            }
            for r in result.chains
            if r.status in (BROKEN, ERROR)
        ]
        if failed:
            details["failed_chains"] = failed

        run = VerificationRunModel(
            kind=kind,
            chain_id=chain_id,
            status=result.status,
            intact=result.intact,
            total_entries=result.total_entries,
            verified_entries=result.verified_entries,
            chains_checked=result.chains_checked,
            broken_at_id=result.broken_at_id,
            broken_chain_id=result.chain_id if result.status == BROKEN else None,
            expected=result.expected,
            actual=result.actual,
            reason=result.reason,
            error=result.error,
            duration_ms=duration_ms,
            details=details,
        )
        session.add(run)
        await session.flush()
        return run

    async def list_runs(
        self,
        session: AsyncSession,
        kind: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[VerificationRunModel]:
        """Run history, newest first."""
        query = select(VerificationRunModel)
        if kind:
            query = query.where(VerificationRunModel.kind == kind)
        query = (
            query.order_by(VerificationRunModel.run_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    async def latest_run(
        self, session: AsyncSession, kind: str | None = None,
    ) -> VerificationRunModel | None:
        runs = await self.list_runs(session, kind=kind, limit=1)
        return runs[0] if runs else None

    async def summarize(
        self, session: AsyncSession, since: datetime | None = None,
    ) -> dict[str, Any]:
        """Counts of runs by outcome; success_rate is None with no runs."""
        query = select(VerificationRunModel.status, func.count(VerificationRunModel.id))
        if since is not None:
            query = query.where(VerificationRunModel.run_at >= since)
        query = query.group_by(VerificationRunModel.status)
        counts = {status: n for status, n in (await session.execute(query)).all()}

        total = sum(counts.values())
        failed = counts.get(BROKEN, 0)
        errors = counts.get(ERROR, 0)
        return {
            "total_runs": total,
            "failed_runs": failed,
            "error_runs": errors,
            "success_rate": round((total - failed - errors) / total * 100, 2) if total else None,
        }
