"""Periodic verification scheduler.

Incremental passes run every few minutes, full passes on a long cadence.
Every invocation is wrapped in a VerificationRun; verification failures
are data, not exceptions, so the loop keeps running.
"""

import asyncio
import enum
import logging
import time

from scribe_audit.common.config import AuditSettings
from scribe_audit.common.database import DatabaseManager
from scribe_audit.scheduler.recorder import RunRecorder
from scribe_audit.verification.models import VerificationRunModel
from scribe_audit.verification.verifier import (
    BROKEN,
    ERROR,
    FullVerifier,
    IncrementalVerifier,
    VerificationResult,
)

logger = logging.getLogger(__name__)

FULL = "full"
INCREMENTAL = "incremental"


class ExitStatus(enum.IntEnum):
    INTACT = 0
    BROKEN = 1
    ERROR = 2


def exit_status(status: str) -> ExitStatus:
    """Map a run status to a process exit code. A break outranks an error."""
    if status == BROKEN:
        return ExitStatus.BROKEN
    if status == ERROR:
        return ExitStatus.ERROR
    return ExitStatus.INTACT


class VerificationScheduler:
    def __init__(
        self,
        settings: AuditSettings,
        db: DatabaseManager,
        full_verifier: FullVerifier,
        incremental_verifier: IncrementalVerifier,
        recorder: RunRecorder,
    ):
        self.settings = settings
        self.db = db
        self.full_verifier = full_verifier
        self.incremental_verifier = incremental_verifier
        self.recorder = recorder

    async def run_once(
        self,
        kind: str = INCREMENTAL,
        chain_id: str | None = None,
        source: str = "scheduler",
    ) -> VerificationRunModel:
        """Run one verification pass and persist its VerificationRun."""
        if kind not in (FULL, INCREMENTAL):
            raise ValueError(f"Unknown verification kind: {kind!r}")

        started = time.monotonic()
        try:
            if kind == FULL:
                result = await self.full_verifier.verify_chain(self.db, chain_id)
            else:
                result = await self.incremental_verifier.verify_incremental(self.db, chain_id)
        except Exception as exc:
            logger.exception("Verification pass failed", extra={"kind": kind, "chain_id": chain_id})
            result = VerificationResult(
                intact=False, chain_id=chain_id, status=ERROR,
                error=f"{type(exc).__name__}: {exc}",
            )
        duration_ms = int((time.monotonic() - started) * 1000)

        async with self.db.get_session() as session:
            run = await self.recorder.record(
                session, result, kind,
                chain_id=chain_id, source=source, duration_ms=duration_ms,
            )

        log_extra = {
            "run_id": run.id,
            "kind": kind,
            "status": run.status,
            "source": source,
            "chains_checked": run.chains_checked,
            "verified_entries": run.verified_entries,
            "total_entries": run.total_entries,
        }
        if run.status == BROKEN:
            logger.error(
                "Audit chain verification detected tampering or corruption",
                extra={**log_extra, "chain_id": run.broken_chain_id,
                       "broken_at_id": run.broken_at_id, "reason": run.reason},
            )
        elif run.status == ERROR:
            logger.error("Audit chain verification could not complete", extra=log_extra)
        else:
            logger.info("Audit chain verification intact", extra=log_extra)
        return run

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Drive both cadences until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        loop = asyncio.get_running_loop()
        next_incremental = loop.time()
        next_full = loop.time() + self.settings.full_interval_seconds

        while not stop_event.is_set():
            now = loop.time()
            if now >= next_full:
                await self._safe_run(FULL)
                next_full = now + self.settings.full_interval_seconds
            if now >= next_incremental:
                await self._safe_run(INCREMENTAL)
                next_incremental = now + self.settings.incremental_interval_seconds

            wait = max(0.0, min(next_incremental, next_full) - loop.time())
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass

    async def _safe_run(self, kind: str) -> None:
        try:
            await self.run_once(kind, source="scheduler")
        except Exception:
            # Recording itself failed (e.g. database down); try again next tick.
            logger.exception("Could not record verification run", extra={"kind": kind})
