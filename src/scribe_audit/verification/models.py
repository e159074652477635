"""SQLAlchemy models for verification cursors and run history."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, JSON, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from scribe_audit.common.exceptions import ImmutableRecordError
from scribe_audit.common.models import Base, generate_uuid, utcnow


class ChainCursorModel(Base):
    """How far incremental verification has successfully progressed."""

    __tablename__ = "audit_chain_cursors"

    chain_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    last_verified_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    last_verified_created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_good_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class VerificationRunModel(Base):
    __tablename__ = "audit_verify_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    chain_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    intact: Mapped[bool] = mapped_column(Boolean, nullable=False)
    total_entries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    verified_entries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    chains_checked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    broken_at_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    broken_chain_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expected: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actual: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    details: Mapped[dict] = mapped_column(JSON, default=dict)


@event.listens_for(VerificationRunModel, "before_update")
def _reject_run_update(mapper, connection, target):
    raise ImmutableRecordError(f"Verification run {target.id} is immutable")


@event.listens_for(VerificationRunModel, "before_delete")
def _reject_run_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Verification run {target.id} cannot be deleted")
