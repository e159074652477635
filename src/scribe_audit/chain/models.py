"""SQLAlchemy models for the per-principal audit chain."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, JSON, String, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from scribe_audit.common.exceptions import ImmutableRecordError
from scribe_audit.common.models import Base, generate_uuid, utcnow


class AuditEntryModel(Base):
    """One audit log entry. ``hash`` is NULL for grandfathered entries."""

    __tablename__ = "audit_entries"
    __table_args__ = (
        UniqueConstraint("chain_id", "prev_hash", name="uq_audit_entries_chain_prev_hash"),
        Index("ix_audit_entries_chain_order", "chain_id", "created_at", "id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    chain_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    secret_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    @property
    def grandfathered(self) -> bool:
        return self.hash is None


class ChainHeadModel(Base):
    """Latest hashed position of a chain; the per-chain append lock."""

    __tablename__ = "audit_chain_heads"

    chain_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    last_entry_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    last_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    last_created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


@event.listens_for(AuditEntryModel, "before_update")
def _reject_entry_update(mapper, connection, target):
    raise ImmutableRecordError(f"Audit entry {target.id} is immutable")


@event.listens_for(AuditEntryModel, "before_delete")
def _reject_entry_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Audit entry {target.id} cannot be deleted")
