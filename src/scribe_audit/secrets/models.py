"""SQLAlchemy models for versioned audit secrets."""

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from scribe_audit.common.models import Base, TimestampMixin


class SecretVersionModel(Base, TimestampMixin):
    __tablename__ = "audit_secrets"

    version: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    secret: Mapped[str] = mapped_column(String(512), nullable=False)

    def __repr__(self) -> str:
        return f"<SecretVersionModel version={self.version} secret=***>"


class DefaultSecretVersionModel(Base, TimestampMixin):
    """Append-only history of the default signing version; newest row wins."""

    __tablename__ = "audit_secret_defaults"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    secret_version: Mapped[int] = mapped_column(
        Integer, ForeignKey("audit_secrets.version"), nullable=False
    )
