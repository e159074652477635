"""Secret store — versioned HMAC keys for the audit chain.

Held by the chain writer and verifiers, and by the restricted
administration surface.  Raw secret material only leaves it as the key
handed to the hashing functions.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from scribe_audit.common.config import AuditSettings
from scribe_audit.common.exceptions import (
    InvalidSecretError,
    MissingSecretError,
    SecretVersionExistsError,
)
from scribe_audit.secrets.models import DefaultSecretVersionModel, SecretVersionModel

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 16

PLACEHOLDER_SECRETS: frozenset[str] = frozenset({
    "CHANGE-THIS-AUDIT-SECRET-IN-PRODUCTION",
    "default-audit-secret-CHANGE-IN-PRODUCTION",
    "insecure-audit-secret-change-me",
})


@dataclass
class SecretVersionInfo:
    """Secret metadata safe to show to administrators."""

    version: int
    created_at: datetime
    is_default: bool


class SecretStore:
    """Append-only store of versioned audit secrets."""

    def __init__(self, settings: AuditSettings):
        self.settings = settings
        # Issued versions never change, so material can be cached.
        # The default version is always read from storage.
        self._cache: dict[int, str] = {}

    # ── Read (writer / verifiers only) ──

    async def get_secret(self, session: AsyncSession, version: int) -> str:
        """Return secret material for ``version`` or raise MissingSecretError."""
        cached = self._cache.get(version)
        if cached is not None:
            return cached
        row = await session.get(SecretVersionModel, version)
        if row is None:
            raise MissingSecretError(
                f"Audit secret version {version} is not provisioned", version=version,
            )
        self._cache[version] = row.secret
        return row.secret

    async def get_default_version(self, session: AsyncSession) -> int:
        result = await session.execute(
            select(DefaultSecretVersionModel.secret_version)
            .order_by(DefaultSecretVersionModel.id.desc())
            .limit(1)
        )
        version = result.scalar_one_or_none()
        if version is None:
            raise MissingSecretError("No default audit secret version configured")
        return version

    async def current_signing_key(self, session: AsyncSession) -> tuple[int, str]:
        """Resolve the default version and its secret in one step."""
        version = await self.get_default_version(session)
        return version, await self.get_secret(session, version)

    # ── Administration ──

    async def add_secret(
        self, session: AsyncSession, version: int, secret: str,
    ) -> SecretVersionModel:
        """Issue a new secret version. Existing versions are never overwritten."""
        if version < 1:
            raise InvalidSecretError("Secret versions start at 1")
        if secret in PLACEHOLDER_SECRETS:
            raise InvalidSecretError("Refusing to store a placeholder audit secret")
        if len(secret) < MIN_SECRET_LENGTH:
            raise InvalidSecretError(
                f"Audit secrets must be at least {MIN_SECRET_LENGTH} characters"
            )

        if await session.get(SecretVersionModel, version) is not None:
            raise SecretVersionExistsError(f"Secret version {version} already exists")
        highest = (
            await session.execute(select(func.max(SecretVersionModel.version)))
        ).scalar()
        if highest is not None and version < highest:
            raise InvalidSecretError(
                f"Secret version {version} is lower than the latest version {highest}"
            )

        row = SecretVersionModel(version=version, secret=secret)
        session.add(row)
        await session.flush()
        logger.info("Audit secret version added", extra={"secret_version": version})
        return row

    async def set_default_version(
        self, session: AsyncSession, version: int,
    ) -> DefaultSecretVersionModel:
        """Point new appends at ``version``. Historical entries are untouched."""
        if await session.get(SecretVersionModel, version) is None:
            raise MissingSecretError(
                f"Cannot default to unknown secret version {version}", version=version,
            )
        row = DefaultSecretVersionModel(secret_version=version)
        session.add(row)
        await session.flush()
        logger.info("Default audit secret version changed", extra={"secret_version": version})
        return row

    async def list_versions(self, session: AsyncSession) -> list[SecretVersionInfo]:
        result = await session.execute(
            select(SecretVersionModel.version, SecretVersionModel.created_at)
            .order_by(SecretVersionModel.version.asc())
        )
        rows = result.all()
        try:
            default = await self.get_default_version(session)
        except MissingSecretError:
            default = None
        return [
            SecretVersionInfo(version=v, created_at=created_at, is_default=(v == default))
            for v, created_at in rows
        ]

    async def bootstrap_from_settings(self, session: AsyncSession) -> list[int]:
        """Seed an empty store from the configured keyring.

        Returns the imported versions; a store that already holds secrets
        is left alone.
        """
        keyring = self.settings.audit_keyring
        if not keyring:
            return []
        existing = (
            await session.execute(select(func.count(SecretVersionModel.version)))
        ).scalar() or 0
        if existing:
            return []

        imported = []
        for version in sorted(keyring):
            await self.add_secret(session, version, keyring[version])
            imported.append(version)
        await self.set_default_version(session, imported[-1])
        return imported

    def clear_cache(self) -> None:
        self._cache.clear()
