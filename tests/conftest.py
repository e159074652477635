"""Shared test fixtures for Scribe-Audit."""

import pytest
from httpx import ASGITransport, AsyncClient

from scribe_audit.common.config import AuditSettings
from scribe_audit.common.database import DatabaseManager
from scribe_audit.secrets.service import SecretStore


SECRET_V1 = "test-audit-secret-version-0001"
SECRET_V2 = "test-audit-secret-version-0002"
API_KEY = "test-operator-api-key"
ADMIN_KEY = "test-secret-admin-key"


@pytest.fixture
def make_settings(tmp_path):
    """Factory for settings bound to this test's database file.

    A file database (not in-memory) so that concurrent sessions see
    each other's commits.
    """
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}"

    def _make(**overrides) -> AuditSettings:
        defaults = {"db_url": db_url, "append_retry_backoff": 0.0}
        defaults.update(overrides)
        return AuditSettings(**defaults)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def secret_store(settings):
    return SecretStore(settings)


@pytest.fixture
async def provisioned(db, secret_store):
    """Secret store with version 1 issued and set as default."""
    async with db.get_session() as session:
        await secret_store.add_secret(session, 1, SECRET_V1)
        await secret_store.set_default_version(session, 1)
    return secret_store


@pytest.fixture
def app(tmp_path, monkeypatch):
    """Create a test app on a per-test database file."""
    monkeypatch.setenv("SCRIBE_AUDIT_DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("SCRIBE_AUDIT_API_KEY", API_KEY)
    monkeypatch.setenv("SCRIBE_AUDIT_ADMIN_KEY", ADMIN_KEY)

    # Clear caches and singletons so new env vars take effect
    from scribe_audit.common.config import get_settings
    get_settings.cache_clear()

    from scribe_audit.deps import reset_singletons
    reset_singletons()

    from scribe_audit.app import create_app
    yield create_app()

    get_settings.cache_clear()
    reset_singletons()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from scribe_audit.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def operator_headers():
    return {"X-Audit-Api-Key": API_KEY}


@pytest.fixture
def admin_headers():
    return {"X-Audit-Admin-Key": ADMIN_KEY}
