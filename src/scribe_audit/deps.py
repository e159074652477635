"""Dependency injection singletons for Scribe-Audit."""

from scribe_audit.chain.writer import ChainWriter
from scribe_audit.common.config import get_settings
from scribe_audit.common.database import DatabaseManager
from scribe_audit.scheduler.recorder import RunRecorder
from scribe_audit.scheduler.runner import VerificationScheduler
from scribe_audit.secrets.service import SecretStore
from scribe_audit.verification.verifier import FullVerifier, IncrementalVerifier

_db: DatabaseManager | None = None
_secret_store: SecretStore | None = None
_chain_writer: ChainWriter | None = None
_full_verifier: FullVerifier | None = None
_incremental_verifier: IncrementalVerifier | None = None
_recorder: RunRecorder | None = None
_scheduler: VerificationScheduler | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_secret_store() -> SecretStore:
    global _secret_store
    if _secret_store is None:
        _secret_store = SecretStore(get_settings())
    return _secret_store


def get_chain_writer() -> ChainWriter:
    global _chain_writer
    if _chain_writer is None:
        _chain_writer = ChainWriter(get_settings(), get_secret_store())
    return _chain_writer


def get_full_verifier() -> FullVerifier:
    global _full_verifier
    if _full_verifier is None:
        _full_verifier = FullVerifier(get_settings(), get_secret_store())
    return _full_verifier


def get_incremental_verifier() -> IncrementalVerifier:
    global _incremental_verifier
    if _incremental_verifier is None:
        _incremental_verifier = IncrementalVerifier(get_settings(), get_secret_store())
    return _incremental_verifier


def get_run_recorder() -> RunRecorder:
    global _recorder
    if _recorder is None:
        _recorder = RunRecorder()
    return _recorder


def get_scheduler() -> VerificationScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = VerificationScheduler(
            get_settings(),
            get_db(),
            get_full_verifier(),
            get_incremental_verifier(),
            get_run_recorder(),
        )
    return _scheduler


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _secret_store, _chain_writer, _full_verifier
    global _incremental_verifier, _recorder, _scheduler
    _db = None
    _secret_store = None
    _chain_writer = None
    _full_verifier = None
    _incremental_verifier = None
    _recorder = None
    _scheduler = None
