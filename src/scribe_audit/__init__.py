"""Scribe-Audit: tamper-evident, hash-chained audit trail."""

from scribe_audit.chain.hashing import GENESIS_HASH, canonical_payload, compute_entry_hash
from scribe_audit.chain.writer import ChainWriter
from scribe_audit.client import AuditClient
from scribe_audit.secrets.service import SecretStore
from scribe_audit.verification.verifier import (
    FullVerifier,
    IncrementalVerifier,
    VerificationResult,
)

__all__ = [
    "AuditClient",
    "ChainWriter",
    "FullVerifier",
    "GENESIS_HASH",
    "IncrementalVerifier",
    "SecretStore",
    "VerificationResult",
    "canonical_payload",
    "compute_entry_hash",
]
__version__ = "0.1.0"
