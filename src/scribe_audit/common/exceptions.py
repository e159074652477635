"""Scribe-Audit exception hierarchy."""


class AuditError(Exception):
    """Base exception for all audit-chain errors."""

    def __init__(self, message: str = "", code: str = "AUDIT_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class MissingSecretError(AuditError):
    """Raised when a secret version cannot be resolved. Always fatal."""

    def __init__(self, message: str = "Audit secret not provisioned", version: int | None = None):
        self.version = version
        super().__init__(message, code="MISSING_SECRET")


class HashMismatchError(AuditError):
    """Raised when a recomputed entry hash differs from the stored one."""

    def __init__(
        self,
        entry_id: str,
        expected: str | None,
        actual: str | None,
        reason: str = "hash_mismatch",
    ):
        self.entry_id = entry_id
        self.expected = expected
        self.actual = actual
        self.reason = reason
        super().__init__(f"Chain break at entry {entry_id}", code="HASH_MISMATCH")


class MalformedEntryError(AuditError):
    """Raised when an entry lacks the fields needed for canonicalization."""

    def __init__(self, message: str = "Malformed audit entry", entry_id: str | None = None):
        self.entry_id = entry_id
        super().__init__(message, code="MALFORMED_ENTRY")


class AppendError(AuditError):
    """Raised when an audit entry could not be appended."""

    def __init__(self, message: str = "Audit append failed", code: str = "APPEND_FAILED"):
        super().__init__(message, code=code)


class AppendConflictError(AppendError):
    """Raised when concurrent appends to one chain kept colliding."""

    def __init__(self, message: str = "Concurrent append conflict"):
        super().__init__(message, code="APPEND_CONFLICT")


class SecretVersionExistsError(AuditError):
    """Raised when adding a secret version that is already issued."""

    def __init__(self, message: str = "Secret version already exists"):
        super().__init__(message, code="SECRET_VERSION_EXISTS")


class InvalidSecretError(AuditError):
    """Raised when a secret is a placeholder, too short, or out of order."""

    def __init__(self, message: str = "Invalid audit secret"):
        super().__init__(message, code="INVALID_SECRET")


class ImmutableRecordError(AuditError):
    """Raised on any attempt to update or delete an append-only record."""

    def __init__(self, message: str = "Record is append-only"):
        super().__init__(message, code="IMMUTABLE")
