"""Canonical form and HMAC of audit entries.

hash(e) = HMAC-SHA256(secret(e.secret_version), prev_hash + "|" + canonical(e))
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any

from scribe_audit.common.exceptions import MalformedEntryError

GENESIS_HASH = "0" * 64


def as_utc(ts: datetime) -> datetime:
    """Naive timestamps (SQLite drops tzinfo) are taken as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def canonical_timestamp(ts: datetime) -> str:
    return as_utc(ts).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def canonical_payload(
    action: str,
    resource_type: str,
    resource_id: str | None,
    metadata: dict[str, Any],
    created_at: datetime,
) -> str:
    """Deterministic JSON of the hashed entry fields, metadata exactly as stored."""
    try:
        return json.dumps(
            {
                "action": action,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "metadata": metadata,
                "created_at": canonical_timestamp(created_at),
            },
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise MalformedEntryError(f"Entry metadata is not canonical JSON: {exc}") from exc


def compute_entry_hash(secret: str, prev_hash: str, canonical: str) -> str:
    message = f"{prev_hash}|{canonical}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def check_hashable(entry) -> None:
    """Raise MalformedEntryError if a chained entry cannot be canonicalized."""
    missing = [
        name
        for name in ("action", "resource_type", "created_at", "secret_version", "prev_hash")
        if getattr(entry, name, None) in (None, "")
    ]
    if missing:
        raise MalformedEntryError(
            f"Entry {entry.id} is missing {', '.join(missing)}", entry_id=entry.id,
        )
    # Appends always store an object.
    if not isinstance(entry.metadata_, dict):
        raise MalformedEntryError(
            f"Entry {entry.id} metadata is not an object", entry_id=entry.id,
        )


def recompute_hash(secret: str, prev_hash: str, entry) -> str:
    """Recompute ``entry``'s hash on top of ``prev_hash``."""
    check_hashable(entry)
    canonical = canonical_payload(
        entry.action,
        entry.resource_type,
        entry.resource_id,
        entry.metadata_,
        entry.created_at,
    )
    return compute_entry_hash(secret, prev_hash, canonical)
