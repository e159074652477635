"""Tests for full and incremental chain verification."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import delete, update

from scribe_audit.chain.hashing import GENESIS_HASH
from scribe_audit.chain.models import AuditEntryModel
from scribe_audit.chain.writer import ChainWriter
from scribe_audit.common.models import utcnow
from scribe_audit.verification.verifier import (
    BROKEN,
    ERROR,
    INTACT,
    FullVerifier,
    IncrementalVerifier,
    VerificationResult,
    aggregate,
    _ChainVerifier,
)

from conftest import SECRET_V2


@pytest.fixture
def writer(settings, provisioned):
    return ChainWriter(settings, provisioned)


@pytest.fixture
def full(settings, provisioned):
    return FullVerifier(settings, provisioned)


@pytest.fixture
def incremental(settings, provisioned):
    return IncrementalVerifier(settings, provisioned)


async def _build_chain(db, writer, n, chain_id="user-1"):
    entries = []
    for i in range(n):
        async with db.get_session() as session:
            entries.append(await writer.append_entry(
                session, chain_id, f"event.{i}", "note",
                resource_id=f"note-{i}", metadata={"seq": i},
            ))
    return entries


async def _tamper(db, entry_id, values):
    """Out-of-band write that bypasses the ORM immutability hooks."""
    async with db.get_session() as session:
        await session.execute(
            update(AuditEntryModel)
            .where(AuditEntryModel.id == entry_id)
            .values(values)
            .execution_options(synchronize_session=False)
        )


async def _add_grandfathered(db, chain_id):
    async with db.get_session() as session:
        session.add(AuditEntryModel(
            chain_id=chain_id,
            created_at=utcnow(),
            action="legacy.event",
            resource_type="note",
            metadata_={},
        ))


class TestFullVerify:
    async def test_three_entry_chain_intact(self, db, writer, full):
        await _build_chain(db, writer, 3)
        result = await full.verify_chain(db, "user-1")
        assert result.intact is True
        assert result.status == INTACT
        assert result.verified_entries == 3
        assert result.total_entries == 3
        assert result.broken_at_id is None

    async def test_altered_hash_reported(self, db, writer, full):
        entries = await _build_chain(db, writer, 3)
        altered = "f" * 64
        await _tamper(db, entries[1].id, {AuditEntryModel.hash: altered})

        result = await full.verify_chain(db, "user-1")
        assert result.intact is False
        assert result.status == BROKEN
        assert result.broken_at_id == entries[1].id
        assert result.expected == entries[1].hash
        assert result.actual == altered
        assert result.reason == "hash_mismatch"
        assert result.verified_entries == 1

    @pytest.mark.parametrize("column,value", [
        ("action", "note.deleted"),
        ("resource_type", "client"),
        ("resource_id", "note-999"),
        ("metadata_", {"seq": 42}),
    ])
    async def test_any_field_mutation_detected(self, db, writer, full, column, value):
        entries = await _build_chain(db, writer, 3)
        await _tamper(db, entries[1].id, {getattr(AuditEntryModel, column): value})

        result = await full.verify_chain(db, "user-1")
        assert result.intact is False
        assert result.broken_at_id == entries[1].id
        assert result.actual == entries[1].hash

    @pytest.mark.parametrize("value", [None, [], 0, "", False])
    async def test_empty_metadata_rewrite_detected(self, db, writer, full, value):
        entries = []
        for i in range(3):
            async with db.get_session() as session:
                entries.append(await writer.append_entry(
                    session, "user-1", f"event.{i}", "note",
                ))
        assert entries[1].metadata_ == {}
        await _tamper(db, entries[1].id, {AuditEntryModel.metadata_: value})

        result = await full.verify_chain(db, "user-1")
        assert result.intact is False
        assert result.broken_at_id == entries[1].id
        assert result.reason == "malformed_entry"
        assert result.verified_entries == 1

    async def test_timestamp_mutation_detected(self, db, writer, full):
        entries = await _build_chain(db, writer, 3)
        shifted = entries[1].created_at - timedelta(microseconds=1)
        await _tamper(db, entries[1].id, {AuditEntryModel.created_at: shifted})

        result = await full.verify_chain(db, "user-1")
        assert result.intact is False
        assert result.broken_at_id == entries[1].id

    async def test_prev_hash_rewrite_detected(self, db, writer, full):
        entries = await _build_chain(db, writer, 3)
        await _tamper(db, entries[1].id, {AuditEntryModel.prev_hash: "1" * 64})

        result = await full.verify_chain(db, "user-1")
        assert result.broken_at_id == entries[1].id
        assert result.reason == "prev_hash_mismatch"
        assert result.expected == entries[0].hash
        assert result.actual == "1" * 64

    async def test_deleted_entry_detected(self, db, writer, full):
        entries = await _build_chain(db, writer, 3)
        async with db.get_session() as session:
            await session.execute(
                delete(AuditEntryModel)
                .where(AuditEntryModel.id == entries[1].id)
                .execution_options(synchronize_session=False)
            )

        result = await full.verify_chain(db, "user-1")
        assert result.intact is False
        assert result.broken_at_id == entries[2].id
        assert result.reason == "prev_hash_mismatch"

    async def test_stops_at_first_break(self, db, writer, full):
        entries = await _build_chain(db, writer, 4)
        await _tamper(db, entries[1].id, {AuditEntryModel.action: "x"})
        await _tamper(db, entries[3].id, {AuditEntryModel.action: "y"})

        result = await full.verify_chain(db, "user-1")
        assert result.broken_at_id == entries[1].id
        assert result.total_entries == 2

    async def test_idempotent(self, db, writer, full):
        entries = await _build_chain(db, writer, 3)
        await _tamper(db, entries[2].id, {AuditEntryModel.hash: "e" * 64})
        first = await full.verify_chain(db, "user-1")
        second = await full.verify_chain(db, "user-1")
        assert first.to_dict() == second.to_dict()

    async def test_empty_chain_intact(self, db, provisioned, full):
        result = await full.verify_chain(db, "nobody")
        assert result.intact is True
        assert result.total_entries == 0

    async def test_small_batches_cover_whole_chain(self, db, writer, make_settings, provisioned):
        await _build_chain(db, writer, 7)
        verifier = FullVerifier(make_settings(verify_batch_size=2), provisioned)
        result = await verifier.verify_chain(db, "user-1")
        assert result.intact is True
        assert result.verified_entries == 7


class TestRotationAndSecrets:
    async def test_mixed_version_chain_intact(self, db, writer, full, provisioned):
        await _build_chain(db, writer, 5)
        async with db.get_session() as session:
            await provisioned.add_secret(session, 2, SECRET_V2)
            await provisioned.set_default_version(session, 2)
        entries = await _build_chain(db, writer, 5)
        assert {e.secret_version for e in entries} == {2}

        result = await full.verify_chain(db, "user-1")
        assert result.intact is True
        assert result.verified_entries == 10

    async def test_unprovisioned_version_breaks_chain(self, db, writer, full):
        entries = await _build_chain(db, writer, 3)
        await _tamper(db, entries[1].id, {AuditEntryModel.secret_version: 3})

        result = await full.verify_chain(db, "user-1")
        assert result.intact is False
        assert result.status == BROKEN
        assert result.broken_at_id == entries[1].id
        assert result.reason == "missing_secret"
        assert "3" in result.error

    async def test_hashed_entry_without_version_is_malformed(self, db, writer, full):
        entries = await _build_chain(db, writer, 2)
        await _tamper(db, entries[1].id, {AuditEntryModel.secret_version: None})

        result = await full.verify_chain(db, "user-1")
        assert result.broken_at_id == entries[1].id
        assert result.reason == "malformed_entry"


class TestGrandfathered:
    async def test_sandwiched_grandfathered_entry(self, db, writer, full):
        first = (await _build_chain(db, writer, 1))[0]
        await _add_grandfathered(db, "user-1")
        last = (await _build_chain(db, writer, 1))[0]

        assert last.prev_hash == first.hash
        result = await full.verify_chain(db, "user-1")
        assert result.intact is True
        assert result.total_entries == 3
        assert result.verified_entries == 2

    async def test_only_grandfathered_entries(self, db, provisioned, full):
        await _add_grandfathered(db, "legacy")
        await _add_grandfathered(db, "legacy")
        result = await full.verify_chain(db, "legacy")
        assert result.intact is True
        assert result.total_entries == 2
        assert result.verified_entries == 0


class TestAllChains:
    async def test_aggregates_every_chain(self, db, writer, full):
        await _build_chain(db, writer, 2, chain_id="a")
        await _build_chain(db, writer, 3, chain_id="b")

        result = await full.verify_chain(db)
        assert result.intact is True
        assert result.chains_checked == 2
        assert result.verified_entries == 5
        assert [c.chain_id for c in result.chains] == ["a", "b"]

    async def test_break_in_one_chain_does_not_stop_others(self, db, writer, full):
        await _build_chain(db, writer, 2, chain_id="a")
        b = await _build_chain(db, writer, 2, chain_id="b")
        await _build_chain(db, writer, 2, chain_id="c")
        await _tamper(db, b[0].id, {AuditEntryModel.action: "x"})

        result = await full.verify_chain(db)
        assert result.status == BROKEN
        assert result.chain_id == "b"
        assert result.broken_at_id == b[0].id
        statuses = {c.chain_id: c.status for c in result.chains}
        assert statuses == {"a": INTACT, "b": BROKEN, "c": INTACT}

    async def test_first_break_in_chain_order_reported(self, db, writer, full):
        a = await _build_chain(db, writer, 2, chain_id="a")
        b = await _build_chain(db, writer, 2, chain_id="b")
        await _tamper(db, b[1].id, {AuditEntryModel.action: "x"})
        await _tamper(db, a[1].id, {AuditEntryModel.action: "x"})

        result = await full.verify_chain(db)
        assert result.chain_id == "a"
        assert result.broken_at_id == a[1].id

    async def test_chain_error_isolated(self, db, writer, full, monkeypatch):
        await _build_chain(db, writer, 2, chain_id="a")
        await _build_chain(db, writer, 2, chain_id="b")
        original = full._verify_one

        async def failing(db_, chain_id):
            if chain_id == "a":
                raise RuntimeError("connection reset")
            return await original(db_, chain_id)

        monkeypatch.setattr(full, "_verify_one", failing)
        result = await full.verify_chain(db)
        assert result.status == ERROR
        assert result.intact is False
        by_chain = {c.chain_id: c for c in result.chains}
        assert by_chain["a"].status == ERROR
        assert "connection reset" in by_chain["a"].error
        assert by_chain["b"].status == INTACT

    async def test_break_outranks_error(self):
        result = aggregate([
            VerificationResult(intact=False, chain_id="a", status=ERROR, error="x"),
            VerificationResult(
                intact=False, chain_id="b", status=BROKEN, broken_at_id="e1",
                reason="hash_mismatch",
            ),
        ])
        assert result.status == BROKEN
        assert result.broken_at_id == "e1"
        assert result.error is not None

    async def test_time_budget_exhausted(self, db, writer, make_settings, provisioned):
        await _build_chain(db, writer, 2)
        verifier = FullVerifier(make_settings(verify_timeout_seconds=0), provisioned)
        result = await verifier.verify_chain(db)
        assert result.status == ERROR
        assert result.chains[0].error == "verification timed out"

    async def test_slow_chain_times_out(self, db, writer, make_settings, provisioned, monkeypatch):
        await _build_chain(db, writer, 1)
        verifier = FullVerifier(make_settings(verify_timeout_seconds=0.05), provisioned)

        async def stalled(db_, chain_id):
            await asyncio.sleep(5)

        monkeypatch.setattr(verifier, "_verify_one", stalled)
        result = await verifier.verify_chain(db, "user-1")
        assert result.status == ERROR
        assert result.error == "verification timed out"


class TestIncremental:
    async def test_first_run_verifies_from_seed(self, db, writer, incremental):
        entries = await _build_chain(db, writer, 3)
        result = await incremental.verify_incremental(db, "user-1")
        assert result.intact is True
        assert result.verified_entries == 3

        async with db.get_session() as session:
            cursor = await incremental.get_cursor(session, "user-1")
        assert cursor.last_verified_id == entries[-1].id
        assert cursor.last_good_hash == entries[-1].hash

    async def test_no_new_entries(self, db, writer, incremental):
        await _build_chain(db, writer, 3)
        await incremental.verify_incremental(db, "user-1")
        async with db.get_session() as session:
            before = await incremental.get_cursor(session, "user-1")

        result = await incremental.verify_incremental(db, "user-1")
        assert result.intact is True
        assert result.verified_entries == 0

        async with db.get_session() as session:
            after = await incremental.get_cursor(session, "user-1")
        assert after.last_verified_id == before.last_verified_id
        assert after.last_good_hash == before.last_good_hash
        assert after.updated_at == before.updated_at

    async def test_only_new_entries_verified(self, db, writer, incremental):
        await _build_chain(db, writer, 3)
        await incremental.verify_incremental(db, "user-1")
        new = await _build_chain(db, writer, 2)

        result = await incremental.verify_incremental(db, "user-1")
        assert result.verified_entries == 2
        async with db.get_session() as session:
            cursor = await incremental.get_cursor(session, "user-1")
        assert cursor.last_verified_id == new[-1].id

    async def test_break_does_not_advance_cursor(self, db, writer, incremental):
        entries = await _build_chain(db, writer, 2)
        await incremental.verify_incremental(db, "user-1")
        new = await _build_chain(db, writer, 2)
        await _tamper(db, new[1].id, {AuditEntryModel.hash: "d" * 64})

        first = await incremental.verify_incremental(db, "user-1")
        second = await incremental.verify_incremental(db, "user-1")
        assert first.broken_at_id == new[1].id
        assert second.broken_at_id == new[1].id

        async with db.get_session() as session:
            cursor = await incremental.get_cursor(session, "user-1")
        assert cursor.last_verified_id == entries[-1].id

    async def test_break_before_any_cursor_creates_none(self, db, writer, incremental):
        entries = await _build_chain(db, writer, 2)
        await _tamper(db, entries[0].id, {AuditEntryModel.action: "x"})
        result = await incremental.verify_incremental(db, "user-1")
        assert result.status == BROKEN
        async with db.get_session() as session:
            assert await incremental.get_cursor(session, "user-1") is None

    async def test_agrees_with_full(self, db, writer, full, incremental):
        await _build_chain(db, writer, 3)
        await incremental.verify_incremental(db, "user-1")
        new = await _build_chain(db, writer, 2)

        assert (await incremental.verify_incremental(db, "user-1")).intact is True
        assert (await full.verify_chain(db, "user-1")).intact is True

        more = await _build_chain(db, writer, 1)
        await _tamper(db, more[0].id, {AuditEntryModel.metadata_: {"seq": -1}})
        inc = await incremental.verify_incremental(db, "user-1")
        whole = await full.verify_chain(db, "user-1")
        assert inc.intact is whole.intact is False
        assert inc.broken_at_id == whole.broken_at_id == more[0].id
        assert inc.expected == whole.expected

    async def test_grandfathered_after_cursor(self, db, writer, incremental):
        first = await _build_chain(db, writer, 1)
        await incremental.verify_incremental(db, "user-1")
        await _add_grandfathered(db, "user-1")

        result = await incremental.verify_incremental(db, "user-1")
        assert result.total_entries == 1
        assert result.verified_entries == 0
        async with db.get_session() as session:
            cursor = await incremental.get_cursor(session, "user-1")
        assert cursor.last_good_hash == first[0].hash

        later = await _build_chain(db, writer, 1)
        assert later[0].prev_hash == first[0].hash
        result = await incremental.verify_incremental(db, "user-1")
        assert result.intact is True
        assert result.verified_entries == 1

    async def test_all_chains_keep_separate_cursors(self, db, writer, incremental):
        a = await _build_chain(db, writer, 2, chain_id="a")
        b = await _build_chain(db, writer, 1, chain_id="b")
        result = await incremental.verify_incremental(db)
        assert result.chains_checked == 2
        assert result.verified_entries == 3

        async with db.get_session() as session:
            assert (await incremental.get_cursor(session, "a")).last_verified_id == a[-1].id
            assert (await incremental.get_cursor(session, "b")).last_verified_id == b[-1].id

    async def test_unknown_chain_gets_seed_cursor(self, db, provisioned, incremental):
        result = await incremental.verify_incremental(db, "nobody")
        assert result.intact is True
        async with db.get_session() as session:
            cursor = await incremental.get_cursor(session, "nobody")
        assert cursor.last_verified_id is None
        assert cursor.last_good_hash == GENESIS_HASH


class TestVerifierBase:
    def test_subclass_without_chain_walk_cannot_be_built(self, settings, secret_store):
        class Incomplete(_ChainVerifier):
            kind = "partial"

        with pytest.raises(TypeError):
            Incomplete(settings, secret_store)
