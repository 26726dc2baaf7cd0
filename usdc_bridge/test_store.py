#!/usr/bin/env python3
"""
Transfer Store Tests

Runs the same contract checks against the in-memory and SQLite stores.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio

from usdc_bridge import errors
from usdc_bridge.models import TransferStatus
from usdc_bridge.store import InMemoryTransferStore, SQLiteTransferStore


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def transfer_store(request, tmp_path):
    if request.param == "memory":
        store = InMemoryTransferStore()
    else:
        store = SQLiteTransferStore(str(tmp_path / "bridge.db"))
        await store.initialize()
    yield store
    await store.close()


async def _create(store, user_id="user-1"):
    return await store.create(user_id, "ETH_SEPOLIA", "BASE_SEPOLIA", "10.5")


async def _advance(store, transfer_id, *path):
    current = (await store.get_by_id(transfer_id)).status
    for status in path:
        updated = await store.transition(transfer_id, [current], status)
        assert updated is not None
        current = status


class TestCreate:

    @pytest.mark.asyncio
    async def test_initial_record(self, transfer_store):
        transfer = await _create(transfer_store)

        assert transfer.status == TransferStatus.PENDING
        assert transfer.amount == "10.5"
        assert transfer.burn_tx_hash is None
        assert transfer.created_at == transfer.updated_at

        loaded = await transfer_store.get_by_id(transfer.id)
        assert loaded == transfer

    @pytest.mark.asyncio
    async def test_unique_ids(self, transfer_store):
        ids = {(await _create(transfer_store)).id for _ in range(5)}
        assert len(ids) == 5

    @pytest.mark.asyncio
    async def test_unknown_id(self, transfer_store):
        assert await transfer_store.get_by_id("missing") is None
        assert await transfer_store.update("missing", error_message="x") is None


class TestListing:

    @pytest.mark.asyncio
    async def test_newest_first(self, transfer_store):
        first = await _create(transfer_store)
        second = await _create(transfer_store)
        third = await _create(transfer_store)
        await _create(transfer_store, user_id="user-2")

        listed = await transfer_store.list_by_user("user-1")

        assert [t.id for t in listed] == [third.id, second.id, first.id]

    @pytest.mark.asyncio
    async def test_pending_and_finished(self, transfer_store):
        done = await _create(transfer_store)
        open_ = await _create(transfer_store)
        failed = await _create(transfer_store)
        await _advance(
            transfer_store, done.id,
            TransferStatus.BURNING,
            TransferStatus.WAITING_ATTESTATION,
            TransferStatus.READY_TO_MINT,
            TransferStatus.MINTING,
            TransferStatus.COMPLETED,
        )
        await _advance(transfer_store, failed.id, TransferStatus.FAILED)

        pending = await transfer_store.get_pending("user-1")
        finished = await transfer_store.get_finished("user-1")

        assert [t.id for t in pending] == [open_.id]
        assert {t.id for t in finished} == {done.id, failed.id}
        assert await transfer_store.list_by_user("user-1", []) == []


class TestUpdate:

    @pytest.mark.asyncio
    async def test_partial_update_bumps_updated_at(self, transfer_store):
        transfer = await _create(transfer_store)
        later = transfer.updated_at + timedelta(seconds=5)

        with patch("usdc_bridge.store.utcnow", return_value=later):
            updated = await transfer_store.update(transfer.id, error_message="note")

        assert updated.error_message == "note"
        assert updated.updated_at == later
        assert updated.created_at == transfer.created_at
        assert (await transfer_store.get_by_id(transfer.id)).updated_at == later

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, transfer_store):
        transfer = await _create(transfer_store)
        with pytest.raises(errors.ValidationError):
            await transfer_store.update(transfer.id, amount="99")

    @pytest.mark.asyncio
    async def test_illegal_transition_rejected(self, transfer_store):
        transfer = await _create(transfer_store)
        with pytest.raises(errors.TransferStateError):
            await transfer_store.update(transfer.id, status=TransferStatus.MINTING)
        assert (await transfer_store.get_by_id(transfer.id)).status == TransferStatus.PENDING

    @pytest.mark.asyncio
    async def test_terminal_status_is_final(self, transfer_store):
        transfer = await _create(transfer_store)
        await _advance(transfer_store, transfer.id, TransferStatus.FAILED)
        with pytest.raises(errors.TransferStateError):
            await transfer_store.update(transfer.id, status=TransferStatus.BURNING)

    @pytest.mark.asyncio
    async def test_status_accepts_string_value(self, transfer_store):
        transfer = await _create(transfer_store)
        updated = await transfer_store.update(transfer.id, status="burning")
        assert updated.status == TransferStatus.BURNING

    @pytest.mark.asyncio
    async def test_hashes_are_write_once(self, transfer_store):
        transfer = await _create(transfer_store)
        await transfer_store.update(transfer.id, burn_tx_hash="0xaaa")

        # Re-writing the same value is allowed
        await transfer_store.update(transfer.id, burn_tx_hash="0xaaa")
        with pytest.raises(errors.TransferStateError):
            await transfer_store.update(transfer.id, burn_tx_hash="0xbbb")
        assert (await transfer_store.get_by_id(transfer.id)).burn_tx_hash == "0xaaa"


class TestTransition:

    @pytest.mark.asyncio
    async def test_guard_mismatch_returns_none(self, transfer_store):
        transfer = await _create(transfer_store)

        result = await transfer_store.transition(
            transfer.id, [TransferStatus.READY_TO_MINT], TransferStatus.MINTING
        )

        assert result is None
        assert (await transfer_store.get_by_id(transfer.id)).status == TransferStatus.PENDING

    @pytest.mark.asyncio
    async def test_sets_fields_with_status(self, transfer_store):
        transfer = await _create(transfer_store)
        await _advance(transfer_store, transfer.id, TransferStatus.BURNING)

        updated = await transfer_store.transition(
            transfer.id,
            [TransferStatus.BURNING],
            TransferStatus.WAITING_ATTESTATION,
            burn_tx_hash="0xburn"
        )

        assert updated.status == TransferStatus.WAITING_ATTESTATION
        assert updated.burn_tx_hash == "0xburn"

    @pytest.mark.asyncio
    async def test_unknown_id_raises(self, transfer_store):
        with pytest.raises(errors.NotFoundError):
            await transfer_store.transition("missing", [TransferStatus.PENDING], TransferStatus.BURNING)

    @pytest.mark.asyncio
    async def test_concurrent_claims_single_winner(self, transfer_store):
        transfer = await _create(transfer_store)
        await _advance(
            transfer_store, transfer.id,
            TransferStatus.BURNING,
            TransferStatus.WAITING_ATTESTATION,
            TransferStatus.READY_TO_MINT,
        )

        results = await asyncio.gather(*[
            transfer_store.transition(transfer.id, [TransferStatus.READY_TO_MINT], TransferStatus.MINTING)
            for _ in range(5)
        ])

        assert sum(1 for r in results if r is not None) == 1


class TestSQLitePersistence:

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        path = str(tmp_path / "bridge.db")
        first = SQLiteTransferStore(path)
        transfer = await _create(first)
        await first.transition(transfer.id, [TransferStatus.PENDING], TransferStatus.BURNING)

        reopened = SQLiteTransferStore(path)
        loaded = await reopened.get_by_id(transfer.id)

        assert loaded.status == TransferStatus.BURNING
        assert loaded.created_at.tzinfo == timezone.utc
        assert isinstance(loaded.created_at, datetime)
