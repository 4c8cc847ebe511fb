from __future__ import annotations

import pytest

from ledgersync.exceptions import QueueStorageError
from ledgersync.local_store import LocalStore
from ledgersync.models import SyncState
from ledgersync.schema import Action, EntityType


def test_enqueue_preserves_order(local_store) -> None:
    first = local_store.enqueue(EntityType.CARD, "c1", Action.UPSERT, {"id": "c1"})
    second = local_store.enqueue(EntityType.CARD, "c2", Action.UPSERT, {"id": "c2"})
    third = local_store.enqueue(EntityType.CARD, "c1", Action.DELETE, None)

    pending = local_store.list_pending()

    assert [op.op_id for op in pending] == [first.op_id, second.op_id, third.op_id]
    assert pending[2].payload is None
    assert pending[0].payload == {"id": "c1"}
    assert first.op_id != second.op_id


def test_upsert_without_payload_is_rejected(local_store) -> None:
    local_store.enqueue(EntityType.CARD, "c1", Action.UPSERT, {"id": "c1", "name": "Main"})

    with pytest.raises(ValueError):
        local_store.enqueue(EntityType.CARD, "c1", Action.UPSERT, None)
    with pytest.raises(ValueError):
        local_store.enqueue(EntityType.CARD, "c1", Action.UPSERT, ["not", "a", "mapping"])

    pending = local_store.list_pending()
    assert len(pending) == 1
    assert pending[0].payload == {"id": "c1", "name": "Main"}


def test_queue_survives_reopen(local_db_path) -> None:
    with LocalStore(local_db_path) as store:
        store.enqueue(EntityType.TRANSACTION, "t1", Action.UPSERT, {"id": "t1"})

    with LocalStore(local_db_path) as store:
        pending = store.list_pending()

    assert len(pending) == 1
    assert pending[0].entity_type is EntityType.TRANSACTION


def test_remove_applied_is_idempotent(local_store) -> None:
    op = local_store.enqueue(EntityType.CARD, "c1", Action.UPSERT, {"id": "c1"})
    local_store.remove_applied([op.op_id])
    local_store.remove_applied([op.op_id, "unknown"])

    assert local_store.list_pending() == []


def test_snapshot_round_trip(local_store) -> None:
    payload = {
        "id": "t1",
        "amount": "10.00",
        "allocations": [{"attribution_tag": "SHARED", "amount": "10.00"}],
        "installment_index": None,
        "active": True,
    }
    local_store.write_snapshot(EntityType.CARD_TRANSACTION, "t1", payload)

    assert local_store.read_snapshot(EntityType.CARD_TRANSACTION, "t1") == payload
    assert local_store.read_snapshot(EntityType.CARD_TRANSACTION, "missing") is None


def test_snapshot_requires_mapping(local_store) -> None:
    with pytest.raises(ValueError):
        local_store.write_snapshot(EntityType.CARD, "c1", ["not", "a", "dict"])


def test_list_snapshots_flags_pending(local_store) -> None:
    local_store.write_snapshot(EntityType.CARD, "c1", {"id": "c1"})
    local_store.write_snapshot(EntityType.CARD, "c2", {"id": "c2"})
    local_store.enqueue(EntityType.CARD, "c2", Action.UPSERT, {"id": "c2"})

    flags = {item.item_id: item.pending_sync for item in local_store.list_snapshots(EntityType.CARD)}

    assert flags == {"c1": False, "c2": True}


def test_replace_snapshots(local_store) -> None:
    local_store.write_snapshot(EntityType.INCOME_RULE, "old", {"key": "old", "value": "1"})
    local_store.replace_snapshots(
        EntityType.INCOME_RULE, [{"key": "salary", "value": "5000"}], id_field="key"
    )

    assert local_store.read_snapshot(EntityType.INCOME_RULE, "old") is None
    assert local_store.read_snapshot(EntityType.INCOME_RULE, "salary") == {
        "key": "salary",
        "value": "5000",
    }
    assert local_store.entity_counts() == {"income_rules": 1}


def test_transaction_rolls_back_snapshot_and_op(local_store) -> None:
    with pytest.raises(RuntimeError):
        with local_store.transaction():
            local_store.write_snapshot(EntityType.CARD, "c1", {"id": "c1"})
            local_store.enqueue(EntityType.CARD, "c1", Action.UPSERT, {"id": "c1"})
            raise RuntimeError("boom")

    assert local_store.read_snapshot(EntityType.CARD, "c1") is None
    assert local_store.list_pending() == []


def test_sync_state_defaults_and_round_trip(local_store) -> None:
    assert local_store.read_sync_state() == SyncState()

    state = SyncState(
        status="success",
        last_success_at="2024-03-05T10:00:00.000+00:00",
        last_applied_count=3,
        last_synced_ids=("a", "b"),
        updated_at="2024-03-05T10:00:00.000+00:00",
    )
    local_store.write_sync_state(state)

    assert local_store.read_sync_state() == state


def test_sync_logs_newest_first(local_store) -> None:
    local_store.add_sync_log("info", "sync_started", "first")
    local_store.add_sync_log("error", "sync_error", "second", {"pending": 2})

    logs = local_store.list_sync_logs(limit=10)

    assert [entry["message"] for entry in logs] == ["second", "first"]
    assert logs[0]["details"] == {"pending": 2}
    local_store.clear_sync_logs()
    assert local_store.list_sync_logs() == []


def test_closed_store_raises_storage_error(local_db_path) -> None:
    store = LocalStore(local_db_path)

    with pytest.raises(QueueStorageError):
        store.list_pending()


def test_summary_counts(local_store) -> None:
    local_store.write_snapshot(EntityType.CARD, "c1", {"id": "c1"})
    local_store.enqueue(EntityType.CARD, "c1", Action.UPSERT, {"id": "c1"})

    summary = local_store.summary()

    assert summary["counts"] == {"cards": 1}
    assert summary["pending_ops"] == 1
    assert summary["sync_state"].status == "idle"
