import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

import crud
import payload_codec
from errors import AssetNumberConflict, PersistenceError, UnsupportedVersion
from models import Asset, AssetFilter, AssetUpdate


def _snapshot(**kwargs) -> Asset:
    now = datetime(2024, 5, 1, 10, 0, 0)
    body = {
        "id": str(uuid4()),
        "asset_number": "AM-20240501-0042",
        "name": "Camera",
        "price": 3200.0,
        "purchase_date": datetime(2024, 4, 20, 0, 0, 0),
        "registered_at": datetime(2024, 5, 1, 9, 0, 0),
        "scrap_years": 4,
        "status": "inUse",
        "category": "AV",
        "created_at": now,
        "updated_at": now,
    }
    body.update(kwargs)
    return Asset(**body)


def _count(db):
    return len(crud.list_all_rows(db))


def _boom():
    raise OperationalError("COMMIT", {}, Exception("database is locked"))


# ---------- CRUD ----------
def test_create_generates_identity_and_timestamps(db_session, make_asset_in):
    created = crud.create_asset(db_session, make_asset_in(registered_at=None))
    assert created.id
    assert created.asset_number.startswith("AM-")
    assert created.created_at == created.updated_at
    assert created.registered_at == created.created_at
    assert crud.get_asset(db_session, created.id) == created


def test_find_unknown_id_returns_none(db_session):
    assert crud.get_asset(db_session, str(uuid4())) is None


def test_update_refreshes_updated_at(db_session, make_asset_in):
    created = crud.create_asset(db_session, make_asset_in())
    updated = crud.update_asset(db_session, created.id, AssetUpdate(name="Laptop Pro", status="idle"))
    assert updated is not None
    assert updated.name == "Laptop Pro"
    assert updated.status == "idle"
    assert updated.price == created.price
    assert updated.created_at == created.created_at
    assert updated.updated_at >= created.updated_at


def test_update_unknown_returns_none(db_session):
    assert crud.update_asset(db_session, str(uuid4()), AssetUpdate(name="x")) is None


def test_duplicate_asset_number_is_rejected(db_session, make_asset_in):
    crud.create_asset(db_session, make_asset_in(asset_number="AM-1"))
    with pytest.raises(AssetNumberConflict):
        crud.create_asset(db_session, make_asset_in(name="Other", asset_number="AM-1"))
    assert _count(db_session) == 1


def test_delete_and_bulk_delete(db_session, make_asset_in):
    a = crud.create_asset(db_session, make_asset_in(name="A"))
    b = crud.create_asset(db_session, make_asset_in(name="B"))
    c = crud.create_asset(db_session, make_asset_in(name="C"))

    assert crud.delete_asset(db_session, a.id) is True
    assert crud.delete_asset(db_session, a.id) is False

    assert crud.bulk_delete_assets(db_session, [b.id, c.id, str(uuid4())]) == 2
    assert _count(db_session) == 0


def test_bulk_update_status_sets_status_and_updated_at(db_session, make_asset_in):
    a = crud.create_asset(db_session, make_asset_in(name="A"))
    b = crud.create_asset(db_session, make_asset_in(name="B"))
    c = crud.create_asset(db_session, make_asset_in(name="C"))

    assert crud.bulk_update_status(db_session, [a.id, b.id], "retired") == 2

    assert crud.get_asset(db_session, a.id).status == "retired"
    assert crud.get_asset(db_session, b.id).status == "retired"
    assert crud.get_asset(db_session, b.id).updated_at >= b.updated_at
    assert crud.get_asset(db_session, c.id).status == "inUse"


def test_fetch_delegates_to_query(db_session, make_asset_in):
    crud.create_asset(db_session, make_asset_in(name="Desk", status="retired", registered_at=datetime(2024, 1, 1)))
    crud.create_asset(db_session, make_asset_in(name="Chair", status="retired", registered_at=datetime(2024, 1, 3)))
    crud.create_asset(db_session, make_asset_in(name="Laptop", status="inUse", registered_at=datetime(2024, 1, 2)))

    result = crud.list_assets_filtered(db_session, AssetFilter(status="retired"))
    assert [a.name for a in result] == ["Chair", "Desk"]


@contextmanager
def _database_locked():
    # 別コネクションが排他ロックを握っている間のセッション（待ち時間は短く）
    from db import DATABASE_URL, DB_PATH

    engine = create_engine(DATABASE_URL, connect_args={"timeout": 0.1, "check_same_thread": False})
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    holder = sqlite3.connect(DB_PATH, isolation_level=None)
    holder.execute("BEGIN EXCLUSIVE")
    try:
        yield session
    finally:
        holder.execute("ROLLBACK")
        holder.close()
        session.close()
        engine.dispose()


# ---------- persistence failures ----------
def test_delete_while_database_locked_raises_persistence_error(db_session, make_asset_in):
    a = crud.create_asset(db_session, make_asset_in())
    db_session.rollback()

    with _database_locked() as locked:
        with pytest.raises(PersistenceError):
            crud.delete_asset(locked, a.id)

    assert _count(db_session) == 1


def test_add_and_update_while_database_locked_raise_persistence_error(db_session, make_asset_in):
    a = crud.create_asset(db_session, make_asset_in(name="Desk"))
    db_session.rollback()

    with _database_locked() as locked:
        with pytest.raises(PersistenceError):
            crud.create_asset(locked, make_asset_in(name="Chair"))
        with pytest.raises(PersistenceError):
            crud.create_asset(locked, make_asset_in(name="Lamp", asset_number="AM-LAMP"))
        with pytest.raises(PersistenceError):
            crud.update_asset(locked, a.id, AssetUpdate(name="Desk 2"))
        with pytest.raises(PersistenceError):
            crud.get_asset(locked, a.id)

    db_session.expire_all()
    assert [x.name for x in crud.list_all_rows(db_session)] == ["Desk"]


def test_upsert_while_database_locked_raises_persistence_error(db_session):
    with _database_locked() as locked:
        with pytest.raises(PersistenceError):
            crud.upsert_from_payload(locked, payload_codec.encode(_snapshot()))

    assert _count(db_session) == 0


def test_add_failure_leaves_store_unchanged(db_session, monkeypatch, make_asset_in):
    monkeypatch.setattr(db_session, "commit", _boom)
    with pytest.raises(PersistenceError):
        crud.create_asset(db_session, make_asset_in())
    monkeypatch.undo()

    assert _count(db_session) == 0


def test_bulk_delete_failure_fails_whole_batch(db_session, monkeypatch, make_asset_in):
    ids = [crud.create_asset(db_session, make_asset_in(name=n)).id for n in ("A", "B", "C")]

    monkeypatch.setattr(db_session, "commit", _boom)
    with pytest.raises(PersistenceError):
        crud.bulk_delete_assets(db_session, ids)
    monkeypatch.undo()

    assert _count(db_session) == 3


def test_bulk_status_failure_fails_whole_batch(db_session, monkeypatch, make_asset_in):
    ids = [crud.create_asset(db_session, make_asset_in(name=n)).id for n in ("A", "B")]

    monkeypatch.setattr(db_session, "commit", _boom)
    with pytest.raises(PersistenceError):
        crud.bulk_update_status(db_session, ids, "retired")
    monkeypatch.undo()

    db_session.expire_all()
    assert [crud.get_asset(db_session, i).status for i in ids] == ["inUse", "inUse"]


# ---------- reconciliation ----------
def test_upsert_into_empty_store_creates_record(db_session):
    snapshot = _snapshot()
    asset, created = crud.upsert_from_payload(db_session, payload_codec.encode(snapshot))

    assert created is True
    assert _count(db_session) == 1
    stored = crud.get_asset(db_session, snapshot.id)
    assert stored == asset
    assert stored.name == "Camera"
    assert stored.asset_number == "AM-20240501-0042"
    assert stored.price == 3200.0


def test_upsert_merge_keeps_local_status(db_session, make_asset_in):
    existing = crud.create_asset(db_session, make_asset_in(name="Laptop", status="retired"))

    payload = payload_codec.encode(existing)
    payload.asset.asset_name = "Laptop-v2"
    payload.asset.status = "inUse"
    payload.asset.price = 999.0
    payload.asset.location = "Room 9"
    payload.asset.asset_number = "AM-20240101-9999"

    asset, created = crud.upsert_from_payload(db_session, payload)

    assert created is False
    assert _count(db_session) == 1
    assert asset.name == "Laptop-v2"
    assert asset.status == "retired"

    expected = payload_codec.to_asset(payload)
    stored = crud.get_asset(db_session, existing.id)
    for field in ("asset_number", "name", "price", "purchase_date", "registered_at", "scrap_years",
                  "category", "location", "owner", "serial_number", "note"):
        assert getattr(stored, field) == getattr(expected, field), field
    assert stored.status == "retired"
    assert stored.created_at == existing.created_at
    assert stored.updated_at >= existing.updated_at


def test_upsert_merge_with_blank_number_keeps_existing_number(db_session, make_asset_in):
    existing = crud.create_asset(db_session, make_asset_in(asset_number="AM-KEEP"))
    payload = payload_codec.encode(existing)
    payload.asset.asset_number = ""

    asset, created = crud.upsert_from_payload(db_session, payload)
    assert created is False
    assert asset.asset_number == "AM-KEEP"


def test_upsert_create_vs_update_counts(db_session):
    snapshots = [_snapshot(asset_number=f"AM-20240501-000{i}") for i in range(3)]
    for i, s in enumerate(snapshots, start=1):
        _, created = crud.upsert_from_payload(db_session, payload_codec.encode(s))
        assert created is True
        assert _count(db_session) == i

    for s in snapshots:
        _, created = crud.upsert_from_payload(db_session, payload_codec.encode(s))
        assert created is False
        assert _count(db_session) == 3


def test_upsert_rejects_unsupported_version_and_leaves_store_unchanged(db_session):
    data = json.loads(payload_codec.to_text(payload_codec.encode(_snapshot())))
    data["version"] = 2
    payload = payload_codec.decode(json.dumps(data))

    with pytest.raises(UnsupportedVersion):
        crud.upsert_from_payload(db_session, payload)
    assert _count(db_session) == 0


def test_upsert_new_id_with_taken_number_is_rejected(db_session, make_asset_in):
    crud.create_asset(db_session, make_asset_in(asset_number="AM-DUP"))
    payload = payload_codec.encode(_snapshot(asset_number="AM-DUP"))

    with pytest.raises(AssetNumberConflict):
        crud.upsert_from_payload(db_session, payload)
    assert _count(db_session) == 1


def test_upsert_persistence_failure_is_surfaced(db_session, monkeypatch):
    monkeypatch.setattr(db_session, "commit", _boom)
    with pytest.raises(PersistenceError):
        crud.upsert_from_payload(db_session, payload_codec.encode(_snapshot()))
    monkeypatch.undo()
    assert _count(db_session) == 0


def test_upsert_blank_number_skips_taken_generated_numbers(db_session, make_asset_in, monkeypatch):
    crud.create_asset(db_session, make_asset_in(asset_number="AM-20240501-0001"))
    numbers = iter(["AM-20240501-0001", "AM-20240501-0002"])
    monkeypatch.setattr(crud, "generate_asset_number", lambda: next(numbers))

    payload = payload_codec.encode(_snapshot())
    payload.asset.asset_number = "  "

    asset, created = crud.upsert_from_payload(db_session, payload)
    assert created is True
    assert asset.asset_number == "AM-20240501-0002"
    assert _count(db_session) == 2


def test_reconcile_unknown_id_creates_nothing(db_session):
    assert crud.reconcile_payload(db_session, payload_codec.encode(_snapshot())) is None
    assert _count(db_session) == 0


# ---------- backup restore ----------
def test_restore_backup_creates_merges_and_reports_errors(db_session, make_asset_in):
    existing = crud.create_asset(db_session, make_asset_in(name="Laptop", status="maintenance"))
    items = payload_codec.backup_items([existing, _snapshot()])
    items[0]["assetName"] = "Laptop (restored)"
    items[0]["status"] = "inUse"
    items.append({"id": "broken"})

    result = crud.restore_backup(db_session, items)

    assert result["created"] == 1
    assert result["updated"] == 1
    assert len(result["errors"]) == 1
    assert result["errors"][0].startswith("row 3:")
    assert _count(db_session) == 2

    stored = crud.get_asset(db_session, existing.id)
    assert stored.name == "Laptop (restored)"
    assert stored.status == "maintenance"
