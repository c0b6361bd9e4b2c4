from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from functools import wraps
from typing import Iterable, Optional
from uuid import uuid4

from pydantic import ValidationError
from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import payload_codec
import query
from asset_number import generate_asset_number
from errors import AssetError, AssetNumberConflict, PersistenceError
from models import (
    Asset,
    AssetFilter,
    AssetIn,
    AssetPayload,
    AssetSummary,
    AssetUpdate,
    Status,
    utcnow,
)
from orm import AssetORM

logger = logging.getLogger("app.crud")

NUMBER_ATTEMPTS = 5

# None で上書きしない列
REQUIRED_FIELDS = {
    "asset_number",
    "name",
    "price",
    "purchase_date",
    "registered_at",
    "scrap_years",
    "status",
}

# status / id / created_at 以外はすべて payload の値で上書きする
MERGE_FIELDS = (
    "asset_number",
    "name",
    "price",
    "purchase_date",
    "registered_at",
    "scrap_years",
    "category",
    "location",
    "owner",
    "serial_number",
    "note",
)

# 書き込み系は1本のレーンで直列化する
_write_lock = threading.RLock()


@contextmanager
def unit_of_work(db: Session):
    """
    DB に触る処理全体を包む。SQLAlchemyError は rollback して
    PersistenceError に変換する（select / delete / get も対象）。
    """
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("storage failure")
        raise PersistenceError(detail=type(e).__name__) from e


def guarded(fn):
    @wraps(fn)
    def wrapper(db: Session, *args, **kwargs):
        with unit_of_work(db):
            return fn(db, *args, **kwargs)
    return wrapper


def serialized(fn):
    @wraps(fn)
    def wrapper(db: Session, *args, **kwargs):
        with _write_lock, unit_of_work(db):
            return fn(db, *args, **kwargs)
    return wrapper


def persist(db: Session, *, commit: bool) -> None:
    try:
        if commit:
            db.commit()
        else:
            db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("persist failed commit=%s", commit)
        raise PersistenceError(detail=type(e).__name__) from e


def _asset_to_schema(a: AssetORM) -> Asset:
    return Asset(
        id=a.id,
        asset_number=a.asset_number,
        name=a.name,
        price=a.price,
        purchase_date=a.purchase_date,
        registered_at=a.registered_at,
        scrap_years=a.scrap_years,
        status=a.status,  # type: ignore[arg-type]
        category=a.category,
        location=a.location,
        owner=a.owner,
        serial_number=a.serial_number,
        note=a.note,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


# ---------- lookup ----------
def asset_number_exists(db: Session, asset_number: str, exclude_asset_id: Optional[str] = None) -> bool:
    stmt = select(AssetORM).where(AssetORM.asset_number == asset_number)
    if exclude_asset_id:
        stmt = stmt.where(AssetORM.id != exclude_asset_id)
    return db.execute(stmt).first() is not None


def next_asset_number(db: Session) -> str:
    for _ in range(NUMBER_ATTEMPTS):
        number = generate_asset_number()
        if not asset_number_exists(db, number):
            return number
    raise AssetNumberConflict(detail="could not generate a free asset number")


@guarded
def get_asset(db: Session, asset_id: str) -> Optional[Asset]:
    row = db.get(AssetORM, asset_id)
    return _asset_to_schema(row) if row else None


@guarded
def list_all_rows(db: Session) -> list[AssetORM]:
    return list(db.execute(select(AssetORM)).scalars().all())


def list_assets_filtered(db: Session, criteria: AssetFilter) -> list[Asset]:
    rows = query.evaluate(list_all_rows(db), criteria)
    return [_asset_to_schema(a) for a in rows]


def assets_meta(db: Session, criteria: AssetFilter, *, limit: int, offset: int) -> dict:
    total = len(query.evaluate(list_all_rows(db), criteria))
    total_pages = max(1, (total + limit - 1) // limit)
    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "total_pages": total_pages,
    }


def summarize_assets(db: Session, criteria: AssetFilter) -> AssetSummary:
    return query.summarize(query.evaluate(list_all_rows(db), criteria))


# ---------- write ----------
@serialized
def create_asset(db: Session, body: AssetIn, *, commit: bool = True) -> Asset:
    if body.asset_number and asset_number_exists(db, body.asset_number):
        raise AssetNumberConflict(detail=body.asset_number)

    now = utcnow()
    a = AssetORM(
        id=str(uuid4()),
        asset_number=body.asset_number or next_asset_number(db),
        name=body.name,
        price=body.price,
        purchase_date=body.purchase_date,
        registered_at=body.registered_at or now,
        scrap_years=body.scrap_years,
        status=body.status,
        category=body.category,
        location=body.location,
        owner=body.owner,
        serial_number=body.serial_number,
        note=body.note,
        created_at=now,
        updated_at=now,
    )
    db.add(a)
    persist(db, commit=commit)
    if commit:
        db.refresh(a)
    logger.info("asset created id=%s asset_number=%s", a.id, a.asset_number)
    return _asset_to_schema(a)


@serialized
def update_asset(db: Session, asset_id: str, body: AssetUpdate, *, commit: bool = True) -> Optional[Asset]:
    a = db.get(AssetORM, asset_id)
    if not a:
        return None

    data = body.model_dump(exclude_unset=True)
    number = data.get("asset_number")
    if number and asset_number_exists(db, number, exclude_asset_id=asset_id):
        raise AssetNumberConflict(detail=number)

    for k, v in data.items():
        if v is None and k in REQUIRED_FIELDS:
            continue
        setattr(a, k, v)

    a.updated_at = utcnow()

    persist(db, commit=commit)
    if commit:
        db.refresh(a)
    return _asset_to_schema(a)


@serialized
def delete_asset(db: Session, asset_id: str, *, commit: bool = True) -> bool:
    result = db.execute(delete(AssetORM).where(AssetORM.id == asset_id))
    persist(db, commit=commit)
    if result.rowcount > 0:
        logger.info("asset deleted id=%s", asset_id)
    return result.rowcount > 0


def _rows_by_ids(db: Session, asset_ids: Iterable[str]) -> list[AssetORM]:
    ids = list(dict.fromkeys(asset_ids))
    if not ids:
        return []
    return list(db.execute(select(AssetORM).where(AssetORM.id.in_(ids))).scalars().all())


@serialized
def bulk_delete_assets(db: Session, asset_ids: Iterable[str], *, commit: bool = True) -> int:
    """
    まとめて削除して flush/commit は1回だけ。
    失敗したらバッチ全体が失敗扱い（PersistenceError）。
    """
    rows = _rows_by_ids(db, asset_ids)
    for a in rows:
        db.delete(a)
    persist(db, commit=commit)
    logger.info("bulk delete count=%s", len(rows))
    return len(rows)


@serialized
def bulk_update_status(db: Session, asset_ids: Iterable[str], status: Status, *, commit: bool = True) -> int:
    rows = _rows_by_ids(db, asset_ids)
    now = utcnow()
    for a in rows:
        a.status = status
        a.updated_at = now
    persist(db, commit=commit)
    logger.info("bulk status=%s count=%s", status, len(rows))
    return len(rows)


# ---------- reconciliation ----------
@serialized
def upsert_from_payload(db: Session, payload: AssetPayload, *, commit: bool = True) -> tuple[Asset, bool]:
    """
    Create the asset if its id is unknown, otherwise merge the payload into
    the stored record.

    The merge overwrites every field except status: a stale QR code must
    never roll back the locally recorded status (e.g. a retired asset
    scanned from an old label stays retired).

    Returns (asset, created).
    """
    candidate = payload_codec.to_asset(payload)
    existing = db.get(AssetORM, candidate.id)

    if existing is None:
        return _create_from_candidate(db, payload, candidate, commit=commit), True
    return _merge_into(db, existing, payload, candidate, commit=commit), False


@serialized
def reconcile_payload(db: Session, payload: AssetPayload, *, commit: bool = True) -> Optional[Asset]:
    """
    照合のみ（スキャン用）。id が未登録なら None を返し、何も作らない。
    lookup と merge は同じロックの中で行う。
    """
    candidate = payload_codec.to_asset(payload)
    existing = db.get(AssetORM, candidate.id)
    if existing is None:
        return None
    return _merge_into(db, existing, payload, candidate, commit=commit)


def _create_from_candidate(db: Session, payload: AssetPayload, candidate: Asset, *, commit: bool) -> Asset:
    if not payload.asset.asset_number.strip():
        candidate = candidate.model_copy(update={"asset_number": next_asset_number(db)})
    elif asset_number_exists(db, candidate.asset_number):
        raise AssetNumberConflict(detail=candidate.asset_number)

    a = AssetORM(**candidate.model_dump())
    db.add(a)
    persist(db, commit=commit)
    if commit:
        db.refresh(a)
    logger.info("payload created id=%s", a.id)
    return _asset_to_schema(a)


def _merge_into(db: Session, existing: AssetORM, payload: AssetPayload, candidate: Asset, *, commit: bool) -> Asset:
    # payload の番号が空なら既存の番号を残す
    keep_number = not payload.asset.asset_number.strip()
    if not keep_number and asset_number_exists(db, candidate.asset_number, exclude_asset_id=existing.id):
        raise AssetNumberConflict(detail=candidate.asset_number)

    for field in MERGE_FIELDS:
        if field == "asset_number" and keep_number:
            continue
        setattr(existing, field, getattr(candidate, field))
    existing.updated_at = utcnow()

    persist(db, commit=commit)
    if commit:
        db.refresh(existing)
    logger.info("payload merged id=%s kept_status=%s", existing.id, existing.status)
    return _asset_to_schema(existing)


@serialized
def restore_backup(db: Session, items: list[dict]) -> dict:
    """
    items: JSON バックアップの asset 配列（payload の "asset" と同じ形）
    既存 id はマージ（status は保持）、未知の id は新規作成。
    """
    created = 0
    updated = 0
    errors: list[str] = []

    for idx, item in enumerate(items, start=1):
        try:
            payload = AssetPayload.model_validate(
                {
                    "schema": payload_codec.PAYLOAD_SCHEMA,
                    "version": payload_codec.PAYLOAD_VERSION,
                    "asset": item,
                }
            )
            _, was_created = upsert_from_payload(db, payload, commit=False)
        except ValidationError as e:
            errors.append(f"row {idx}: " + "; ".join(payload_codec.validation_messages(e)))
            continue
        except PersistenceError:
            raise
        except AssetError as e:
            errors.append(f"row {idx}: {e.message}")
            continue

        if was_created:
            created += 1
        else:
            updated += 1

    persist(db, commit=True)
    logger.info("backup restored created=%s updated=%s errors=%s", created, updated, len(errors))
    return {"created": created, "updated": updated, "errors": errors}
