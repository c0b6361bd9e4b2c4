"""
QR payload codec.

A payload is a versioned snapshot of one asset:

    {"schema": "asset_qr", "version": 1, "asset": {"id": ..., "assetName": ...}}

Only this application produces and consumes it, so the schema tag and the
version must match exactly. Anything else is rejected instead of guessed at.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from asset_number import generate_asset_number
from errors import (
    AssetValidationError,
    InvalidDate,
    MalformedPayload,
    SchemaMismatch,
    UnsupportedVersion,
)
from models import Asset, AssetDTO, AssetPayload, to_utc_naive, utcnow

PAYLOAD_SCHEMA = "asset_qr"
PAYLOAD_VERSION = 1


def format_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.isoformat().replace("+00:00", "Z")


def parse_iso(text: str) -> datetime:
    try:
        value = datetime.fromisoformat(text)
    except (TypeError, ValueError) as e:
        raise InvalidDate(detail=repr(text)) from e
    return to_utc_naive(value)


def validation_messages(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    ]


def to_dto(asset: Any) -> AssetDTO:
    """ORM/Pydantic どちらでもOK（属性アクセスできればOK）"""
    return AssetDTO(
        id=asset.id,
        asset_name=asset.name,
        price=asset.price,
        purchase_date_iso=format_iso(asset.purchase_date),
        register_date_iso=format_iso(asset.registered_at),
        scrap_years=asset.scrap_years,
        asset_number=asset.asset_number,
        status=asset.status,
        category=asset.category,
        location=asset.location,
        owner=asset.owner,
        serial_number=asset.serial_number,
        note=asset.note,
    )


def encode(asset: Any) -> AssetPayload:
    return AssetPayload(schema_tag=PAYLOAD_SCHEMA, version=PAYLOAD_VERSION, asset=to_dto(asset))


def to_text(payload: AssetPayload) -> str:
    return payload.model_dump_json(by_alias=True)


def decode(text: str) -> AssetPayload:
    try:
        return AssetPayload.model_validate_json(text)
    except ValidationError as e:
        raise MalformedPayload(detail="; ".join(validation_messages(e))) from e


def to_asset(payload: AssetPayload, *, now: Optional[datetime] = None) -> Asset:
    if payload.schema_tag != PAYLOAD_SCHEMA:
        raise SchemaMismatch(detail=repr(payload.schema_tag))
    if payload.version != PAYLOAD_VERSION:
        raise UnsupportedVersion(detail=f"version={payload.version}")

    dto = payload.asset
    purchase_date = parse_iso(dto.purchase_date_iso)
    registered_at = parse_iso(dto.register_date_iso)
    now = now or utcnow()

    try:
        return Asset(
            id=str(dto.id),
            asset_number=dto.asset_number.strip() or generate_asset_number(),
            name=dto.asset_name,
            price=dto.price,
            purchase_date=purchase_date,
            registered_at=registered_at,
            scrap_years=dto.scrap_years,
            status=dto.status,
            category=dto.category,
            location=dto.location,
            owner=dto.owner,
            serial_number=dto.serial_number,
            note=dto.note,
            created_at=now,
            updated_at=now,
        )
    except ValidationError as e:
        raise AssetValidationError(validation_messages(e)) from e


def backup_items(assets: Iterable[Any]) -> list[dict]:
    """JSON バックアップ: payload の asset 部分の配列"""
    return [to_dto(a).model_dump(mode="json", by_alias=True) for a in assets]
