from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import crud
import payload_codec
from dependencies import get_db
from filter_helpers import build_filter, normalize_limit, normalize_offset
from models import (
    DEFAULT_SORT,
    Asset,
    AssetIn,
    AssetPayload,
    AssetsMeta,
    AssetSummary,
    AssetUpdate,
    BulkDeleteIn,
    BulkResult,
    BulkStatusIn,
    PayloadImportResult,
    PayloadText,
)

router = APIRouter()


@router.get("/assets", response_model=list[Asset])
def list_assets_api(
    q: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    sort: str = DEFAULT_SORT,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    criteria = build_filter(q, status, category, start, end, sort)
    limit = normalize_limit(limit)
    offset = normalize_offset(offset)

    assets = crud.list_assets_filtered(db, criteria)
    return assets[offset:offset + limit]


@router.get("/assets/meta", response_model=AssetsMeta)
def assets_meta_api(
    q: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    criteria = build_filter(q, status, category, start, end, DEFAULT_SORT)
    limit = normalize_limit(limit)
    offset = normalize_offset(offset)

    meta = crud.assets_meta(db, criteria, limit=limit, offset=offset)
    return AssetsMeta(**meta)


@router.get("/assets/summary", response_model=AssetSummary)
def assets_summary_api(
    q: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
):
    criteria = build_filter(q, status, category, start, end, DEFAULT_SORT)
    return crud.summarize_assets(db, criteria)


@router.post("/assets", response_model=Asset, status_code=201)
def create_asset_api(
    body: AssetIn,
    db: Session = Depends(get_db),
):
    return crud.create_asset(db, body)


@router.post("/assets/bulk-delete", response_model=BulkResult)
def bulk_delete_api(
    body: BulkDeleteIn,
    db: Session = Depends(get_db),
):
    return BulkResult(affected=crud.bulk_delete_assets(db, body.asset_ids))


@router.post("/assets/bulk-status", response_model=BulkResult)
def bulk_status_api(
    body: BulkStatusIn,
    db: Session = Depends(get_db),
):
    return BulkResult(affected=crud.bulk_update_status(db, body.asset_ids, body.status))


@router.post("/assets/payload", response_model=PayloadImportResult)
def import_payload_api(
    body: PayloadText,
    db: Session = Depends(get_db),
):
    # 後台登記: 未登録なら作成、登録済みならマージ
    payload = payload_codec.decode(body.text)
    asset, created = crud.upsert_from_payload(db, payload)
    return PayloadImportResult(asset=asset, created=created)


@router.get("/assets/{asset_id}", response_model=Asset)
def get_asset_api(
    asset_id: str,
    db: Session = Depends(get_db),
):
    asset = crud.get_asset(db, asset_id)
    if not asset:
        raise HTTPException(status_code=404, detail="asset not found")
    return asset


@router.get("/assets/{asset_id}/payload", response_model=AssetPayload, response_model_by_alias=True)
def asset_payload_api(
    asset_id: str,
    db: Session = Depends(get_db),
):
    asset = crud.get_asset(db, asset_id)
    if not asset:
        raise HTTPException(status_code=404, detail="asset not found")
    return payload_codec.encode(asset)


@router.patch("/assets/{asset_id}", response_model=Asset)
def update_asset_api(
    asset_id: str,
    body: AssetUpdate,
    db: Session = Depends(get_db),
):
    updated = crud.update_asset(db, asset_id, body)
    if not updated:
        raise HTTPException(status_code=404, detail="asset not found")
    return updated


@router.delete("/assets/{asset_id}", status_code=204)
def delete_asset_api(
    asset_id: str,
    db: Session = Depends(get_db),
):
    ok = crud.delete_asset(db, asset_id)
    if not ok:
        raise HTTPException(status_code=404, detail="asset not found")
    return None
