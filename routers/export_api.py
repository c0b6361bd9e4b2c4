from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

import crud
from csv_utils import assets_to_csv_response, assets_to_json_response, json_bytes_to_items
from dependencies import get_db
from filter_helpers import build_filter
from models import DEFAULT_SORT

router = APIRouter()


@router.get("/export/assets.csv")
def export_csv(
    q: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    sort: str = DEFAULT_SORT,
    db: Session = Depends(get_db),
):
    criteria = build_filter(q, status, category, start, end, sort)
    assets = crud.list_assets_filtered(db, criteria)
    return assets_to_csv_response(assets, filename="assets.csv")


@router.get("/export/assets.json")
def export_json(
    q: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    sort: str = DEFAULT_SORT,
    db: Session = Depends(get_db),
):
    criteria = build_filter(q, status, category, start, end, sort)
    assets = crud.list_assets_filtered(db, criteria)
    return assets_to_json_response(assets, filename="assets-backup.json")


@router.post("/export/restore")
async def restore_backup(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    data = await file.read()
    items, err = json_bytes_to_items(data)
    if err:
        return {"created": 0, "updated": 0, "errors": [err]}
    return crud.restore_backup(db, items)
