from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from dependencies import get_db
from models import PayloadText, ScanResult
from scan import handle_scanned_text

router = APIRouter()


@router.post("/scan", response_model=ScanResult)
def scan_api(
    body: PayloadText,
    db: Session = Depends(get_db),
):
    return handle_scanned_text(db, body.text)
