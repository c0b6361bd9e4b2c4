"""
Scan flow: Idle -> Decoded -> (NotRegistered | Reconciled) -> Idle.

Scanning only verifies and refreshes assets that are already registered.
An unknown id is reported back instead of being created; registering new
assets is a back-office action (see ``POST /assets/payload``).
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

import crud
import payload_codec
from models import ScanResult

logger = logging.getLogger("app.scan")

NOT_REGISTERED_MESSAGE = "资产不存在，请先在后台登记"
RECONCILED_MESSAGE = "资产信息已同步"


def handle_scanned_text(db: Session, text: str) -> ScanResult:
    # Decoded: schema/version/日付まで検証してから照合する
    # (DecodeError はそのまま呼び出し側へ)
    payload = payload_codec.decode(text)
    payload_codec.to_asset(payload)
    asset_id = str(payload.asset.id)

    asset = crud.reconcile_payload(db, payload)
    if asset is None:
        logger.info("scan not registered id=%s", asset_id)
        return ScanResult(state="not_registered", asset_id=asset_id, message=NOT_REGISTERED_MESSAGE)

    logger.info("scan reconciled id=%s", asset_id)
    return ScanResult(
        state="reconciled",
        asset_id=asset_id,
        message=RECONCILED_MESSAGE,
        asset=asset,
    )
