import os
import tempfile
from datetime import datetime

import pytest

# ---- テスト用DBパス（db.py の import より前に設定する）----
_TMP_DIR = tempfile.mkdtemp(prefix="asset_app_")
os.environ["APP_DB_PATH"] = os.path.join(_TMP_DIR, "test_assets.db")
os.environ["APP_SESSION_PATH"] = os.path.join(_TMP_DIR, "session.json")

from fastapi.testclient import TestClient  # noqa: E402


@pytest.fixture(scope="session")
def app_module():
    import main

    return main


@pytest.fixture()
def client(app_module):
    with TestClient(app_module.app) as c:
        yield c


@pytest.fixture()
def db_session(app_module):
    from db import SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def clean_db(app_module, db_session):
    # 各テスト前にテーブルとセッションファイルを全消し
    from sqlalchemy import delete
    from orm import AssetORM

    db_session.execute(delete(AssetORM))
    db_session.commit()
    if os.path.exists(os.environ["APP_SESSION_PATH"]):
        os.remove(os.environ["APP_SESSION_PATH"])
    yield


@pytest.fixture()
def make_asset_in():
    from models import AssetIn

    def _make(name="Laptop", **kwargs):
        body = {
            "name": name,
            "price": 1200.0,
            "purchase_date": datetime(2024, 1, 10, 9, 0, 0),
            "registered_at": datetime(2024, 1, 12, 9, 0, 0),
            "scrap_years": 3,
        }
        body.update(kwargs)
        return AssetIn(**body)

    return _make
