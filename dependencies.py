from collections.abc import Generator
from pathlib import Path

from fastapi import Request
from sqlalchemy.orm import Session

from db import SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_path(request: Request) -> Path:
    return request.app.state.session_path
