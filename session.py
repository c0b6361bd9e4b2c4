"""
Application session: who is signed in and whether biometric unlock is on.

Loaded once at startup (``main.lifespan``), saved when changed and cleared on
logout. Credential and biometric checks themselves happen outside this
service.
"""
from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ValidationError, field_validator

logger = logging.getLogger("app.session")


class AppSession(BaseModel):
    user_id: str = ""
    biometric_enabled: bool = False

    @field_validator("user_id")
    @classmethod
    def strip_user_id(cls, v: str) -> str:
        return v.strip()

    @property
    def has_registered(self) -> bool:
        return bool(self.user_id)


def load_session(path: Path) -> AppSession:
    if not path.exists():
        return AppSession()
    try:
        return AppSession.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError:
        logger.warning("session file unreadable, starting signed out path=%s", path)
        return AppSession()


def save_session(session: AppSession, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(session.model_dump_json(), encoding="utf-8")


def clear_session(path: Path) -> AppSession:
    path.unlink(missing_ok=True)
    return AppSession()
