from pathlib import Path
import os
import sys
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

def app_root_dir() -> Path:
    if getattr(sys, "frozen", False):
        exe_dir = Path(sys.executable).resolve().parent
        return exe_dir.parent
    return Path(__file__).resolve().parent

def resolve_data_path(root_dir: Path, env_name: str, default_name: str) -> Path:
    custom_path = os.getenv(env_name)
    if not custom_path:
        data_dir = root_dir / "data"
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir / default_name

    path = Path(custom_path).expanduser()
    if not path.is_absolute():
        path = (root_dir / path).resolve()

    path.parent.mkdir(parents=True, exist_ok=True)
    return path

def resolve_db_path(root_dir: Path) -> Path:
    return resolve_data_path(root_dir, "APP_DB_PATH", "assets.db")

def resolve_session_path(root_dir: Path) -> Path:
    return resolve_data_path(root_dir, "APP_SESSION_PATH", "session.json")

ROOT_DIR = app_root_dir()
DB_PATH = resolve_db_path(ROOT_DIR)
DATABASE_URL = f"sqlite:///{DB_PATH.as_posix()}"

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

class Base(DeclarativeBase):
    pass
