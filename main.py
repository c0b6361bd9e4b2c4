from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import logging
import time

from db import Base, ROOT_DIR, engine, resolve_session_path
from errors import AssetNumberConflict, AssetValidationError, DecodeError, PersistenceError
from routers import ALL_ROUTERS
from session import load_session

import orm  # noqa: F401  テーブル定義の登録

# -----------------------
# Logging
# -----------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("app")

Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 起動時にセッションを読み込む（ログアウトで消える）
    app.state.session_path = resolve_session_path(ROOT_DIR)
    app.state.session = load_session(app.state.session_path)
    logger.info("session loaded user_id=%s", app.state.session.user_id or "-")
    yield
    logger.info("shutdown")


app = FastAPI(title="资产管家 API", lifespan=lifespan)

for router in ALL_ROUTERS:
    app.include_router(router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    elapsed_ms = int((time.time() - start) * 1000)
    logger.info(
        "method=%s path=%s status=%s elapsed_ms=%s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


# -----------------------
# Error handlers
# -----------------------
@app.exception_handler(DecodeError)
async def decode_error_handler(request: Request, exc: DecodeError):
    logger.info("decode failed path=%s error=%s", request.url.path, exc)
    return JSONResponse(
        status_code=400,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@app.exception_handler(AssetValidationError)
async def validation_error_handler(request: Request, exc: AssetValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": exc.message, "error": type(exc).__name__, "fields": exc.errors},
    )


@app.exception_handler(AssetNumberConflict)
async def number_conflict_handler(request: Request, exc: AssetNumberConflict):
    return JSONResponse(
        status_code=409,
        content={"detail": "asset_number already exists", "error": type(exc).__name__},
    )


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    return JSONResponse(
        status_code=503,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@app.get("/")
def root():
    return {"message": "资产管家 API", "docs": "/docs"}
