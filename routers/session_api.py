from pathlib import Path

from fastapi import APIRouter, Depends, Request

from dependencies import get_session_path
from session import AppSession, clear_session, save_session

router = APIRouter()


@router.get("/session", response_model=AppSession)
def get_session_api(request: Request):
    return request.app.state.session


@router.put("/session", response_model=AppSession)
def put_session_api(
    body: AppSession,
    request: Request,
    path: Path = Depends(get_session_path),
):
    save_session(body, path)
    request.app.state.session = body
    return body


@router.delete("/session", status_code=204)
def logout_api(
    request: Request,
    path: Path = Depends(get_session_path),
):
    request.app.state.session = clear_session(path)
    return None
