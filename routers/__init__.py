from .assets_api import router as assets_api_router
from .export_api import router as export_api_router
from .scan_api import router as scan_api_router
from .session_api import router as session_api_router

ALL_ROUTERS = (
    assets_api_router,
    export_api_router,
    scan_api_router,
    session_api_router,
)
