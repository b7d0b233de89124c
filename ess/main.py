from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from .api import router
from .attendance_api import router as attendance_router
from .auth_api import router as auth_router
from .config import settings
from .core.logging_config import setup_logging
from .core.middleware import RequestContextMiddleware
from .db import get_db, init_db
from .errors import EssError, InternalError
from .team_api import router as team_router

logger = structlog.get_logger("ess.api")


def _first_validation_message(exc: RequestValidationError) -> str:
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part not in {"body", "query", "path"})
        message = error.get("msg") or "Invalid request"
        return f"{location}: {message}" if location else message
    return "Invalid request"


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if bool(settings.DB_AUTO_CREATE_ALL):
        init_db()
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="ESS Portal", description="Employee self-service approvals API", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(EssError)
    async def ess_error_handler(request: Request, exc: EssError):
        if exc.status >= 500:
            logger.error("request_error", kind=exc.kind, error=exc.message)
        return JSONResponse(status_code=exc.status, content=exc.to_envelope())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _first_validation_message(exc), "status": 400})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", error=str(exc))
        return JSONResponse(status_code=500, content=InternalError("Internal server error").to_envelope())

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials="*" not in settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health(db: Session = Depends(get_db)):
        try:
            db.execute(text("SELECT 1"))
        except Exception:
            return JSONResponse(status_code=503, content={"status": "degraded", "db": "error"})
        return {"status": "ok", "db": "ok"}

    app.include_router(auth_router)
    app.include_router(team_router)
    app.include_router(attendance_router)
    app.include_router(router)
    return app


app = create_app()
