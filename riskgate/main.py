"""
Riskgate - Application Entry Point.

Starts the FastAPI application with the challenge API, admin API and the
background expiry sweeper.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from riskgate.config import settings
from riskgate.api.admin import router as admin_router
from riskgate.api.routes import router as api_router
from riskgate.errors import InvalidInput, PersistenceError, RiskgateError
from riskgate.services import Services, build_services

logger = logging.getLogger("riskgate")

VERSION = "0.1.0"


def _lifespan(services: Services, manage: bool):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application startup / shutdown lifecycle."""
        # ── Startup ──────────────────────────────────────
        if manage:
            logging.basicConfig(
                level=getattr(logging, settings.log_level.upper()),
                format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                force=True,
            )
            logger.info("Riskgate v%s starting", VERSION)
            await services.startup()
            logger.info("API docs: http://%s:%d/api/docs", settings.host, settings.port)

        yield

        # ── Shutdown ─────────────────────────────────────
        if manage:
            await services.shutdown()
            logger.info("Riskgate stopped.")

    return lifespan


# ── Error handlers ───────────────────────────────────────


async def _riskgate_error(request: Request, exc: RiskgateError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid')}" if field else "Invalid request"
    err = InvalidInput(message)
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


async def _database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error on %s: %s", request.url.path, exc)
    err = PersistenceError("Storage operation failed")
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    err = RiskgateError("Internal server error")
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Factory for the FastAPI application.

    When ``services`` is supplied the caller owns its lifecycle (tests
    start and stop it themselves); otherwise the app builds the pipeline
    from settings and manages it in the lifespan.
    """
    manage = services is None
    services = services or build_services(settings)

    app = FastAPI(
        title=settings.app_name,
        version=VERSION,
        description="Bot-mitigation risk scoring and challenge lifecycle",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=_lifespan(services, manage),
    )
    app.state.services = services

    # CORS (widget is embedded on customer sites)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RiskgateError, _riskgate_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(SQLAlchemyError, _database_error)
    app.add_exception_handler(Exception, _unhandled_error)

    # ── Routers ──────────────────────────────────────────
    app.include_router(api_router, prefix="/api")
    app.include_router(admin_router, prefix="/api")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "riskgate.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level,
    )
