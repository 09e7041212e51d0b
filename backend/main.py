from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from api.router import api_router
from core.config import settings
from core.errors import OverloadConfirmationRequired, RemoteRejection, ValidationRejection
from core.logging import setup_logging
from core.store import StoreRejectedError, StoreResponseError, StoreUnavailableError


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    setup_logging(environment=settings.environment)
    is_production = settings.environment.lower() == "production"
    app = FastAPI(
        title="Pace Projection Engine API",
        version="0.1.0",
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
        openapi_url=None if is_production else "/openapi.json",
    )

    @app.exception_handler(ValidationRejection)
    def _validation_rejection(_request, exc: ValidationRejection):
        status_code = 404 if exc.code.endswith("_NOT_FOUND") else 409
        logger.info("Rejected locally (%s): %s", status_code, exc.code)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(OverloadConfirmationRequired)
    def _overload_confirmation(_request, exc: OverloadConfirmationRequired):
        return JSONResponse(status_code=409, content=exc.to_dict())

    @app.exception_handler(RemoteRejection)
    def _remote_rejection(_request, exc: RemoteRejection):
        return JSONResponse(status_code=422, content=exc.to_dict())

    @app.exception_handler(StoreRejectedError)
    def _store_rejected(_request, exc: StoreRejectedError):
        # Reads the store refused (unknown projection, no access): pass the status through.
        status_code = exc.status_code if 400 <= exc.status_code < 500 else 502
        return JSONResponse(
            status_code=status_code,
            content={"code": "STORE_REJECTED", "message": exc.message},
        )

    @app.exception_handler(StoreUnavailableError)
    def _store_unavailable(_request, exc: StoreUnavailableError):
        logger.warning("Store unavailable (503)", exc_info=exc)
        return JSONResponse(
            status_code=503,
            content={
                "code": "STORE_UNAVAILABLE",
                "message": "Store of record temporarily unavailable. Please retry.",
            },
        )

    @app.exception_handler(StoreResponseError)
    def _store_bad_response(_request, exc: StoreResponseError):
        logger.error("Unreadable store response (502): %s", exc)
        return JSONResponse(
            status_code=502,
            content={
                "code": "STORE_BAD_RESPONSE",
                "message": "Store of record returned an unreadable response.",
            },
        )

    allow_origins = [settings.frontend_origin]
    allow_origin_regex = None
    if not is_production:
        # Dev-friendly: allow the configured origin and any localhost port.
        allow_origins.extend(["http://localhost:5173", "http://127.0.0.1:5173"])
        allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_origin_regex=allow_origin_regex,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> dict:
        return {"app": "ok", "store": settings.store_base_url}

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=not settings.environment.lower() == "production")
