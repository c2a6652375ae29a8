import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy import text

from glovebrand.config import settings
from glovebrand.db.base import SessionLocal, engine
from glovebrand.db.repositories.queue_messages import queue_from_settings
from glovebrand.errors import InfrastructureError, InvalidStageTransitionError, UrlValidationError
from glovebrand.routers import branding_jobs, debug
from glovebrand.services.artifact_storage import build_artifact_storage

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Glove Branding API",
        default_response_class=ORJSONResponse,
    )

    allow_origins = sorted(set(settings.BACKEND_CORS_ORIGINS))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UrlValidationError)
    async def url_validation_error_handler(_request: Request, exc: UrlValidationError) -> ORJSONResponse:
        return ORJSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(InvalidStageTransitionError)
    async def stage_transition_error_handler(_request: Request, exc: InvalidStageTransitionError) -> ORJSONResponse:
        return ORJSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InfrastructureError)
    async def infrastructure_error_handler(_request: Request, exc: InfrastructureError) -> ORJSONResponse:
        logger.error("api.infrastructure_error", extra={"component": exc.component, "error": str(exc)})
        return ORJSONResponse(status_code=503, content={"detail": str(exc), "component": exc.component})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})

    @app.get("/health")
    def health() -> dict[str, str]:
        checks: dict[str, str] = {}
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            checks["store"] = "ok"
        except Exception as exc:  # noqa: BLE001
            checks["store"] = f"error: {exc}"

        if not settings.JOB_QUEUE_ENABLED:
            checks["queue"] = "not configured"
        elif checks["store"] != "ok":
            checks["queue"] = "unavailable"
        else:
            session = SessionLocal()
            try:
                depth = queue_from_settings(session, settings).depth()
                checks["queue"] = f"ok ({depth['active']} active, {depth['dead_letter']} dead-lettered)"
            except Exception as exc:  # noqa: BLE001
                checks["queue"] = f"error: {exc}"
            finally:
                session.close()

        try:
            build_artifact_storage(settings)
            checks["storage"] = f"ok ({settings.ARTIFACT_STORAGE_BACKEND})"
        except InfrastructureError as exc:
            checks["storage"] = f"error: {exc}"

        checks["status"] = "ok" if all(value.startswith("ok") for value in checks.values()) else "degraded"
        return checks

    app.include_router(branding_jobs.router)
    app.include_router(debug.router)

    return app


app = create_app()
