import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from netapp.api.v1 import analysis, jobs, standards
from netapp.config import settings
from netapp.core.logging import RequestLoggingMiddleware, setup_logging

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    setup_logging(json_format=settings.json_logs, level=logging.DEBUG if settings.debug else logging.INFO)

    application = FastAPI(
        title=settings.app_name,
        version="0.1.0",
    )

    application.add_middleware(RequestLoggingMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(analysis.router, prefix="/api/v1/analysis", tags=["analysis"])
    application.include_router(jobs.router, prefix="/api/v1/analysis", tags=["jobs"])
    application.include_router(standards.router, prefix="/api/v1/standards", tags=["standards"])

    @application.get("/health")
    async def health_check() -> dict:
        result: dict = {"status": "ok", "services": {}}

        # The API itself does not need Redis; only background jobs do
        try:
            import redis

            r = redis.from_url(settings.redis_url)
            r.ping()
            result["services"]["redis"] = "ok"
        except Exception as e:
            result["services"]["redis"] = f"error: {e}"
            result["status"] = "degraded"

        return result

    return application


app = create_app()
