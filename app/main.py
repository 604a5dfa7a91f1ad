import uvicorn
from fastapi import FastAPI

from app.api.routes.codes import router as codes_router
from app.api.routes.health import router as health_router
from app.api.routes.internal_codes import router as internal_codes_router
from app.api.routes.stripe_webhook import router as stripe_webhook_router
from app.core.config import get_settings
from app.core.logging import configure_logging


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Subscription Codes API",
        version="0.1.0",
        docs_url="/docs" if settings.enable_openapi_docs else None,
        redoc_url="/redoc" if settings.enable_openapi_docs else None,
        openapi_url="/openapi.json" if settings.enable_openapi_docs else None,
    )
    app.include_router(health_router)
    app.include_router(stripe_webhook_router)
    app.include_router(codes_router)
    app.include_router(internal_codes_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "dev",
    )


if __name__ == "__main__":
    run()
