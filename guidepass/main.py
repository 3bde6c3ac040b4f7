import uvicorn
from fastapi import FastAPI

from guidepass.api.routes.entitlements import router as entitlements_router
from guidepass.api.routes.health import router as health_router
from guidepass.api.routes.purchase_webhook import router as purchase_webhook_router
from guidepass.core.config import get_settings
from guidepass.core.logging import configure_logging


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Guidepass Entitlements API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.include_router(health_router)
    app.include_router(purchase_webhook_router)
    app.include_router(entitlements_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "guidepass.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "dev",
    )


if __name__ == "__main__":
    run()
