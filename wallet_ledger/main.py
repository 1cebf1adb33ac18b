import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .api.exceptions import register_exception_handlers
from .api.routes import notification_router, router as accounts_router, transfer_router
from .core.config import Settings, get_settings
from .core.db import Database
from .services import build_notifier


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database = Database.from_settings(settings)
        database.create_all()
        app.state.database = database
        app.state.notifier = build_notifier(settings, database)
        try:
            yield
        finally:
            database.dispose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings

    app.include_router(accounts_router)
    app.include_router(transfer_router)
    app.include_router(notification_router)
    register_exception_handlers(app)

    @app.get("/health")
    def read_health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
