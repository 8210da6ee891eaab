"""
FastAPI application for the leverage controllers.

Loads controller configs at startup and runs the keeper loop next to the API.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from config import Settings, settings as default_settings
from routers import leverage_controllers
from services.controller_registry import ControllerRegistry
from services.keeper_service import KeeperService

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )


def create_app(
    app_settings: Optional[Settings] = None,
    registry: Optional[ControllerRegistry] = None,
) -> FastAPI:
    app_settings = app_settings or default_settings
    registry = registry or ControllerRegistry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app_settings.controllers.autoload:
            loaded = registry.load_directory(app_settings.controllers.config_path)
            logger.info(f"Loaded {len(loaded)} controller(s): {', '.join(loaded) or '-'}")
        keeper: Optional[KeeperService] = None
        if app_settings.keeper.enabled:
            keeper = KeeperService(
                registry,
                principal=app_settings.keeper.principal,
                interval=app_settings.keeper.interval,
                operator=app_settings.keeper.operator or None,
            )
            keeper.start()
        app.state.keeper = keeper
        try:
            yield
        finally:
            if keeper is not None:
                keeper.stop()

    app = FastAPI(title="Leverage Controller API", lifespan=lifespan)
    app.state.controller_registry = registry
    app.include_router(leverage_controllers.router)
    return app


configure_logging(default_settings.app.log_level)
app = create_app()
