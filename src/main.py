import logging
import time

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from src.api.routes.routes import router
from src.application.clock import Clock, utc_now
from src.bootstrap import build_services
from src.infrastructure.config import Settings

logger = logging.getLogger(__name__)


def _wait_for_db(engine: Engine, settings: Settings) -> None:
    # Handles the common case where API starts before Postgres is ready.
    max_retries = settings.db_connect_max_retries
    retry_delay_seconds = settings.db_connect_retry_delay

    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database is reachable.")
            return
        except OperationalError:
            if attempt == max_retries:
                logger.exception(
                    "Database not reachable after %s attempts. Check DATABASE_URL.",
                    max_retries,
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1f seconds...",
                attempt,
                max_retries,
                retry_delay_seconds,
            )
            time.sleep(retry_delay_seconds)


def create_app(settings: Settings | None = None, clock: Clock = utc_now) -> FastAPI:
    settings = settings or Settings.from_env()
    services = build_services(settings, clock=clock)

    app = FastAPI(title="Seat Inventory Engine")
    app.state.services = services
    app.include_router(router)

    @app.on_event("startup")
    def on_startup() -> None:
        _wait_for_db(services.engine, settings)
        services.create_schema()
        if settings.sweeper_enabled:
            services.sweeper.start()

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        services.shutdown()

    return app
