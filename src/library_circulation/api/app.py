"""
FastAPI application factory for the Library Circulation Service.

The lifespan owns the process-wide resources:

1. Database manager - created, schema ensured, disposed on shutdown
2. Overdue scanner  - started when enabled, stopped on shutdown

Routes are synchronous; FastAPI runs them in its thread pool and each request
opens its own session through ``session_scope``.
"""

import logging
from contextlib import asynccontextmanager

import logfire
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import ServerConfig, get_config, set_config
from ..database.session import DatabaseManager, set_db_manager
from ..observability import configure_logfire, configure_logging
from ..overdue import OverdueScanner
from .errors import register_exception_handlers
from .routes import routers

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


def create_app(
    config: ServerConfig | None = None, scanner: OverdueScanner | None = None
) -> FastAPI:
    """
    Build the application.

    Args:
        config: Service configuration; defaults to the environment
        scanner: Overdue scanner to run; a logging one is created if omitted
    """
    config = config or get_config()
    set_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db_manager = DatabaseManager(config=config)
        set_db_manager(db_manager)
        db_manager.init_database()

        overdue_scanner = app.state.overdue_scanner
        if config.overdue_checks_enabled:
            overdue_scanner.start(config.overdue_check_interval_minutes)
        else:
            logger.info("Overdue checks disabled")

        logger.info("%s %s started", config.service_name, config.service_version)
        try:
            yield
        finally:
            overdue_scanner.stop()
            db_manager.close()
            set_db_manager(None)
            logger.info("%s stopped", config.service_name)

    app = FastAPI(
        title="Library Circulation Service",
        version=config.service_version,
        debug=config.debug,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.overdue_scanner = scanner or OverdueScanner()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    for router in routers:
        app.include_router(router, prefix=API_PREFIX)

    return app


def main() -> None:
    """Run the HTTP API with uvicorn."""
    config = get_config()
    configure_logging(config)
    configure_logfire(config)

    app = create_app(config)
    logfire.instrument_fastapi(app)

    logger.info("Serving on http://%s:%d%s", config.http_host, config.http_port, API_PREFIX)
    uvicorn.run(
        app, host=config.http_host, port=config.http_port, log_level=config.log_level.lower()
    )


if __name__ == "__main__":
    main()
