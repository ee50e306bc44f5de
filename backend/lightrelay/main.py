import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from .core.config import Settings, settings as default_settings
from .core.errors import RelayError
from .db.database import SessionLocal, create_tables
from .routers.commands import router as commands_router
from .routers.device import router as device_router
from .services.command_producer import LightCommandProducer
from .services.command_queue import CommandQueue, DocumentCommandQueue, RealtimeCommandQueue
from .services.light_client import LightClient
from .services.queue_janitor import QueueJanitor
from .services.settings_service import SettingsService

# Configure logging
logging.basicConfig(
    level=default_settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    realtime_queue: Optional[CommandQueue] = None
) -> FastAPI:
    """
    Build the relay API.

    Services are constructed once in the lifespan and shared through
    app.state for the life of the process.

    Args:
        settings: Configuration (defaults to environment-derived settings)
        session_factory: SQLAlchemy sessionmaker for the buffered queue and settings
        realtime_queue: Low-latency queue; built from settings when omitted
    """
    settings = settings or default_settings
    session_factory = session_factory or SessionLocal

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        logger.info(f"Starting {settings.PROJECT_NAME} backend...")

        create_tables(session_factory.kw.get("bind"))
        logger.info("Database tables created")

        buffered = DocumentCommandQueue(session_factory, timeout=settings.STORE_TIMEOUT_SECONDS)
        realtime = realtime_queue if realtime_queue is not None else RealtimeCommandQueue.from_settings(settings)
        if realtime is None:
            logger.info("No realtime database configured, low-latency path disabled")

        settings_service = SettingsService(session_factory)
        app.state.settings = settings
        app.state.settings_service = settings_service
        app.state.producer = LightCommandProducer(
            buffered, realtime, default_path=settings.DEFAULT_DELIVERY_PATH
        )
        app.state.janitor = QueueJanitor(
            buffered,
            realtime,
            interval_seconds=settings.JANITOR_INTERVAL_SECONDS,
            retention_hours=settings.COMMAND_RETENTION_HOURS,
            realtime_max_age_seconds=settings.REALTIME_MAX_AGE_SECONDS,
        )
        app.state.light_client = LightClient(
            settings_service,
            port=settings.DEVICE_HTTP_PORT,
            timeout=settings.DEVICE_TIMEOUT_SECONDS,
        )

        if settings.JANITOR_ENABLED:
            await app.state.janitor.start()

        yield

        # Shutdown
        logger.info(f"Shutting down {settings.PROJECT_NAME} backend...")
        await app.state.janitor.stop()
        await app.state.light_client.close()
        if realtime is not None:
            await realtime.close()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.PROJECT_VERSION,
        description="Reveal party light command relay",
        lifespan=lifespan
    )
    # Available to auth dependencies before the lifespan runs
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error": type(exc).__name__},
            headers=headers,
        )

    app.include_router(
        commands_router,
        prefix=f"{settings.API_V1_STR}"
    )

    app.include_router(
        device_router,
        prefix=f"{settings.API_V1_STR}"
    )

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": settings.PROJECT_NAME}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "lightrelay.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
