import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import Settings, get_settings
from .db.database import build_engine, build_session_factory, init_db
from .api.routes import router as api_router
from .api.websocket import router as ws_router, ConnectionManager
from .oui.resolver import ManufacturerResolver
from .oui.seed import seed_store
from .oui.store import IdentifierStore
from .scanner.orchestrator import ScanOrchestrator
from .scanner.prober import HostProber

logger = logging.getLogger(__name__)


def configure_logging(level: str):
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings: Settings = app.state.settings

    # Startup
    configure_logging(settings.LOG_LEVEL)
    logger.info("Starting %s v%s", settings.APP_NAME, settings.APP_VERSION)

    engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    await init_db(engine)
    store = IdentifierStore(build_session_factory(engine))
    logger.info("Identifier database initialized")

    if settings.SEED_ON_STARTUP:
        await seed_store(store, settings.VENDOR_DATABASE_PATH, settings.IEEE_REGISTRY_PATH)

    resolver = ManufacturerResolver.from_settings(store, settings)
    orchestrator = ScanOrchestrator.from_settings(HostProber.from_settings(resolver, settings), settings)

    app.state.engine = engine
    app.state.store = store
    app.state.resolver = resolver
    app.state.orchestrator = orchestrator
    logger.info(
        "Scanner ready: %d workers, %d addresses per chunk, %d lookup providers",
        settings.MAX_WORKERS, settings.CHUNK_SIZE, len(resolver.providers),
    )

    yield

    # Shutdown
    logger.info("Shutting down...")
    await orchestrator.shutdown()
    relays = list(app.state.relay_tasks)
    for task in relays:
        task.cancel()
    await asyncio.gather(*relays, return_exceptions=True)
    await engine.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application around one set of settings."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="LAN device discovery and manufacturer lookup",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.connections = ConnectionManager()
    app.state.relay_tasks = set()

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(api_router, prefix="/api", tags=["API"])
    app.include_router(ws_router, tags=["WebSocket"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running"
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        orchestrator = app.state.orchestrator
        return {
            "status": "healthy",
            "free_workers": orchestrator.pool.free_count,
            "active_scans": sum(1 for s in orchestrator.list_jobs() if s.status not in ("completed", "error")),
        }

    return app


app = create_app()
