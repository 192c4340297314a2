"""
FastAPI application entry point.

Exposes the sync engine's trigger and query surface over HTTP.
The engine is built and started in the lifespan, kept on app.state.engine,
and stopped on shutdown. Optional API key authentication.
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import Depends, FastAPI

from lectio_sync import __version__
from lectio_sync.engine import SyncEngine
from lectio_sync.infra.settings import Settings
from .routers import sync, cache, readings
from .dependencies import auth


logger = logging.getLogger(__name__)

# Tag metadata for Swagger UI
tags_metadata = [
    {
        "name": "sync",
        "description": "Sync triggers and status - manual sync, host background slots, preload, pause/resume and the sync ledger",
    },
    {
        "name": "cache",
        "description": "Local cache maintenance - statistics and rolling window trimming",
    },
    {
        "name": "readings",
        "description": "Offline-first read path - cached liturgical days and their readings",
    },
]


def _default_engine_factory() -> SyncEngine:
    return SyncEngine.create(Settings.from_env())


def create_app(engine_factory: Optional[Callable[[], SyncEngine]] = None) -> FastAPI:
    """
    Build the application.

    Args:
        engine_factory: Builds an un-started engine (defaults to one
            configured from the environment)
    """
    factory = engine_factory or _default_engine_factory

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Startup: build the engine, recover the ledger, arm triggers.
        Shutdown: stop the engine (in-flight syncs finish first).
        """
        engine = factory()
        recovery_stats = engine.start()
        app.state.engine = engine
        logger.info(f"API startup complete, recovery: {recovery_stats}")

        yield

        logger.info("API shutdown, stopping sync engine")
        app.state.engine = None
        engine.stop()

    app = FastAPI(
        title="Lectio Sync API",
        lifespan=lifespan,
        description="""
## Lectio Sync API

Offline-first sync engine for daily liturgical readings.

### Authentication
When `API_AUTH_ENABLED=true`, all endpoints except `/health` require
an `X-API-Key` header matching the `API_KEY` environment variable.

### Features
- **Scheduled Sync**: Primary/backup daily sync, hourly fallback sweep, single retry
- **Background Slots**: Host-granted slots are always acknowledged
- **Cache Window**: Preload and trim the rolling window around today
- **Ledger**: Recent sync jobs and performance metrics

### Usage
```bash
# Start server
python main.py serve --host 127.0.0.1 --port 8000

# Manual sync
curl -X POST http://localhost:8000/sync/manual \\
  -H "Content-Type: application/json" \\
  -H "X-API-Key: your-api-key" \\
  -d '{"target_date": "2025-12-25"}'
```
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=tags_metadata,
    )
    app.state.engine = None

    # Health check - NO authentication (operational endpoint)
    @app.get("/health")
    async def health_check():
        """Health check endpoint. Not authenticated."""
        engine = app.state.engine
        return {
            "status": "ok",
            "version": __version__,
            "engine_running": bool(engine and engine.is_running),
        }

    # Include routers WITH authentication dependency (when enabled)
    auth_dependency = [Depends(auth.verify_api_key)] if auth.API_AUTH_ENABLED else []

    app.include_router(
        sync.router, prefix="/sync", tags=["sync"], dependencies=auth_dependency
    )
    app.include_router(
        cache.router, prefix="/cache", tags=["cache"], dependencies=auth_dependency
    )
    app.include_router(
        readings.router, prefix="/readings", tags=["readings"], dependencies=auth_dependency
    )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
