"""Engine access for route handlers."""

from fastapi import HTTPException, Request

from lectio_sync.engine import SyncEngine


def get_engine(request: Request) -> SyncEngine:
    """Return the engine built by the application lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Sync engine not started")
    return engine
