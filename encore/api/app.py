"""FastAPI app, CORS, and route registration."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Configure logging in the worker process (uvicorn --reload spawns a fresh one)
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(name)s: %(message)s",
)

from encore.api.state import AppState, get_state
from encore.config import ensure_data_dir

# Import routes after state to avoid circular imports
from encore.api.routes import metadata

__all__ = ["app", "create_app", "AppState", "get_state"]


def create_app(state: AppState | None = None) -> FastAPI:
    """Build the app around one AppState; its metadata service runs for the app's lifetime."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_data_dir()
        app.state.encore.start()
        yield
        app.state.encore.stop()

    app = FastAPI(
        title="Encore API",
        description="Time-shifted now-playing and schedule metadata",
        lifespan=lifespan,
    )
    app.state.encore = state or AppState()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(metadata.router, prefix="/api/metadata", tags=["metadata"])
    return app


app = create_app()
