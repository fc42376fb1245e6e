"""
FastAPI application factory for the live model server.

Routes:
- /api/status -> Summary of the live model
- /events -> Server-sent events stream of lifecycle events
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routes import api
from .state import ModelServer


def create_app(model_server: ModelServer) -> FastAPI:
    """Create the FastAPI app serving the given model server."""
    app = FastAPI(
        title="Multi-camera Tracker",
        version="0.1.0",
        description="Live 3D tracking results",
    )
    app.state.model_server = model_server

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(api.router, prefix="/api")
    app.include_router(api.events_router)

    return app
