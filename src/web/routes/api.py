from __future__ import annotations

import json
import logging
import queue
from typing import Any, Dict, Iterator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from ..api_models import StatusResponse
from ..state import ModelServer

router = APIRouter()
events_router = APIRouter()

# Seconds between keep-alive comments on an idle event stream.
KEEPALIVE_SECONDS = 15.0


def build_status(model_server: ModelServer) -> StatusResponse:
    summary = model_server.status()
    return StatusResponse(num_live_objects=len(summary["live_obj_ids"]), **summary)


def format_sse(msg: Dict[str, Any]) -> str:
    """Encode one event as a server-sent events message."""
    return f"event: {msg['type']}\ndata: {json.dumps(msg)}\n\n"


def stream_events(model_server: ModelServer, keepalive: float = KEEPALIVE_SECONDS) -> Iterator[str]:
    """
    Yield server-sent events until the client disconnects.

    The subscription is removed when the generator is closed.
    """
    q = model_server.subscribe()
    logging.info("Event stream client connected")
    try:
        while True:
            try:
                msg = q.get(timeout=keepalive)
            except queue.Empty:
                yield ": keepalive\n\n"
                continue
            yield format_sse(msg)
    finally:
        model_server.unsubscribe(q)
        logging.info("Event stream client disconnected")


@router.get("/status", response_model=StatusResponse)
def status(request: Request):
    return build_status(request.app.state.model_server)


@events_router.get("/events")
def events(request: Request):
    return StreamingResponse(
        stream_events(request.app.state.model_server),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
