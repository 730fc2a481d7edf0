"""
Subscriber channel: WebSocket endpoint streaming tracker envelopes.

Clients connect to ``/ws`` and receive baseline, change and advisory
envelopes as JSON text frames. A connecting client gets no history replay;
it sends ``{"type": "request_baseline"}`` to receive the active repository's
current commits. ``{"type": "ping"}`` is answered with ``{"type": "pong"}``.
"""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config.settings import settings
from services.repo_tracker.subscribers import WebSocketSubscriber

logger = logging.getLogger(__name__)


def create_subscriber_app(tracker) -> FastAPI:
    """Build the subscriber-channel application for a RepositoryTracker."""
    app = FastAPI(
        title="GitFlow Live Subscriber Channel",
        description="Streams repository baselines and change events",
        version=settings.version,
        docs_url=None,
        redoc_url=None,
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint with the active session's status."""
        return {
            "status": "ok",
            "service": "subscriber_channel",
            **await tracker.status(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.websocket("/ws")
    async def stream_events(websocket: WebSocket):
        await websocket.accept()
        subscription_id = tracker.dispatcher.subscribe(WebSocketSubscriber(websocket))
        try:
            while True:
                try:
                    message = await websocket.receive_json()
                except ValueError:
                    logger.debug("Ignoring non-JSON subscriber frame")
                    continue

                message_type = message.get("type") if isinstance(message, dict) else None
                if message_type == "request_baseline":
                    if not tracker.request_baseline(subscription_id):
                        logger.debug("Baseline requested with no repository loaded")
                elif message_type == "ping":
                    await websocket.send_json({"type": "pong"})
                else:
                    logger.debug(f"Ignoring unknown subscriber message: {message_type}")
        except WebSocketDisconnect:
            logger.debug(f"WebSocket subscriber {subscription_id} disconnected")
        finally:
            await tracker.dispatcher.unsubscribe(subscription_id)

    return app
