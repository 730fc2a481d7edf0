"""
Push Channel: local HTTP endpoint receiving notifications from repository hooks.

Request: ``POST /event`` with JSON ``{"repo": "/abs/path", "event": "commit",
"hash": "...", "ref": "...", "remote": "...", "branch": "...", "message": "..."}``.
``repo`` and ``event`` are required; every received notification is turned
into one RawSignal and handed straight to the tracker.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config.settings import settings
from shared.models import ChangeKind, RawSignal, SignalKind, SignalSource

logger = logging.getLogger(__name__)

MISSING_FIELDS_ERROR = "Missing required fields: repo, event"


class HookEventRequest(BaseModel):
    """Notification payload sent by an installed hook."""

    repo: str = Field(..., min_length=1, description="Absolute repository path")
    event: ChangeKind = Field(..., description="Coarse action kind")
    hash: Optional[str] = Field(None, description="Commit hash the action produced")
    ref: Optional[str] = Field(None, description="Checked-out ref")
    remote: Optional[str] = Field(None, description="Remote pushed to")
    branch: Optional[str] = Field(None, description="Branch pushed")
    message: Optional[str] = Field(None, description="Commit subject")

    model_config = {
        "json_schema_extra": {
            "example": {
                "repo": "/path/to/repo",
                "event": "commit",
                "hash": "abc123def456",
                "message": "fix bug",
            }
        }
    }

    def to_signal(self) -> RawSignal:
        return RawSignal(
            source=SignalSource.PUSH_CHANNEL,
            action=f"hook: {self.event.value}",
            kind=SignalKind(self.event.value),
            new_hash=self.hash or None,
            repo_path=self.repo,
            ref=self.ref,
            remote=self.remote,
            branch=self.branch,
            message=self.message,
        )


def _is_missing_required(exc: RequestValidationError) -> bool:
    for error in exc.errors():
        error_type = error.get("type")
        if error_type in ("missing", "json_invalid", "model_attributes_type"):
            return True
        location = error.get("loc", ())
        if location and location[-1] in ("repo", "event") and error_type == "string_too_short":
            return True
    return False


def create_push_app(on_signal: Callable[[RawSignal], Awaitable[object]]) -> FastAPI:
    """Build the push-channel application around a signal handler."""
    app = FastAPI(
        title="GitFlow Live Push Channel",
        description="Receives repository action notifications from local hooks",
        version=settings.version,
        docs_url=None,
        redoc_url=None,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        if _is_missing_required(exc):
            message = MISSING_FIELDS_ERROR
        else:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())[1:])
            message = f"Invalid field {field}: {first.get('msg')}"
        logger.warning(f"Rejected hook notification: {message}")
        return JSONResponse(status_code=400, content={"error": message})

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "service": "push_channel",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.post("/event")
    async def receive_event(request: HookEventRequest):
        """Accept one hook notification."""
        logger.info(f"Received git event: {request.event.value} for {request.repo}")
        try:
            await on_signal(request.to_signal())
        except Exception as e:
            logger.error(f"Error processing hook notification: {e}")
            return JSONResponse(status_code=500, content={"error": "Internal server error"})
        return {"success": True}

    return app
