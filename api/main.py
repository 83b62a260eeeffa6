"""FastAPI service for the Vision Coach agent.

Routers:
- /communications: channel routing, SMS and voice calls for the signed-in user
- /agent: confirm or cancel pending agent actions, error code lookup
- /jobs: cron-triggered reminder, outreach and check-in runs (X-Service-Key)
"""
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import ALLOWED_ORIGINS, get_settings
from api.routers import agent_router, communications_router, jobs_router
from vision_coach.comms.gmail import GmailError, load_account_from_env
from vision_coach.errors import register_error_handlers
from vision_coach.store import storage_backend
from vision_coach.timeutil import to_iso, utc_now

logger = logging.getLogger(__name__)


app = FastAPI(
    title="Vision Coach Agent API",
    version="0.1.0",
    description="Messaging, reminders and confirmations for the Vision Coach agent.",
)

cors_origins = [origin for origin in ALLOWED_ORIGINS if origin]
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

register_error_handlers(app)

app.include_router(communications_router, prefix="/communications", tags=["communications"])
app.include_router(agent_router, prefix="/agent", tags=["agent"])
app.include_router(jobs_router, prefix="/jobs", tags=["jobs"])


def _gmail_status(account_name: str) -> str:
    try:
        load_account_from_env(account_name)
    except GmailError:
        return "not_configured"
    return "configured"


@app.get("/health")
def health_check() -> dict:
    """Liveness plus which outbound channels are configured."""
    settings = get_settings()
    return {
        "status": "ok",
        "time": to_iso(utc_now()),
        "environment": settings.environment,
        "services": {
            "twilio": "configured" if settings.twilio_configured else "not_configured",
            "gmail": _gmail_status(settings.email_account),
            "storage": storage_backend(),
        },
    }
