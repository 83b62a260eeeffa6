"""API Routers Package.

Each router handles one area of the agent backend:
- communications.py: channel routing, SMS and voice calls
- agent.py: pending action confirm/cancel and error classification
- jobs.py: cron-triggered reminder, outreach and check-in jobs

Usage in main.py:
    from api.routers import agent_router, communications_router, jobs_router

    app.include_router(communications_router, prefix="/communications", tags=["communications"])
    app.include_router(agent_router, prefix="/agent", tags=["agent"])
    app.include_router(jobs_router, prefix="/jobs", tags=["jobs"])
"""

from .agent import router as agent_router
from .communications import router as communications_router
from .jobs import router as jobs_router

__all__ = [
    "agent_router",
    "communications_router",
    "jobs_router",
]
