"""Shared dependencies and helper functions for API routers.

Routers get their collaborators from ``get_services`` so tests can swap in
fakes with ``app.dependency_overrides``.

Usage in routers:
    from api.dependencies import get_current_user_id, get_services, rate_limit
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends, Response

from vision_coach.actions import ActionExecutor, PendingActionService
from vision_coach.api.auth import get_current_user, require_service_key  # noqa: F401 - re-export
from vision_coach.comms.gmail import EmailSender
from vision_coach.comms.router import CommunicationRouter
from vision_coach.comms.sms import AgentSmsService
from vision_coach.comms.telephony import TwilioGateway
from vision_coach.comms.voice import AgentVoiceService
from vision_coach.config import Settings, load_settings
from vision_coach.errors import AgentError, ErrorCode
from vision_coach.notifications import CheckinService
from vision_coach.outreach import OutreachProcessor
from vision_coach.ratelimit import RateLimiter
from vision_coach.reminders import ReminderDispatcher, ReminderProcessor, ReminderScheduler
from vision_coach.users import UserDirectory


# =============================================================================
# Configuration Constants
# =============================================================================

ALLOWED_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    os.getenv("VC_ALLOWED_FRONTEND", "").strip(),
]


# =============================================================================
# Cached Functions
# =============================================================================

@lru_cache
def get_settings() -> Settings:
    """Get application settings (cached)."""
    return load_settings()


@lru_cache
def get_rate_limiter() -> RateLimiter:
    return RateLimiter()


@dataclass(slots=True)
class Services:
    """Everything the routers talk to, wired against one user directory."""

    users: UserDirectory
    sms: AgentSmsService
    voice: AgentVoiceService
    router: CommunicationRouter
    checkins: CheckinService
    actions: PendingActionService
    scheduler: ReminderScheduler
    processor: ReminderProcessor
    dispatcher: ReminderDispatcher
    outreach: OutreachProcessor


def build_services(
    settings: Settings | None = None,
    *,
    gateway: TwilioGateway | None = None,
    email_sender: EmailSender | None = None,
    users: UserDirectory | None = None,
) -> Services:
    settings = settings or load_settings()
    gateway = gateway or TwilioGateway(settings)
    email_sender = email_sender or EmailSender(settings.email_account)
    users = users or UserDirectory()

    sms = AgentSmsService(gateway=gateway, users=users)
    voice = AgentVoiceService(gateway=gateway, users=users)
    checkins = CheckinService(gateway=gateway, email_sender=email_sender, users=users)
    return Services(
        users=users,
        sms=sms,
        voice=voice,
        router=CommunicationRouter(
            users=users, sms=sms, voice=voice, email_sender=email_sender, checkins=checkins
        ),
        checkins=checkins,
        actions=PendingActionService(
            executor=ActionExecutor(sms=sms, voice=voice, email_sender=email_sender)
        ),
        scheduler=ReminderScheduler(users=users),
        processor=ReminderProcessor(users=users, sms=sms, voice=voice, email_sender=email_sender),
        dispatcher=ReminderDispatcher(gateway=gateway, users=users),
        outreach=OutreachProcessor(gateway=gateway, users=users),
    )


@lru_cache
def get_services() -> Services:
    return build_services(get_settings())


# =============================================================================
# Request Dependencies
# =============================================================================

def get_current_user_id(
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> str:
    """Map the authenticated email to the coach user id."""
    user_id = services.users.user_id_for_email(user)
    if user_id is None:
        raise AgentError(
            ErrorCode.PERMISSION_DENIED,
            f"No profile for authenticated user {user}",
            user_message="We couldn't find a Vision Coach profile for your account.",
        )
    return user_id


def rate_limit(preset: str = "api"):
    """Dependency factory that counts requests per user against ``preset``."""

    def _check(
        response: Response,
        user_id: str = Depends(get_current_user_id),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> str:
        result = limiter.enforce(user_id, preset)
        response.headers.update(result.headers())
        return user_id

    return _check
