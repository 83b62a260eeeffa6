"""Communications Router - channel routing, SMS and voice calls.

Handles:
- Routing a coach message to the best reachable channel
- Direct agent SMS
- Direct agent voice calls
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.dependencies import Services, get_services, rate_limit
from vision_coach.comms.router import RouteRequest

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Pydantic Models
# =============================================================================

class RouteMessageRequest(BaseModel):
    type: Literal["morning_briefing", "habit_reminder", "pace_warning", "weekly_review", "generic"] = "generic"
    content: str = Field(..., min_length=1)
    urgency: Literal["high", "medium", "low"] = "medium"
    context: Dict[str, Any] = Field(default_factory=dict)


class SendSmsRequest(BaseModel):
    message: str = Field(..., min_length=1)
    phone_number: Optional[str] = None
    context: Optional[str] = None


class VoiceCallRequest(BaseModel):
    call_type: Literal["habit_reminder", "goal_checkin", "accountability", "celebration", "custom"] = "custom"
    message: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/route")
def route_message(
    request: RouteMessageRequest,
    user_id: str = Depends(rate_limit("api")),
    services: Services = Depends(get_services),
) -> dict:
    """Send a coach message on the channel that fits its type and urgency."""
    result = services.router.route(
        RouteRequest(
            user_id=user_id,
            type=request.type,
            content=request.content,
            urgency=request.urgency,
            context=request.context,
        )
    )
    return result.to_api_dict()


@router.post("/sms")
def send_sms(
    request: SendSmsRequest,
    user_id: str = Depends(rate_limit("api")),
    services: Services = Depends(get_services),
) -> dict:
    result = services.sms.send(
        user_id,
        request.message,
        phone_number=request.phone_number,
        context=request.context,
    )
    return result.to_dict()


@router.post("/voice")
def voice_call(
    request: VoiceCallRequest,
    user_id: str = Depends(rate_limit("api")),
    services: Services = Depends(get_services),
) -> dict:
    result = services.voice.call(
        user_id,
        request.call_type,
        message=request.message,
        context=request.context or None,
    )
    return result.to_dict()
