"""Agent Router - pending action decisions and error lookup."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.dependencies import Services, get_services, rate_limit
from vision_coach.errors import classify_error

logger = logging.getLogger(__name__)

router = APIRouter()


class FeedbackModel(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None


class ConfirmActionRequest(BaseModel):
    feedback: Optional[FeedbackModel] = None


class CancelActionRequest(BaseModel):
    reason: Optional[str] = None
    feedback: Optional[FeedbackModel] = None


@router.post("/actions/{action_id}/confirm")
def confirm_action(
    action_id: str,
    request: Optional[ConfirmActionRequest] = None,
    user_id: str = Depends(rate_limit("api")),
    services: Services = Depends(get_services),
) -> dict:
    feedback = request.feedback.model_dump() if request and request.feedback else None
    return services.actions.confirm_action(user_id, action_id, feedback)


@router.post("/actions/{action_id}/cancel")
def cancel_action(
    action_id: str,
    request: Optional[CancelActionRequest] = None,
    user_id: str = Depends(rate_limit("api")),
    services: Services = Depends(get_services),
) -> dict:
    request = request or CancelActionRequest()
    feedback = request.feedback.model_dump() if request.feedback else None
    return services.actions.cancel_action(user_id, action_id, request.reason, feedback)


@router.get("/errors/{code}")
def describe_error(code: str) -> dict:
    """How the agent classifies an error code; unknown codes get the fallback."""
    return classify_error(code).to_api_dict()
