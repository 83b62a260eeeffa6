"""Jobs Router - endpoints triggered by the cron scheduler.

Every endpoint requires the ``X-Service-Key`` header.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from api.dependencies import Services, get_services, require_service_key
from vision_coach.errors import AgentErrors

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_service_key)])

CHECKIN_ACTIONS = ("process", "check_streaks", "check_pace", "trigger_event", "schedule")


class DispatchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_size: Optional[int] = Field(None, alias="batchSize")
    dry_run: bool = Field(False, alias="dryRun")


class CheckinJobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(None, alias="userId")
    event_type: Optional[str] = Field(None, alias="eventType")
    event_data: dict = Field(default_factory=dict, alias="eventData")
    checkin_type: Optional[str] = Field(None, alias="checkinType")
    channel: Optional[str] = None
    content: dict = Field(default_factory=dict)


@router.post("/habit-reminders/schedule")
def schedule_habit_reminders(services: Services = Depends(get_services)) -> dict:
    return services.scheduler.run().to_dict()


@router.post("/habit-reminders/process")
def process_habit_reminders(services: Services = Depends(get_services)) -> dict:
    return services.processor.run().to_dict()


@router.post("/reminders/dispatch")
def dispatch_reminders(
    request: Optional[DispatchRequest] = None,
    services: Services = Depends(get_services),
) -> dict:
    request = request or DispatchRequest()
    summary = services.dispatcher.run(batch_size=request.batch_size, dry_run=request.dry_run)
    return summary.to_dict()


@router.post("/outreach/process")
def process_outreach(services: Services = Depends(get_services)) -> dict:
    return services.outreach.run().to_dict()


@router.post("/checkins/{action}")
def run_checkin_job(
    action: str,
    request: Optional[CheckinJobRequest] = None,
    services: Services = Depends(get_services),
) -> dict:
    request = request or CheckinJobRequest()
    checkins = services.checkins
    if action == "process":
        return checkins.process_due().to_dict()
    if action == "check_streaks":
        return checkins.check_streaks()
    if action == "check_pace":
        return checkins.check_pace()
    if action == "trigger_event":
        return checkins.trigger_event(request.user_id, request.event_type, request.event_data)
    if action == "schedule":
        checkin = checkins.schedule(
            request.user_id,
            checkin_type=request.checkin_type,
            channel=request.channel,
            content=request.content,
        )
        return {"success": True, "checkin": checkin}
    raise AgentErrors.invalid_parameters(
        {"action": action}, [f"action must be one of {', '.join(CHECKIN_ACTIONS)}"]
    )
