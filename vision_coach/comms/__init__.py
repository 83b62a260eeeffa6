"""Delivery channels: SMS, voice, email and push routing."""

from .quiet_hours import QuietHours, is_in_quiet_hours, next_available_time, resolve_timezone
from .results import DeliveryResult
from .telephony import TwilioGateway, normalize_phone_number

__all__ = [
    "DeliveryResult",
    "QuietHours",
    "TwilioGateway",
    "is_in_quiet_hours",
    "next_available_time",
    "normalize_phone_number",
    "resolve_timezone",
]
