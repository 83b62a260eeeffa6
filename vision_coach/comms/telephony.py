"""Twilio gateway for SMS and outbound voice calls."""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client
from twilio.twiml.voice_response import VoiceResponse

from ..config import Settings, load_settings
from ..errors import AgentErrors

logger = logging.getLogger(__name__)

CALL_VOICE = "Polly.Joanna"
CALL_OUTRO = (
    "Press any key to repeat this message, or hang up when you're ready. "
    "Have a great day!"
)


def normalize_phone_number(phone_number: str) -> str:
    """Return an E.164 number; numbers without ``+`` are assumed to be US."""
    phone_number = phone_number.strip()
    if phone_number.startswith("+"):
        return phone_number
    return "+1" + re.sub(r"\D", "", phone_number)


def build_call_twiml(message: str) -> str:
    """Say the message, pause, then offer a single-key repeat."""
    response = VoiceResponse()
    response.say(message, voice=CALL_VOICE)
    response.pause(length=1)
    response.say(CALL_OUTRO, voice=CALL_VOICE)
    gather = response.gather(num_digits=1, timeout=10)
    gather.say(message, voice=CALL_VOICE)
    return str(response)


@dataclass(slots=True)
class DeliveryReceipt:
    """Outcome of one Twilio request."""

    sid: str
    to: str
    simulated: bool = False
    status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sid": self.sid,
            "to": self.to,
            "simulated": self.simulated,
            "status": self.status,
        }


class TwilioGateway:
    """Thin wrapper over the Twilio REST client.

    Without credentials the gateway simulates delivery and returns
    ``SIMULATED_<ms>`` / ``SIMULATED_CALL_<ms>`` sids so development and tests
    run without a Twilio account.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        client: Optional[Client] = None,
    ) -> None:
        self.settings = settings or load_settings()
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or self.settings.twilio_configured

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(
                self.settings.twilio_account_sid,
                self.settings.twilio_auth_token,
            )
        return self._client

    def send_sms(self, to: str, body: str) -> DeliveryReceipt:
        to = normalize_phone_number(to)
        if not self.configured:
            logger.info("SIMULATED SMS to %s: %s", to, body)
            return DeliveryReceipt(
                sid=f"SIMULATED_{int(time.time() * 1000)}",
                to=to,
                simulated=True,
            )
        try:
            message = self.client.messages.create(
                body=body,
                from_=self.settings.twilio_phone_number,
                to=to,
            )
        except TwilioRestException as exc:
            logger.error("Twilio error sending SMS to %s: %s", to, exc)
            raise AgentErrors.external_service_error("twilio", exc) from exc
        logger.info("SMS sent to %s sid=%s", to, message.sid)
        return DeliveryReceipt(sid=message.sid, to=to, status=message.status)

    def place_call(self, to: str, message: str) -> DeliveryReceipt:
        to = normalize_phone_number(to)
        if not self.configured:
            logger.info("SIMULATED VOICE CALL to %s", to)
            return DeliveryReceipt(
                sid=f"SIMULATED_CALL_{int(time.time() * 1000)}",
                to=to,
                simulated=True,
            )
        try:
            call = self.client.calls.create(
                twiml=build_call_twiml(message),
                to=to,
                from_=self.settings.twilio_phone_number,
            )
        except TwilioRestException as exc:
            logger.error("Twilio error calling %s: %s", to, exc)
            raise AgentErrors.external_service_error("twilio", exc) from exc
        logger.info("Voice call initiated to %s sid=%s", to, call.sid)
        return DeliveryReceipt(sid=call.sid, to=to, status=call.status)
