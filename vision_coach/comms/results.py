"""Result types shared by the delivery services."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(slots=True)
class DeliveryResult:
    """What happened when the agent tried to reach a user."""

    success: bool
    channel: str
    sid: Optional[str] = None
    simulated: bool = False
    to: Optional[str] = None
    blocked_reason: Optional[str] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "channel": self.channel,
            "sid": self.sid,
            "simulated": self.simulated,
        }
        if self.to:
            data["to"] = self.to
        if self.blocked_reason:
            data["blocked_reason"] = self.blocked_reason
        if self.error:
            data["error"] = self.error
        if self.details:
            data.update(self.details)
        return data
