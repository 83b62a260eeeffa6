"""Agent action history log (Firestore with file fallback)."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..store import ACTION_HISTORY, DESCENDING, RecordStore
from ..timeutil import to_iso, utc_now

logger = logging.getLogger(__name__)


def log_agent_action(
    *,
    user_id: str,
    action_type: str,
    action_status: str,
    action_payload: Optional[Dict[str, Any]] = None,
    result_payload: Optional[Dict[str, Any]] = None,
    trigger_context: Any = None,
    error_message: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
    executed_at: Optional[datetime] = None,
    store: Optional[RecordStore] = None,
) -> Dict[str, Any]:
    """Append one entry to ``agent_action_history``.

    ``executed_at`` is recorded for every status except ``failed`` and
    ``pending``, which carry the attempt time in ``created_at`` only.
    """
    now = utc_now()
    entry: Dict[str, Any] = {
        "user_id": user_id,
        "action_type": action_type,
        "action_status": action_status,
        "action_payload": action_payload or {},
        "result_payload": result_payload,
        "trigger_context": trigger_context,
        "error_message": error_message,
        "created_at": to_iso(now),
    }
    if action_status not in ("failed", "pending") or executed_at is not None:
        entry["executed_at"] = to_iso(executed_at or now)
    if extra:
        entry.update(extra)

    logger.info(
        "agent action user=%s type=%s status=%s",
        user_id,
        action_type,
        action_status,
    )
    return (store or RecordStore(ACTION_HISTORY)).insert(entry)


def fetch_action_history(
    user_id: str,
    *,
    limit: int = 50,
    store: Optional[RecordStore] = None,
) -> List[Dict[str, Any]]:
    """Return the most recent history entries for a user."""
    return (store or RecordStore(ACTION_HISTORY)).query(
        [("user_id", "==", user_id)],
        order_by=[("created_at", DESCENDING)],
        limit=limit,
    )
