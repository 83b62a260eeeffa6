"""Record storage - Firestore with file fallback.

Every collection the agent touches goes through ``RecordStore``. In
production records live in Firestore under ``<collection>/<id>``. Local
development and tests set ``VC_STORE_FORCE_FILE=1`` and records are kept in
``<VC_STORE_DIR>/<collection>.jsonl``, one JSON object per line.

Queries accept Firestore-style filters ``(field, op, value)`` with ops
``==, !=, <, <=, >, >=, in, array_contains``. In file mode a record whose
field is missing or null never matches an ordering comparison.
"""
from __future__ import annotations

import json
import logging
import operator
import os
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from google.auth.exceptions import GoogleAuthError

from .errors import AgentErrors

logger = logging.getLogger(__name__)

Filter = Tuple[str, str, Any]
Ordering = Tuple[str, str]

ASCENDING = "ASCENDING"
DESCENDING = "DESCENDING"

_COMPARISONS: Dict[str, Callable[[Any, Any], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _use_file_storage() -> bool:
    """Check if we should use file-based storage."""
    return os.getenv("VC_STORE_FORCE_FILE", "").strip() == "1"


def storage_backend() -> str:
    """Name of the backend new stores will use: ``file`` or ``firestore``."""
    return "file" if _use_file_storage() else "firestore"


def _get_store_dir() -> Path:
    """Get the local storage directory."""
    env_dir = os.getenv("VC_STORE_DIR", "").strip()
    if env_dir:
        return Path(env_dir)
    return Path(__file__).parent.parent / "store_data"


_firestore_client = None


def _get_firestore_client():
    """Get the cached Firestore client, or None when file storage is used.

    Falls back to file storage when the default credentials cannot be
    loaded, e.g. on a developer machine without gcloud auth.
    """
    global _firestore_client
    if _use_file_storage():
        return None
    if _firestore_client is not None:
        return _firestore_client

    import firebase_admin
    from firebase_admin import firestore

    try:
        if not firebase_admin._apps:
            firebase_admin.initialize_app()
        _firestore_client = firestore.client()
    except (ValueError, GoogleAuthError) as exc:
        logger.warning("Firestore unavailable, using file storage: %s", exc)
        return None
    return _firestore_client


def _matches(record: Dict[str, Any], flt: Filter) -> bool:
    field, op, expected = flt
    actual = record.get(field)
    if op == "==":
        return actual == expected
    if op == "!=":
        return actual != expected
    if op == "in":
        return actual in list(expected)
    if op == "array_contains":
        return isinstance(actual, list) and expected in actual
    compare = _COMPARISONS.get(op)
    if compare is None:
        raise ValueError(f"Unsupported filter operator: {op}")
    if actual is None:
        return False
    try:
        return compare(actual, expected)
    except TypeError:
        return False


class RecordStore:
    """CRUD and simple queries over one collection."""

    def __init__(self, collection: str, *, client: Any = None) -> None:
        self.collection = collection
        self._client = client

    # =========================================================================
    # Backend selection
    # =========================================================================

    @property
    def _db(self):
        if self._client is not None:
            return self._client
        return _get_firestore_client()

    @contextmanager
    def _firestore_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except Exception as exc:
            logger.error("Firestore %s on %s failed: %s", operation, self.collection, exc)
            raise AgentErrors.database_error(f"{operation} {self.collection}", exc) from exc

    def _file(self) -> Path:
        store_dir = _get_store_dir()
        store_dir.mkdir(parents=True, exist_ok=True)
        return store_dir / f"{self.collection}.jsonl"

    def _read_all(self) -> List[Dict[str, Any]]:
        path = self._file()
        if not path.exists():
            return []
        records: List[Dict[str, Any]] = []
        with path.open("r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt line %s in %s", line_no, path)
        return records

    def _write_all(self, records: Iterable[Dict[str, Any]]) -> None:
        with self._file().open("w", encoding="utf-8") as f:
            for record in records:
                f.write(json.dumps(record, default=str) + "\n")

    # =========================================================================
    # CRUD Operations
    # =========================================================================

    def insert(self, data: Dict[str, Any], *, record_id: Optional[str] = None) -> Dict[str, Any]:
        """Create a record and return it with its ``id``."""
        record = dict(data)
        record["id"] = record_id or record.get("id") or str(uuid.uuid4())

        db = self._db
        if db is not None:
            with self._firestore_errors("insert"):
                db.collection(self.collection).document(record["id"]).set(record)
            return record

        path = self._file()
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, default=str) + "\n")
        return record

    def upsert(self, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the record stored under ``record_id``."""
        record = dict(data)
        record["id"] = record_id

        db = self._db
        if db is not None:
            with self._firestore_errors("upsert"):
                db.collection(self.collection).document(record_id).set(record)
            return record

        records = [r for r in self._read_all() if r.get("id") != record_id]
        records.append(record)
        self._write_all(records)
        return record

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        db = self._db
        if db is not None:
            with self._firestore_errors("get"):
                doc = db.collection(self.collection).document(record_id).get()
            if not doc.exists:
                return None
            record = doc.to_dict() or {}
            record.setdefault("id", doc.id)
            return record

        for record in self._read_all():
            if record.get("id") == record_id:
                return record
        return None

    def update(self, record_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Merge ``updates`` into an existing record.

        Returns:
            The updated record, or None if it does not exist.
        """
        db = self._db
        if db is not None:
            with self._firestore_errors("update"):
                doc_ref = db.collection(self.collection).document(record_id)
                doc = doc_ref.get()
                if not doc.exists:
                    return None
                doc_ref.update(dict(updates))
                record = doc.to_dict() or {}
            record.update(updates)
            record.setdefault("id", record_id)
            return record

        records = self._read_all()
        updated: Optional[Dict[str, Any]] = None
        for record in records:
            if record.get("id") == record_id:
                record.update(updates)
                updated = record
                break
        if updated is None:
            return None
        self._write_all(records)
        return updated

    def delete(self, record_id: str) -> bool:
        db = self._db
        if db is not None:
            with self._firestore_errors("delete"):
                doc_ref = db.collection(self.collection).document(record_id)
                if not doc_ref.get().exists:
                    return False
                doc_ref.delete()
            return True

        records = self._read_all()
        remaining = [r for r in records if r.get("id") != record_id]
        if len(remaining) == len(records):
            return False
        self._write_all(remaining)
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    def query(
        self,
        filters: Sequence[Filter] = (),
        *,
        order_by: Sequence[Ordering] = (),
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return records matching every filter.

        Args:
            filters: ``(field, op, value)`` tuples combined with AND.
            order_by: ``(field, direction)`` tuples, most significant first.
            limit: Maximum number of records.
        """
        db = self._db
        if db is not None:
            return self._query_firestore(db, filters, order_by, limit)

        records = [r for r in self._read_all() if all(_matches(r, f) for f in filters)]
        for field, direction in reversed(list(order_by)):
            present = [r for r in records if r.get(field) is not None]
            missing = [r for r in records if r.get(field) is None]
            present.sort(key=lambda r: r[field], reverse=direction == DESCENDING)
            records = present + missing
        if limit is not None:
            records = records[:limit]
        return records

    def _query_firestore(self, db, filters, order_by, limit) -> List[Dict[str, Any]]:
        with self._firestore_errors("query"):
            query = db.collection(self.collection)
            for field, op, value in filters:
                query = query.where(field, op, value)
            for field, direction in order_by:
                query = query.order_by(field, direction=direction)
            if limit is not None:
                query = query.limit(limit)

            records = []
            for doc in query.stream():
                record = doc.to_dict() or {}
                record.setdefault("id", doc.id)
                records.append(record)
        return records

    def first(
        self,
        filters: Sequence[Filter] = (),
        *,
        order_by: Sequence[Ordering] = (),
    ) -> Optional[Dict[str, Any]]:
        records = self.query(filters, order_by=order_by, limit=1)
        return records[0] if records else None


# =============================================================================
# Collections
# =============================================================================

AGENT_SETTINGS = "user_agent_settings"
COMM_PREFERENCES = "user_comm_preferences"
PROFILES = "profiles"
HABITS = "habits"
HABIT_COMPLETIONS = "habit_completions"
HABIT_REMINDERS = "scheduled_habit_reminders"
GOAL_CHECKINS = "scheduled_goal_checkins"
SCHEDULED_REMINDERS = "scheduled_reminders"
OUTREACH_QUEUE = "voice_outreach_queue"
SCHEDULED_CHECKINS = "scheduled_checkins"
PENDING_ACTIONS = "pending_agent_actions"
ACTION_HISTORY = "agent_action_history"
ACTION_FEEDBACK = "agent_action_feedback"
ACHIEVEMENTS = "user_achievements"
PROGRESS_PREDICTIONS = "progress_predictions"
