"""Durable, idempotent storage for BriefingRecords keyed by (owner_id, meeting_id).

upsert merges field by field: fields absent from the update are never touched, so a later stage
can not erase what an earlier stage wrote. `error` only describes a failed record and is cleared
whenever the record moves to processing or completed.
"""
import json
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import redis

from briefings.guardrails.errors import StoreUnavailable
from briefings.models.schemas import BriefingRecord, BriefingUpdate, utcnow

logger = logging.getLogger(__name__)

Update = Union[BriefingUpdate, Mapping[str, Any]]


def to_update(partial: Update) -> BriefingUpdate:
    if isinstance(partial, BriefingUpdate):
        return partial
    return BriefingUpdate.model_validate(dict(partial))


def merge_fields(update: BriefingUpdate) -> Tuple[Dict[str, Any], List[str]]:
    """Split an update into (wire fields to set, wire fields to clear)."""
    fields = update.to_wire()
    cleared: List[str] = []
    if update.status is not None and update.status != "failed" and update.error is None:
        cleared.append("error")
    return fields, cleared


def new_record_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Defaults for a record created by its first upsert (status processing, lastGeneratedAt now)."""
    base = BriefingRecord(last_generated_at=utcnow()).to_wire()
    base.update(fields)
    return base


class ResultStore:
    """get / upsert contract shared by the backends."""

    def get(self, owner_id: str, meeting_id: str) -> Optional[BriefingRecord]:
        raise NotImplementedError

    def upsert(self, owner_id: str, meeting_id: str, partial: Update) -> None:
        raise NotImplementedError


class InMemoryResultStore(ResultStore):
    """Dict-backed store for a single process (API with embedded worker, tests)."""

    def __init__(self):
        self._records: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, owner_id: str, meeting_id: str) -> Optional[BriefingRecord]:
        with self._lock:
            data = self._records.get((owner_id, meeting_id))
            data = dict(data) if data is not None else None
        return BriefingRecord.model_validate(data) if data is not None else None

    def upsert(self, owner_id: str, meeting_id: str, partial: Update) -> None:
        fields, cleared = merge_fields(to_update(partial))
        key = (owner_id, meeting_id)
        with self._lock:
            current = self._records.get(key)
            if current is None:
                current = new_record_fields({})
            merged = {k: v for k, v in current.items() if k not in cleared}
            merged.update(fields)
            self._records[key] = merged
        logger.debug("briefing_saved", extra={"owner_id": owner_id, "meeting_id": meeting_id, "fields": sorted(fields)})


class RedisResultStore(ResultStore):
    """One Redis hash per record (`briefing:<owner>:<meeting>`), one JSON-encoded field per BriefingRecord field.
    HSET/HDEL per field makes the merge native: an update only ever writes the fields it carries.
    Transport errors surface as StoreUnavailable."""

    def __init__(self, client, prefix: str = "briefing"):
        self._redis = client
        self.prefix = prefix

    def _key(self, owner_id: str, meeting_id: str) -> str:
        return f"{self.prefix}:{owner_id}:{meeting_id}"

    @contextmanager
    def _transport(self):
        try:
            yield
        except redis.exceptions.RedisError as e:
            raise StoreUnavailable(f"Result store transport unavailable: {e}") from e

    def get(self, owner_id: str, meeting_id: str) -> Optional[BriefingRecord]:
        with self._transport():
            raw = self._redis.hgetall(self._key(owner_id, meeting_id))
        if not raw:
            return None
        return BriefingRecord.model_validate({k: json.loads(v) for k, v in raw.items()})

    def upsert(self, owner_id: str, meeting_id: str, partial: Update) -> None:
        fields, cleared = merge_fields(to_update(partial))
        key = self._key(owner_id, meeting_id)
        defaults = new_record_fields({})

        with self._transport():
            pipe = self._redis.pipeline(transaction=True)
            for name in ("status", "lastGeneratedAt"):
                if name not in fields:
                    pipe.hsetnx(key, name, json.dumps(defaults[name]))
            if fields:
                pipe.hset(key, mapping={k: json.dumps(v) for k, v in fields.items()})
            if cleared:
                pipe.hdel(key, *cleared)
            pipe.execute()
        logger.debug("briefing_saved", extra={"owner_id": owner_id, "meeting_id": meeting_id, "fields": sorted(fields)})
