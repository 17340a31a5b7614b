from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, Optional

from pydantic import ValidationError

from .config import DEFAULT_STORAGE_PREFIX, TrackedUsers
from .errors import require_user_id
from .logs import log_event
from .models import BehaviorRecord, utcnow
from .storage import KeyValueStorage, MemoryStorage


class BehaviorStore:
    """One BehaviorRecord per user, keyed as ``<prefix><user_id>``.

    Reads never fail: a missing, unparseable or invalid value comes back as
    a fresh zero-record that is not written until the first ``save``.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        prefix: str = DEFAULT_STORAGE_PREFIX,
        tracked_user_ids: TrackedUsers = "all",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.storage = storage if storage is not None else MemoryStorage()
        self.prefix = prefix
        self.tracked_user_ids = tracked_user_ids
        self._clock = clock
        self._lock = threading.RLock()

    def key_for(self, user_id: str) -> str:
        return f"{self.prefix}{user_id}"

    def is_tracked(self, user_id: str) -> bool:
        return self.tracked_user_ids == "all" or user_id in self.tracked_user_ids

    def get(self, user_id: str, now: Optional[datetime] = None) -> BehaviorRecord:
        require_user_id(user_id)
        raw = self.storage.get_item(self.key_for(user_id))
        if raw is None:
            return BehaviorRecord.zero(user_id, now or self._clock())
        try:
            record = BehaviorRecord.model_validate_json(raw, context={"check_counters": True})
        except ValidationError as ex:
            log_event("behavior_record_corrupt", user_id=user_id, errors=ex.error_count())
            return BehaviorRecord.zero(user_id, now or self._clock())
        if record.user_id != user_id:
            log_event("behavior_record_owner_mismatch", user_id=user_id, stored_user_id=record.user_id)
            return BehaviorRecord.zero(user_id, now or self._clock())
        return record

    def save(self, record: BehaviorRecord) -> bool:
        require_user_id(record.user_id)
        if not self.is_tracked(record.user_id):
            log_event("behavior_save_skipped_untracked", user_id=record.user_id)
            return False
        with self._lock:
            self.storage.set_item(self.key_for(record.user_id), record.to_json())
        return True

    def reset(self, user_id: str) -> None:
        require_user_id(user_id)
        with self._lock:
            self.storage.remove_item(self.key_for(user_id))
        log_event("behavior_reset", user_id=user_id)

    def purge_all_except(self, user_id: str) -> int:
        require_user_id(user_id)
        keep = self.key_for(user_id)
        removed = 0
        with self._lock:
            for key in self.storage.keys():
                if key.startswith(self.prefix) and key != keep:
                    self.storage.remove_item(key)
                    removed += 1
        log_event("behavior_purged", kept_user_id=user_id, removed=removed)
        return removed

    @contextmanager
    def transaction(self, user_id: str, now: Optional[datetime] = None) -> Iterator[BehaviorRecord]:
        # The lock spans load, mutate and save so no increment is lost to a stale read.
        with self._lock:
            record = self.get(user_id, now)
            yield record
            self.save(record)
