from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from .classifier import compute_attributes
from .config import DEFAULT_AFFINITY_TEAMS
from .errors import require_user_id
from .logs import log_event
from .models import CATEGORIES, BehaviorRecord, Post, UserAttributes, utcnow
from .sinks import AttributeSink, LogAttributeSink
from .store import BehaviorStore

_GLOBAL_SCOPE = "*"


class ViewDeduplicator:
    """Drops a repeated view of the same post inside a short window.

    Repeats come from UI re-renders firing the tracking call twice, not from
    genuine re-reads. With ``scope="global"`` a single slot is shared by all
    users; with ``scope="user"`` every user has their own slot.
    """

    def __init__(self, window_seconds: float = 2.0, scope: str = "user") -> None:
        self.window_seconds = window_seconds
        self.scope = scope
        self._last: Dict[str, Tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def _slot(self, user_id: str) -> str:
        return _GLOBAL_SCOPE if self.scope == "global" else user_id

    def should_skip(self, user_id: str, post_id: str, now: datetime) -> bool:
        slot = self._slot(user_id)
        with self._lock:
            last = self._last.get(slot)
            if last is not None and last[0] == post_id:
                if (now - last[1]).total_seconds() < self.window_seconds:
                    return True
            self._last[slot] = (post_id, now)
            return False

    def forget(self, user_id: str) -> None:
        with self._lock:
            self._last.pop(self._slot(user_id), None)


@dataclass
class ViewResult:
    recorded: bool
    reason: str
    attributes: UserAttributes


class EventTracker:
    def __init__(
        self,
        store: BehaviorStore,
        sink: Optional[AttributeSink] = None,
        clock: Callable[[], datetime] = utcnow,
        dedup_window_seconds: float = 2.0,
        dedup_scope: str = "user",
        affinity_teams: FrozenSet[str] = DEFAULT_AFFINITY_TEAMS,
    ) -> None:
        self.store = store
        self.sink = sink if sink is not None else LogAttributeSink()
        self.clock = clock
        self.dedup = ViewDeduplicator(dedup_window_seconds, dedup_scope)
        self.affinity_teams = frozenset(affinity_teams)

    def record_view(self, user_id: str, post: Post, user_team: str = "") -> ViewResult:
        require_user_id(user_id)
        now = self.clock()

        if not self.store.is_tracked(user_id):
            return ViewResult(False, "untracked", self.get_attributes(user_id))

        if self.dedup.should_skip(user_id, post.id, now):
            return ViewResult(False, "duplicate", self.get_attributes(user_id))

        if post.category not in CATEGORIES:
            log_event("view_ignored_unknown_category", user_id=user_id, post_id=post.id, category=post.category)
            return ViewResult(False, "unknown_category", self.get_attributes(user_id))

        with self.store.transaction(user_id, now) as record:
            record.read_count += 1
            record.category_views[post.category] = record.category_views.get(post.category, 0) + 1
            if post.team in self.affinity_teams:
                record.affinity_team_view_count += 1
            record.last_active_at = max(record.last_active_at, now)
            if not record.team and user_team:
                record.team = user_team

        attributes = compute_attributes(record, now)
        self._publish(user_id, attributes)
        log_event(
            "post_view_recorded",
            user_id=user_id,
            post_id=post.id,
            read_count=record.read_count,
            favorite_category=attributes.favorite_category,
        )
        return ViewResult(True, "recorded", attributes)

    def record_time_spent(self, user_id: str, seconds: float) -> BehaviorRecord:
        require_user_id(user_id)
        if seconds < 0:
            raise ValueError("seconds must be non-negative")
        now = self.clock()
        if not self.store.is_tracked(user_id):
            log_event("time_spent_ignored_untracked", user_id=user_id, seconds=seconds)
            return self.store.get(user_id, now)
        with self.store.transaction(user_id, now) as record:
            record.total_time_spent_seconds += seconds
            record.last_active_at = max(record.last_active_at, now)
        return record

    def initialize_attributes(self, user_id: str, team: str = "") -> UserAttributes:
        require_user_id(user_id)
        now = self.clock()
        record = self.store.get(user_id, now)
        if not record.team and team:
            with self.store.transaction(user_id, now) as record:
                if not record.team:
                    record.team = team
        attributes = compute_attributes(record, now)
        self._publish(user_id, attributes)
        log_event("personalization_initialized", user_id=user_id, team=attributes.team)
        return attributes

    def get_attributes(self, user_id: str) -> UserAttributes:
        now = self.clock()
        return compute_attributes(self.store.get(user_id, now), now)

    def reset_behavior(self, user_id: str) -> None:
        self.store.reset(user_id)
        self.dedup.forget(user_id)

    def _publish(self, user_id: str, attributes: UserAttributes) -> None:
        try:
            self.sink.publish(user_id, attributes)
        except Exception as ex:
            log_event("attribute_publish_failed", user_id=user_id, error=str(ex))
