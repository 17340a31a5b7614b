from datetime import datetime, timedelta, timezone

import pytest

from stackinsights.errors import InvalidUserError
from stackinsights.models import BehaviorRecord, Post
from stackinsights.storage import MemoryStorage
from stackinsights.store import BehaviorStore
from stackinsights.tracker import EventTracker

CREATED = datetime(2026, 2, 1, tzinfo=timezone.utc)


def _post(post_id: str, category: str = "Insight", team: str = "Design") -> Post:
    return Post(id=post_id, category=category, team=team, created_at=CREATED)


class _RecordingSink:
    def __init__(self) -> None:
        self.published = []

    def publish(self, user_id, attributes) -> None:
        self.published.append((user_id, attributes))

    def close(self) -> None:
        pass


class _ExplodingSink(_RecordingSink):
    def publish(self, user_id, attributes) -> None:
        raise RuntimeError("personalize edge unreachable")


def _tracker(clock, **kwargs) -> EventTracker:
    store = BehaviorStore(MemoryStorage(), tracked_user_ids=kwargs.pop("tracked", "all"), clock=clock)
    return EventTracker(store, sink=kwargs.pop("sink", _RecordingSink()), clock=clock, **kwargs)


def test_read_count_matches_category_views(clock) -> None:
    tracker = _tracker(clock)
    categories = ["Insight", "Incident", "Incident", "Retrospective", "Insight"]
    for idx, category in enumerate(categories):
        clock.advance(1)
        assert tracker.record_view("u1", _post(f"p{idx}", category)).recorded

    record = tracker.store.get("u1")
    assert record.read_count == len(categories)
    assert sum(record.category_views.values()) == record.read_count
    assert record.category_views == {"Insight": 2, "Incident": 2, "Retrospective": 1}


def test_duplicate_view_inside_window_counts_once(clock) -> None:
    tracker = _tracker(clock)
    post = _post("p1")

    first = tracker.record_view("u1", post)
    clock.advance(1.9)
    second = tracker.record_view("u1", post)
    clock.advance(0.1)
    third = tracker.record_view("u1", post)

    assert (first.recorded, second.recorded, third.recorded) == (True, False, True)
    assert second.reason == "duplicate"
    assert tracker.store.get("u1").read_count == 2


def test_interleaved_post_clears_duplicate_guard(clock) -> None:
    tracker = _tracker(clock)
    tracker.record_view("u1", _post("p1"))
    tracker.record_view("u1", _post("p2"))
    tracker.record_view("u1", _post("p1"))

    assert tracker.store.get("u1").read_count == 3


def test_duplicate_guard_is_per_user_by_default(clock) -> None:
    tracker = _tracker(clock)
    post = _post("p1")

    assert tracker.record_view("u1", post).recorded
    assert tracker.record_view("u2", post).recorded


def test_global_duplicate_guard_is_shared_across_users(clock) -> None:
    tracker = _tracker(clock, dedup_scope="global")
    post = _post("p1")

    assert tracker.record_view("u1", post).recorded
    assert not tracker.record_view("u2", post).recorded
    assert tracker.store.get("u2").read_count == 0


def test_unknown_category_is_ignored(clock) -> None:
    tracker = _tracker(clock)

    result = tracker.record_view("u1", _post("p1", category="Announcement"))

    assert result.recorded is False
    assert result.reason == "unknown_category"
    record = tracker.store.get("u1")
    assert record.read_count == 0
    assert "Announcement" not in record.category_views


def test_team_is_sticky_after_first_value(clock) -> None:
    tracker = _tracker(clock)
    tracker.record_view("u1", _post("p1"), user_team="")
    tracker.record_view("u1", _post("p2"), user_team="Platform")
    tracker.record_view("u1", _post("p3"), user_team="Product")
    tracker.initialize_attributes("u1", "Sales")

    assert tracker.store.get("u1").team == "Platform"


def test_affinity_team_views_drive_affinity_flag(clock) -> None:
    tracker = _tracker(clock)
    for idx in range(3):
        tracker.record_view("u1", _post(f"p{idx}", team="Infrastructure"))
    result = tracker.record_view("u1", _post("p9", team="Design"))

    assert tracker.store.get("u1").affinity_team_view_count == 3
    assert result.attributes.is_affinity_reader is True


def test_custom_affinity_teams(clock) -> None:
    tracker = _tracker(clock, affinity_teams=frozenset({"Design"}))
    tracker.record_view("u1", _post("p1", team="Design"))
    tracker.record_view("u1", _post("p2", team="Product"))

    assert tracker.store.get("u1").affinity_team_view_count == 1


def test_last_active_never_moves_backwards(clock) -> None:
    tracker = _tracker(clock)
    tracker.record_view("u1", _post("p1"))
    latest = clock.now

    clock.now = latest - timedelta(hours=3)
    tracker.record_view("u1", _post("p2"))
    tracker.record_time_spent("u1", 10)

    assert tracker.store.get("u1").last_active_at == latest


def test_time_spent_is_additive(clock) -> None:
    tracker = _tracker(clock)
    tracker.record_time_spent("u1", 30)
    clock.advance(60)
    record = tracker.record_time_spent("u1", 12.5)

    assert record.total_time_spent_seconds == 42.5
    assert record.last_active_at == clock.now
    assert record.read_count == 0
    with pytest.raises(ValueError):
        tracker.record_time_spent("u1", -5)


def test_sink_failure_does_not_reach_caller(clock) -> None:
    tracker = _tracker(clock, sink=_ExplodingSink())

    result = tracker.record_view("u1", _post("p1"))

    assert result.recorded is True
    assert tracker.store.get("u1").read_count == 1


def test_recorded_views_publish_attributes(clock) -> None:
    sink = _RecordingSink()
    tracker = _tracker(clock, sink=sink)
    tracker.record_view("u1", _post("p1"))
    tracker.record_view("u1", _post("p1"))

    assert len(sink.published) == 1
    user_id, attributes = sink.published[0]
    assert user_id == "u1"
    assert attributes.read_count == 1


def test_initialize_attributes_seeds_team_before_any_view(clock) -> None:
    sink = _RecordingSink()
    tracker = _tracker(clock, sink=sink)

    attributes = tracker.initialize_attributes("u7", "Launch")

    assert attributes.team == "Launch"
    assert attributes.expertise_level == "beginner"
    assert attributes.reading_frequency == "occasional"
    assert attributes.favorite_category == ""
    assert tracker.store.get("u7").team == "Launch"
    assert len(sink.published) == 1


def test_reset_behavior_clears_record_and_guard(clock) -> None:
    tracker = _tracker(clock)
    post = _post("p1", "Incident")
    tracker.record_view("u1", post, user_team="Platform")

    tracker.reset_behavior("u1")

    assert tracker.store.get("u1") == BehaviorRecord.zero("u1", clock.now)
    assert tracker.record_view("u1", post).recorded


def test_untracked_user_views_are_not_recorded(clock) -> None:
    tracker = _tracker(clock, tracked=frozenset({"u1"}))

    result = tracker.record_view("u2", _post("p1"))

    assert result.recorded is False
    assert result.reason == "untracked"
    assert tracker.store.storage.keys() == []


def test_untracked_user_time_spent_is_not_accumulated(clock) -> None:
    tracker = _tracker(clock, tracked=frozenset({"u1"}))

    first = tracker.record_time_spent("u2", 30)
    second = tracker.record_time_spent("u2", 30)

    assert first.total_time_spent_seconds == 0.0
    assert second.total_time_spent_seconds == 0.0
    assert tracker.store.storage.keys() == []


def test_empty_user_id_is_rejected(clock) -> None:
    tracker = _tracker(clock)
    with pytest.raises(InvalidUserError):
        tracker.record_view("", _post("p1"))
    with pytest.raises(InvalidUserError):
        tracker.record_time_spent("", 3)
    with pytest.raises(InvalidUserError):
        tracker.initialize_attributes("", "Platform")


def test_incident_reader_scenario(clock) -> None:
    tracker = _tracker(clock)
    posts = [_post("i1", "Incident"), _post("i2", "Incident"), _post("i3", "Incident"), _post("n1", "Insight")]
    for post in posts:
        clock.advance(300)
        tracker.record_view("u1", post, user_team="Platform")

    attributes = tracker.get_attributes("u1")

    assert attributes.read_count == 4
    assert attributes.expertise_level == "intermediate"
    assert attributes.favorite_category == "Incident"
    assert attributes.reading_frequency == "daily"
    assert attributes.team == "Platform"
