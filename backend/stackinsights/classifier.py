from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Dict, List

from .models import CATEGORIES, BehaviorRecord, ExpertiseLevel, ReadingFrequency, UserAttributes

DAILY_MIN_READS = 2
WEEKLY_MIN_READS = 10
INTERMEDIATE_MIN_READS = 3
EXPERT_MIN_READS = 10
FAVORITE_MIN_VIEWS = 3
AFFINITY_MIN_VIEWS = 3
AFFINITY_MIN_SHARE = 0.5


def classify_reading_frequency(record: BehaviorRecord, now: datetime) -> ReadingFrequency:
    # Recency is checked before volume: a heavy reader active today is "daily".
    idle = now - record.last_active_at
    if record.read_count >= DAILY_MIN_READS and idle < timedelta(days=1):
        return "daily"
    if record.read_count >= WEEKLY_MIN_READS and idle < timedelta(days=7):
        return "weekly"
    return "occasional"


def classify_expertise_level(record: BehaviorRecord) -> ExpertiseLevel:
    if record.read_count >= EXPERT_MIN_READS:
        return "expert"
    if record.read_count >= INTERMEDIATE_MIN_READS:
        return "intermediate"
    return "beginner"


def compute_favorite_category(record: BehaviorRecord) -> str:
    # sorted() is stable, so declared category order breaks ties.
    ranked = sorted(CATEGORIES, key=lambda c: record.category_views.get(c, 0), reverse=True)
    top = ranked[0]
    if record.category_views.get(top, 0) >= FAVORITE_MIN_VIEWS:
        return top
    return ""


def compute_affinity_flag(record: BehaviorRecord) -> bool:
    if record.read_count <= 0:
        return False
    views = record.affinity_team_view_count
    return views >= AFFINITY_MIN_VIEWS and (views / record.read_count) > AFFINITY_MIN_SHARE


def compute_attributes(record: BehaviorRecord, now: datetime) -> UserAttributes:
    return UserAttributes(
        team=record.team,
        reading_frequency=classify_reading_frequency(record, now),
        expertise_level=classify_expertise_level(record),
        favorite_category=compute_favorite_category(record),
        read_count=record.read_count,
        total_time_spent=record.total_time_spent_seconds,
        is_affinity_reader=compute_affinity_flag(record),
    )


def category_breakdown(record: BehaviorRecord) -> Dict[str, int]:
    """Share of views per known category, as percentages rounded half up."""
    total = sum(record.category_views.get(c, 0) for c in CATEGORIES)
    if total == 0:
        return {category: 0 for category in CATEGORIES}
    return {
        category: math.floor(record.category_views.get(category, 0) / total * 100 + 0.5) for category in CATEGORIES
    }


def audience_segments(attributes: UserAttributes) -> List[str]:
    """Personalization audiences a user falls into, in display order."""
    segments: List[str] = []
    if attributes.team:
        segments.append(f"{attributes.team} Team Member")
    favorite = attributes.favorite_category
    if favorite == "Insight" and attributes.reading_frequency != "occasional":
        segments.append("Insight Enthusiast")
    if favorite == "Incident" and attributes.expertise_level in ("intermediate", "expert"):
        segments.append("Incident Responder")
    if favorite == "Retrospective":
        segments.append("Retrospective Reader")
    if attributes.reading_frequency == "daily" and attributes.expertise_level == "expert":
        segments.append("Power User")
    if attributes.reading_frequency == "occasional" or not favorite:
        segments.append("New User")
    return segments
