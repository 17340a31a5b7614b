from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

CATEGORIES = ["Insight", "Incident", "Retrospective"]

ReadingFrequency = Literal["daily", "weekly", "occasional"]
ExpertiseLevel = Literal["beginner", "intermediate", "expert"]
FavoriteCategory = Literal["Insight", "Incident", "Retrospective", ""]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_dt(value: object) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        numeric = float(value)
        if numeric > 10_000_000_000:
            numeric = numeric / 1000
        return datetime.fromtimestamp(numeric, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                return parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        except ValueError:
            pass
    # Unparseable timestamps sort last rather than posing as fresh content.
    return EPOCH


@dataclass
class Post:
    id: str
    category: str
    team: str
    created_at: datetime
    title: str = ""
    tags: List[str] = field(default_factory=list)
    rating: Optional[float] = None
    advanced: bool = False
    featured: bool = False

    def __post_init__(self) -> None:
        self.created_at = coerce_dt(self.created_at)

    @property
    def is_advanced(self) -> bool:
        return self.advanced or any(tag.strip().lower() == "advanced" for tag in self.tags)


def zero_category_views() -> Dict[str, int]:
    return {category: 0 for category in CATEGORIES}


class BehaviorRecord(BaseModel):
    """Raw reading counters for one user.

    Field aliases are the persisted JSON names and must stay stable across
    versions; python code uses the snake_case attribute names.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    team: str = ""
    read_count: int = Field(default=0, ge=0, alias="readCount")
    category_views: Dict[str, int] = Field(default_factory=zero_category_views, alias="categoryViews")
    last_active_at: datetime = Field(default_factory=utcnow, alias="lastActiveAt")
    total_time_spent_seconds: float = Field(default=0.0, ge=0, alias="totalTimeSpentSeconds")
    affinity_team_view_count: int = Field(default=0, ge=0, alias="affinityTeamViewCount")

    @field_validator("category_views")
    @classmethod
    def _fill_known_categories(cls, value: Dict[str, int]) -> Dict[str, int]:
        for category, count in value.items():
            if count < 0:
                raise ValueError(f"negative view count for {category!r}")
        filled = zero_category_views()
        filled.update(value)
        return filled

    @field_validator("last_active_at")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        return coerce_dt(value)

    @model_validator(mode="after")
    def _consistent_counters(self, info: ValidationInfo) -> "BehaviorRecord":
        # Enforced for stored data loaded by BehaviorStore.
        if not (info.context or {}).get("check_counters"):
            return self
        if self.read_count != sum(self.category_views.values()):
            raise ValueError("readCount does not match categoryViews")
        if self.affinity_team_view_count > self.read_count:
            raise ValueError("affinityTeamViewCount exceeds readCount")
        return self

    @classmethod
    def zero(cls, user_id: str, now: Optional[datetime] = None) -> "BehaviorRecord":
        return cls(user_id=user_id, last_active_at=now or utcnow())

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class UserAttributes(BaseModel):
    team: str = ""
    reading_frequency: ReadingFrequency = "occasional"
    expertise_level: ExpertiseLevel = "beginner"
    favorite_category: FavoriteCategory = ""
    read_count: int = 0
    total_time_spent: float = 0.0
    is_affinity_reader: bool = False
