from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Literal, Optional, Union

DEFAULT_STORAGE_PREFIX = "user_behavior_"
DEFAULT_AFFINITY_TEAMS = frozenset({"Product", "Infrastructure", "Launch"})
DATA_BACKENDS = {"memory", "mongo"}
SIGNAL_SINKS = {"log", "kafka"}
DEDUP_SCOPES = {"user", "global"}

TrackedUsers = Union[Literal["all"], FrozenSet[str]]


@dataclass(frozen=True)
class Settings:
    storage_prefix: str = DEFAULT_STORAGE_PREFIX
    data_backend: str = "memory"
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db_name: str = "stackinsights"
    mongo_collection: str = "behavior"
    signal_sink: str = "log"
    kafka_bootstrap_servers: str = "localhost:19092"
    kafka_attributes_topic: str = "user-attributes"
    kafka_max_block_ms: int = 1000
    dedup_window_seconds: float = 2.0
    dedup_scope: str = "user"
    affinity_teams: FrozenSet[str] = field(default_factory=lambda: DEFAULT_AFFINITY_TEAMS)
    tracked_user_ids: TrackedUsers = "all"
    recommendation_limit: int = 6

    @property
    def single_tenant_user(self) -> Optional[str]:
        if self.tracked_user_ids == "all" or len(self.tracked_user_ids) != 1:
            return None
        return next(iter(self.tracked_user_ids))


def _split_csv(raw: Optional[str]) -> FrozenSet[str]:
    if not raw:
        return frozenset()
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


def _choice(name: str, allowed: set, default: str) -> str:
    value = os.getenv(name, default).strip().lower()
    return value if value in allowed else default


def _float_env(name: str, default: float) -> float:
    try:
        return max(0.0, float(os.getenv(name, str(default))))
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    try:
        return max(1, int(os.getenv(name, str(default))))
    except ValueError:
        return default


def _tracked_users(raw: Optional[str]) -> TrackedUsers:
    if raw is None or raw.strip().lower() in {"", "all", "*"}:
        return "all"
    return _split_csv(raw)


def load_settings() -> Settings:
    return Settings(
        storage_prefix=os.getenv("STACKINSIGHTS_STORAGE_PREFIX", DEFAULT_STORAGE_PREFIX),
        data_backend=_choice("DATA_BACKEND", DATA_BACKENDS, "memory"),
        mongo_uri=os.getenv("MONGO_URI", "mongodb://localhost:27017").strip(),
        mongo_db_name=os.getenv("MONGO_DB_NAME", "stackinsights").strip(),
        mongo_collection=os.getenv("MONGO_COLLECTION", "behavior").strip(),
        signal_sink=_choice("SIGNAL_SINK", SIGNAL_SINKS, "log"),
        kafka_bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:19092").strip(),
        kafka_attributes_topic=os.getenv("KAFKA_ATTRIBUTES_TOPIC", "user-attributes").strip(),
        kafka_max_block_ms=_int_env("KAFKA_MAX_BLOCK_MS", 1000),
        dedup_window_seconds=_float_env("DEDUP_WINDOW_SECONDS", 2.0),
        dedup_scope=_choice("DEDUP_SCOPE", DEDUP_SCOPES, "user"),
        affinity_teams=_split_csv(os.getenv("AFFINITY_TEAMS")) or DEFAULT_AFFINITY_TEAMS,
        tracked_user_ids=_tracked_users(os.getenv("TRACKED_USER_IDS")),
        recommendation_limit=_int_env("RECOMMENDATION_LIMIT", 6),
    )
