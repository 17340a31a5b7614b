from __future__ import annotations

import time
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .classifier import audience_segments, category_breakdown
from .config import Settings, load_settings
from .errors import InvalidUserError
from .logs import log_event, recent_logs
from .models import Post
from .selector import featured_posts, select_posts
from .sinks import AttributeSink, build_attribute_sink
from .storage import build_storage
from .store import BehaviorStore
from .tracker import EventTracker


class PostPayload(BaseModel):
    id: str = Field(min_length=1)
    category: str
    team: str = ""
    created_at: datetime
    title: str = ""
    tags: List[str] = Field(default_factory=list)
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    advanced: bool = False
    featured: bool = False

    def to_post(self) -> Post:
        return Post(**self.model_dump())


class InitRequest(BaseModel):
    user_id: str
    team: str = ""


class ViewRequest(BaseModel):
    user_id: str
    user_team: str = ""
    post: PostPayload


class TimeSpentRequest(BaseModel):
    user_id: str
    seconds: float = Field(ge=0, le=86400)


class RecommendationRequest(BaseModel):
    user_id: str
    posts: List[PostPayload] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, ge=0, le=100)


settings: Settings = load_settings()
store: Optional[BehaviorStore] = None
tracker: Optional[EventTracker] = None
attribute_sink: Optional[AttributeSink] = None

endpoint_metrics: Dict[str, "EndpointStats"] = {}


def configure(new_settings: Settings) -> EventTracker:
    global settings, store, tracker, attribute_sink
    settings = new_settings
    store = BehaviorStore(
        storage=build_storage(settings),
        prefix=settings.storage_prefix,
        tracked_user_ids=settings.tracked_user_ids,
    )
    attribute_sink = build_attribute_sink(settings)
    tracker = EventTracker(
        store,
        sink=attribute_sink,
        dedup_window_seconds=settings.dedup_window_seconds,
        dedup_scope=settings.dedup_scope,
        affinity_teams=settings.affinity_teams,
    )
    # Single-tenant deployments keep only the privileged user's history.
    single_user = settings.single_tenant_user
    if single_user is not None:
        store.purge_all_except(single_user)
    log_event(
        "engine_configured",
        storage=getattr(store.storage, "mode", "custom"),
        sink=getattr(attribute_sink, "mode", "custom"),
        dedup_scope=settings.dedup_scope,
    )
    return tracker


def shutdown() -> None:
    global store, tracker, attribute_sink
    if attribute_sink is not None:
        attribute_sink.close()
    if store is not None:
        store.storage.close()
    store = None
    tracker = None
    attribute_sink = None


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure(load_settings())
    yield
    shutdown()


app = FastAPI(title="StackInsights Personalization API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidUserError)
async def invalid_user_handler(_: Request, ex: InvalidUserError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(ex)})


def _engine() -> EventTracker:
    if tracker is None:
        raise HTTPException(status_code=503, detail="Personalization engine not started")
    return tracker


@dataclass
class EndpointStats:
    count: int = 0
    errors: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0

    def summary(self) -> dict:
        return {
            "count": self.count,
            "errors": self.errors,
            "avg_latency_ms": round(self.total_ms / max(self.count, 1), 2),
            "max_latency_ms": round(self.max_ms, 2),
        }


@contextmanager
def _timed(endpoint: str) -> Iterator[None]:
    stats = endpoint_metrics.setdefault(endpoint, EndpointStats())
    started = time.perf_counter()
    try:
        yield
    except Exception:
        stats.errors += 1
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        stats.count += 1
        stats.total_ms += elapsed_ms
        stats.max_ms = max(stats.max_ms, elapsed_ms)


def _post_item(post: Post) -> dict:
    return {
        "id": post.id,
        "title": post.title,
        "category": post.category,
        "team": post.team,
        "created_at": post.created_at.isoformat(),
        "tags": post.tags,
        "rating": post.rating,
        "advanced": post.advanced,
        "featured": post.featured,
    }


@app.get("/health")
def health() -> dict:
    return {
        "status": "ok",
        "engine_ready": tracker is not None,
        "data_backend_mode": getattr(store.storage, "mode", "custom") if store is not None else "",
        "signal_sink_mode": getattr(attribute_sink, "mode", "custom") if attribute_sink is not None else "",
        "dedup_scope": settings.dedup_scope,
    }


@app.post("/api/users/init")
def init_user(req: InitRequest) -> dict:
    with _timed("/api/users/init"):
        attributes = _engine().initialize_attributes(req.user_id, req.team)
        return {"user_id": req.user_id, "attributes": attributes.model_dump()}


@app.post("/api/views")
def record_view(req: ViewRequest) -> dict:
    with _timed("/api/views"):
        result = _engine().record_view(req.user_id, req.post.to_post(), req.user_team)
        return {
            "recorded": result.recorded,
            "reason": result.reason,
            "attributes": result.attributes.model_dump(),
        }


@app.post("/api/time-spent")
def record_time_spent(req: TimeSpentRequest) -> dict:
    with _timed("/api/time-spent"):
        engine = _engine()
        record = engine.record_time_spent(req.user_id, req.seconds)
        recorded = engine.store.is_tracked(req.user_id)
        return {
            "user_id": req.user_id,
            "recorded": recorded,
            "reason": "recorded" if recorded else "untracked",
            "total_time_spent": record.total_time_spent_seconds,
        }


@app.get("/api/users/{user_id}/attributes")
def get_attributes(user_id: str) -> dict:
    return _engine().get_attributes(user_id).model_dump()


@app.get("/api/users/{user_id}/dashboard")
def personalization_dashboard(user_id: str) -> dict:
    engine = _engine()
    record = engine.store.get(user_id)
    attributes = engine.get_attributes(user_id)
    return {
        "behavior": record.model_dump(mode="json", by_alias=True),
        "attributes": attributes.model_dump(),
        "category_breakdown": category_breakdown(record),
        "audience_segments": audience_segments(attributes),
        "tracked": engine.store.is_tracked(user_id),
    }


@app.delete("/api/users/{user_id}/behavior")
def reset_behavior(user_id: str) -> dict:
    _engine().reset_behavior(user_id)
    return {"ok": True, "user_id": user_id}


@app.post("/api/recommendations")
def recommendations(req: RecommendationRequest) -> dict:
    with _timed("/api/recommendations"):
        engine = _engine()
        limit = settings.recommendation_limit if req.limit is None else req.limit
        attributes = engine.get_attributes(req.user_id)
        posts = [p.to_post() for p in req.posts]
        ranked = select_posts(posts, attributes, limit, settings.affinity_teams)
        return {
            "user_id": req.user_id,
            "strategy": "recency" if attributes.read_count == 0 else "personalized",
            "items": [_post_item(p) for p in ranked],
            "featured": [_post_item(p) for p in featured_posts(posts, limit)],
            "attributes": attributes.model_dump(),
        }


@app.get("/api/monitoring/dashboard")
def monitoring_dashboard() -> dict:
    return {
        "traffic_metrics": {endpoint: stats.summary() for endpoint, stats in endpoint_metrics.items()},
        "attribute_publish_failures": getattr(attribute_sink, "publish_failed", 0),
        "storage_write_failures": getattr(store.storage, "write_failures", 0) if store is not None else 0,
        "recent_logs": list(recent_logs)[:80],
    }
