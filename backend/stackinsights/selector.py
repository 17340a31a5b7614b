from __future__ import annotations

from typing import FrozenSet, Iterable, List, Tuple

from .config import DEFAULT_AFFINITY_TEAMS
from .models import Post, UserAttributes

FAVORITE_CATEGORY_BOOST = 3
AFFINITY_TEAM_BOOST = 2
ADVANCED_CONTENT_BOOST = 1


def _recency_key(post: Post) -> Tuple[float, str]:
    return (-post.created_at.timestamp(), post.id)


def latest_posts(posts: Iterable[Post], limit: int) -> List[Post]:
    if limit <= 0:
        return []
    return sorted(posts, key=_recency_key)[:limit]


def featured_posts(posts: Iterable[Post], limit: int) -> List[Post]:
    return latest_posts((p for p in posts if p.featured), limit)


def score_post(
    post: Post,
    attributes: UserAttributes,
    affinity_teams: FrozenSet[str] = DEFAULT_AFFINITY_TEAMS,
) -> int:
    score = 0
    if attributes.favorite_category and post.category == attributes.favorite_category:
        score += FAVORITE_CATEGORY_BOOST
    if attributes.is_affinity_reader and post.team in affinity_teams:
        score += AFFINITY_TEAM_BOOST
    if attributes.expertise_level == "expert" and post.is_advanced:
        score += ADVANCED_CONTENT_BOOST
    return score


def select_posts(
    posts: Iterable[Post],
    attributes: UserAttributes,
    limit: int,
    affinity_teams: FrozenSet[str] = DEFAULT_AFFINITY_TEAMS,
) -> List[Post]:
    """Personalized page of at most ``limit`` posts.

    Scores only reorder the corpus, they never drop a post, so the page is
    always ``min(limit, len(posts))`` long. Users without any reads get the
    newest posts.
    """
    if limit <= 0:
        return []
    if attributes.read_count == 0:
        return latest_posts(posts, limit)

    scored = [(score_post(post, attributes, affinity_teams), post) for post in posts]
    scored.sort(key=lambda item: (-item[0], *_recency_key(item[1])))
    return [post for _, post in scored[:limit]]
