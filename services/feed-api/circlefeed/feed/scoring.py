"""
Smart-sort scoring.

Deterministic weighted formula, no model:

  recency           = exp(-ageHours / τ)                 τ = 72h
  activityWeight    = Σ circleActivity[c] / maxCircleActivity
  contentSignal     = 0.30 if rated + min(len(comment), 300) / 300 * 0.20
  availabilityBoost = min(playable providers, 3) * 0.15
  personalBoost     = clamp(mutual circles, 0, 3) / 3 * 0.35
  globalEngagement  = ln(1 + likes + comments) * 0.15
  friendEngagement  = ln(1 + friendLikes + friendComments) * 0.35

  score = recency * (1 + activityWeight * 0.9 + contentSignal
                       + availabilityBoost + personalBoost
                       + globalEngagement + friendEngagement)

Equal scores fall back to (created_at desc, post_id desc).
"""
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

from circlefeed.feed.engagement import EngagementCounters

DEFAULT_TAU_HOURS = 72.0

ACTIVITY_WEIGHT = 0.9
RATING_WEIGHT = 0.30
COMMENT_WEIGHT = 0.20
COMMENT_CAP = 300
PROVIDER_WEIGHT = 0.15
PROVIDER_CAP = 3
PERSONAL_WEIGHT = 0.35
MUTUAL_CAP = 3
GLOBAL_ENGAGEMENT_WEIGHT = 0.15
FRIEND_ENGAGEMENT_WEIGHT = 0.35


@dataclass(slots=True)
class CircleActivity:
    """Recent post counts for the viewer's circles."""

    counts: dict[str, int] = field(default_factory=dict)

    @property
    def max_count(self) -> int:
        return max([1, *self.counts.values()])

    def total(self, circle_ids: Iterable[str]) -> int:
        return sum(self.counts.get(c, 0) for c in circle_ids)


@dataclass(slots=True)
class RankingSignals:
    post_id: str
    created_at: datetime
    circle_ids: Sequence[str] = ()
    has_rating: bool = False
    comment_length: int = 0
    provider_matches: int = 0
    mutual_circles: int = 0
    engagement: EngagementCounters = field(default_factory=EngagementCounters)


def score_row(
    signals: RankingSignals,
    activity: CircleActivity,
    now: datetime,
    tau_hours: float = DEFAULT_TAU_HOURS,
) -> float:
    age_hours = max(0.0, (now - signals.created_at).total_seconds() / 3600.0)
    recency = math.exp(-age_hours / tau_hours)

    activity_weight = activity.total(signals.circle_ids) / activity.max_count

    content = RATING_WEIGHT if signals.has_rating else 0.0
    if signals.comment_length > 0:
        content += min(signals.comment_length, COMMENT_CAP) / COMMENT_CAP * COMMENT_WEIGHT

    availability = min(signals.provider_matches, PROVIDER_CAP) * PROVIDER_WEIGHT

    mutual = min(max(signals.mutual_circles, 0), MUTUAL_CAP)
    personal = mutual / MUTUAL_CAP * PERSONAL_WEIGHT

    e = signals.engagement
    global_engagement = math.log1p(e.likes + e.comments) * GLOBAL_ENGAGEMENT_WEIGHT
    friend_engagement = math.log1p(e.friend_likes + e.friend_comments) * FRIEND_ENGAGEMENT_WEIGHT

    return recency * (
        1.0
        + activity_weight * ACTIVITY_WEIGHT
        + content
        + availability
        + personal
        + global_engagement
        + friend_engagement
    )


def rank_signals(
    rows: Iterable[RankingSignals],
    activity: CircleActivity,
    now: datetime,
    tau_hours: float = DEFAULT_TAU_HOURS,
) -> list[tuple[RankingSignals, float]]:
    """Score every row and order by (score, created_at, post_id), all descending."""
    scored = [(row, score_row(row, activity, now, tau_hours)) for row in rows]
    scored.sort(key=lambda item: (item[1], item[0].created_at, item[0].post_id), reverse=True)
    return scored
