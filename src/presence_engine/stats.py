"""Scalar dashboard statistics and the recent-activity feed."""

from datetime import timezone, tzinfo
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .models import (
    UNKNOWN_USER,
    ActivityStats,
    EmotionStat,
    PostKind,
    PostRecord,
    PresenceRecord,
    Profile,
    RecentActivity,
)
from .timeutils import day_bounds

EMOTION_LABELS: Dict[str, str] = {
    "happy": "😊 Happy",
    "sad": "😢 Sad",
    "excited": "🤩 Excited",
    "calm": "😌 Calm",
    "surprised": "😮 Surprised",
    "tired": "😴 Tired",
}

UNKNOWN_EMOTION = "unknown"


def _created_today(created: pd.Series, day: Tuple[int, int]) -> int:
    """Count non-null timestamps inside the closed day window."""
    created = created.dropna()
    return int(((created >= day[0]) & (created <= day[1])).sum())


def _timestamps(values: Sequence[Optional[int]]) -> pd.Series:
    return pd.Series(list(values), dtype="Int64")


def rollup_stats(
    presences: Sequence[PresenceRecord],
    posts: Sequence[PostRecord],
    emotion_posts: Sequence[PostRecord],
    profiles: Sequence[Profile],
    now: int,
    tz: tzinfo = timezone.utc,
) -> ActivityStats:
    """Compute today's counters and all-time totals.

    Records with an unparseable creation time are left out of the
    day-bounded counts but still counted in the all-time totals.

    Args:
        presences: Normalized presence records.
        posts: Timeline posts.
        emotion_posts: Emotion-map posts.
        profiles: Identity records.
        now: Reference instant, epoch ms.
        tz: Timezone whose local midnight starts "today".

    Returns:
        ActivityStats
    """
    day = day_bounds(now, tz)
    presence_df = pd.DataFrame(
        {"id": [p.id for p in presences], "timestamp": [p.timestamp for p in presences]},
        columns=["id", "timestamp"],
    )
    today_presences = presence_df[
        (presence_df["timestamp"] >= day[0]) & (presence_df["timestamp"] <= day[1])
    ]

    profile_df = pd.DataFrame(
        {
            "created_at": _timestamps([p.created_at for p in profiles]),
            "received_likes": [p.received_likes for p in profiles],
            "followers_count": [p.followers_count for p in profiles],
        },
        columns=["created_at", "received_likes", "followers_count"],
    )

    return ActivityStats(
        encounters_today=int(today_presences["id"].nunique()),
        posts_today=_created_today(_timestamps([p.created_at for p in posts]), day),
        emotion_posts_today=_created_today(_timestamps([p.created_at for p in emotion_posts]), day),
        total_users=len(profiles),
        new_users_today=_created_today(profile_df["created_at"], day),
        total_posts=len(posts),
        total_emotion_posts=len(emotion_posts),
        total_likes=int(profile_df["received_likes"].sum()),
        total_followers=int(profile_df["followers_count"].sum()),
    )


def emotion_breakdown(emotion_posts: Sequence[PostRecord]) -> List[EmotionStat]:
    """Share of each emotion among emotion posts, most frequent first."""
    if not emotion_posts:
        return []
    emotions = pd.Series([p.emotion or UNKNOWN_EMOTION for p in emotion_posts])
    counts = emotions.value_counts()
    total = int(counts.sum())
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [
        EmotionStat(emotion=name, count=int(count), percentage=count / total * 100.0)
        for name, count in ranked
    ]


def recent_activity(
    posts: Sequence[PostRecord],
    emotion_posts: Sequence[PostRecord],
    limit: int = 20,
) -> List[RecentActivity]:
    """Merged feed of the newest posts and emotion posts.

    Entries without a parseable creation time are skipped rather than
    stamped with the current time.
    """
    items: List[RecentActivity] = []
    for post in posts:
        if post.created_at is None:
            continue
        items.append(RecentActivity(
            id=post.id,
            kind=PostKind.POST,
            title="New post",
            description=post.text or "Untitled",
            timestamp=post.created_at,
            user_id=post.author_id,
            user_name=post.author_name or UNKNOWN_USER,
        ))
    for post in emotion_posts:
        if post.created_at is None:
            continue
        label = EMOTION_LABELS.get(post.emotion or UNKNOWN_EMOTION)
        items.append(RecentActivity(
            id=post.id,
            kind=PostKind.EMOTION,
            title=label or "Emotion post",
            description=post.text or label or "Emotion",
            timestamp=post.created_at,
            user_id=post.author_id,
            user_name=post.author_name,
        ))

    items.sort(key=lambda a: (-a.timestamp, a.kind.value, a.id))
    return items[:limit]
