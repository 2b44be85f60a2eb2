"""Time-bucketed activity counters for trend charts.

Buckets are aligned to ``now``, not to clock hours or midnights: bucket
``N-1`` ends exactly at ``now`` and each bucket is one width long. An event
at time ``t`` lands in bucket ``N - 1 - floor((now - t) / width)``.
"""

from datetime import timezone, tzinfo
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from .models import ActivityBucket, ActivityRange
from .timeutils import dt_from_epoch_ms

POSTS = "posts"
EMOTION_POSTS = "emotion_posts"
NEW_USERS = "new_users"
ONLINE = "online"

CATEGORIES = (POSTS, EMOTION_POSTS, NEW_USERS, ONLINE)


def bucket_indices(timestamps: Iterable[int], activity_range: ActivityRange, now: int) -> np.ndarray:
    """Map timestamps to bucket indices; out-of-range timestamps map to -1."""
    ts = np.fromiter((int(t) for t in timestamps), dtype=np.int64)
    n = activity_range.bucket_count
    # int64 floor division rounds towards -inf, so future events get offset < 0.
    offsets = (np.int64(now) - ts) // np.int64(activity_range.bucket_width_ms)
    in_range = (offsets >= 0) & (offsets < n)
    return np.where(in_range, n - 1 - offsets, -1)


def aggregate_category(
    timestamps: Iterable[int],
    activity_range: ActivityRange,
    now: int,
) -> List[int]:
    """Count timestamps per bucket for a single series.

    Returns:
        List of N counts, oldest bucket first.
    """
    activity_range = ActivityRange.parse(activity_range)
    idx = bucket_indices(timestamps, activity_range, now)
    idx = idx[idx >= 0]
    return np.bincount(idx, minlength=activity_range.bucket_count).tolist()


def bucket_label(activity_range: ActivityRange, bucket_time_ms: int, tz: tzinfo) -> str:
    local = dt_from_epoch_ms(bucket_time_ms, tz)
    if activity_range is ActivityRange.LAST_24_HOURS:
        return f"{local.hour:02d}:00"
    return f"{local.month}/{local.day}"


def aggregate_activity(
    events: Mapping[str, Iterable[int]],
    activity_range: "ActivityRange | str",
    now: int,
    tz: tzinfo = timezone.utc,
    categories: Optional[Sequence[str]] = None,
) -> List[ActivityBucket]:
    """Bucket several event series over identical bucket edges.

    Args:
        events: Category name -> event timestamps (epoch ms).
        activity_range: One of the supported ranges.
        now: Reference instant, epoch ms. The newest bucket ends here.
        tz: Timezone used for bucket labels only.
        categories: Categories to report; defaults to the keys of ``events``
            in insertion order. Missing categories get zero counts.

    Returns:
        N buckets, oldest first.
    """
    activity_range = ActivityRange.parse(activity_range)
    n = activity_range.bucket_count
    width = activity_range.bucket_width_ms
    names = list(categories) if categories is not None else list(events.keys())

    series: Dict[str, List[int]] = {
        name: aggregate_category(events.get(name, ()), activity_range, now) for name in names
    }

    buckets = []
    for k in range(n):
        offset = n - 1 - k
        buckets.append(ActivityBucket(
            index=k,
            label=bucket_label(activity_range, now - offset * width, tz),
            start_ms=now - (offset + 1) * width,
            end_ms=now - offset * width,
            counts={name: series[name][k] for name in names},
        ))
    return buckets


def buckets_to_frame(buckets: Sequence[ActivityBucket]) -> pd.DataFrame:
    """Tabular view of a bucket series, one row per bucket."""
    rows = []
    for b in buckets:
        row = {"index": b.index, "label": b.label, "start_ms": b.start_ms, "end_ms": b.end_ms}
        row.update(b.counts)
        rows.append(row)
    return pd.DataFrame(rows)
