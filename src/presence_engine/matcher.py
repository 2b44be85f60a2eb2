"""Encounter detection: pairwise time + distance matching within one day.

Every unordered pair of the day's presence records is tested independently:

- timestamps at most ``time_window`` ms apart
- when both records carry a location, haversine distance at most
  ``distance_threshold`` meters; without a location on either side the time
  test alone decides

The day filter is applied before anything else and bounds the work. Within
the day, records are walked in timestamp order and each one is only compared
with the slice of later records inside the time window, so memory stays
linear in the number of records plus the number of qualifying pairs.
"""

from typing import Iterable, List, Sequence, Tuple

import numpy as np

from .geo import haversine_m, midpoint
from .models import MS_IN_MINUTE, EncounterEvent, PresenceRecord

DEFAULT_TIME_WINDOW_MS = 5 * MS_IN_MINUTE
DEFAULT_DISTANCE_THRESHOLD_M = 100.0


def pair_id(id_a: str, id_b: str) -> str:
    """Order-independent key for an unordered pair of record ids."""
    first, second = sorted((id_a, id_b))
    return f"{first}_{second}"


def _sort_key(record: PresenceRecord):
    # Fully determined order, so duplicated ids resolve the same way on every run.
    loc = record.location
    return (record.id, record.timestamp, loc is None, loc or (0.0, 0.0))


def records_for_day(records: Iterable[PresenceRecord], day: Tuple[int, int]) -> List[PresenceRecord]:
    """Active records whose timestamp lies in the closed interval ``day``, sorted by id."""
    day_start, day_end = day
    selected = [r for r in records if r.active and day_start <= r.timestamp <= day_end]
    selected.sort(key=_sort_key)
    return selected


def _candidate_pairs(
    candidates: Sequence[PresenceRecord],
    time_window: int,
    distance_threshold: float,
) -> List[Tuple[int, int, float]]:
    """Qualifying pairs as (i, j, distance) with i < j in candidate order.

    ``distance`` is NaN when either record has no location.
    """
    ts = np.array([r.timestamp for r in candidates], dtype=np.int64)
    lats = np.array([r.location[0] if r.location else np.nan for r in candidates], dtype=float)
    lons = np.array([r.location[1] if r.location else np.nan for r in candidates], dtype=float)
    located = ~np.isnan(lats)

    order = np.argsort(ts, kind="stable")
    ts_sorted = ts[order]
    # Exclusive end of each record's time window in sorted order.
    window_end = np.searchsorted(ts_sorted, ts_sorted + np.int64(time_window), side="right")

    pairs: List[Tuple[int, int, float]] = []
    with np.errstate(invalid="ignore"):
        for pos in range(len(order) - 1):
            stop = window_end[pos]
            if stop <= pos + 1:
                continue
            i = int(order[pos])
            js = order[pos + 1:stop]
            distances = np.atleast_1d(haversine_m(lats[i], lons[i], lats[js], lons[js]))
            near = ~(located[i] & located[js]) | (distances <= distance_threshold)
            for j, distance in zip(js[near].tolist(), distances[near].tolist()):
                pairs.append((min(i, j), max(i, j), distance))

    pairs.sort(key=lambda p: (p[0], p[1]))
    return pairs


def match_encounters(
    records: Iterable[PresenceRecord],
    day: Tuple[int, int],
    time_window: int = DEFAULT_TIME_WINDOW_MS,
    distance_threshold: float = DEFAULT_DISTANCE_THRESHOLD_M,
) -> List[EncounterEvent]:
    """Find encounters among the presence records of one day.

    Args:
        records: Normalized presence records (any order).
        day: (day_start_ms, day_end_ms), both inclusive.
        time_window: Maximum timestamp difference in ms.
        distance_threshold: Maximum distance in meters when both records
            carry a location.

    Returns:
        Encounter events, most recent first. At most one event per
        unordered id pair; a record never pairs with its own id.
    """
    candidates = records_for_day(records, day)
    if len(candidates) < 2:
        return []

    emitted = set()
    events: List[EncounterEvent] = []
    # Pairs arrive as (i, j) with i < j in id order, so duplicate ids resolve deterministically.
    for i, j, distance in _candidate_pairs(candidates, time_window, distance_threshold):
        a = candidates[i]
        b = candidates[j]
        if a.id == b.id:
            continue
        key = pair_id(a.id, b.id)
        if key in emitted:
            continue

        distance_m = None
        location = None
        if a.location is not None and b.location is not None:
            distance_m = float(distance)
            location = midpoint(a.location, b.location)

        events.append(EncounterEvent(
            id=key,
            participants=(a, b),
            occurred_at=max(a.timestamp, b.timestamp),
            distance_m=distance_m,
            midpoint=location,
        ))
        emitted.add(key)

    events.sort(key=lambda e: (-e.occurred_at, e.id))
    return events
