"""Record normalization: raw store documents -> typed records.

The document store holds timestamps in several encodings depending on which
client wrote them:

- a datetime object (or something exposing ``to_datetime()``)
- epoch milliseconds as a number
- an ISO-8601 string
- a ``{"seconds": ..., "nanoseconds": ...}`` mapping

Anything that resolves to none of these makes the record unusable for
derivation. Normalization never raises; failures come back as None and are
counted by the batch helpers.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from numbers import Real
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from .models import (
    UNKNOWN_USER,
    LatLng,
    PostKind,
    PostRecord,
    PresenceRecord,
    Profile,
    ProfileSnapshot,
)
from .timeutils import MAX_EPOCH_MS, MIN_EPOCH_MS, epoch_ms_from_dt

logger = logging.getLogger(__name__)

PRESENCE_TIME_FIELDS = ("lastUpdatedMs", "lastUpdatedAt", "updatedAt", "timestamp")


@dataclass(frozen=True, slots=True)
class NormalizationSummary:
    """Drop counts for one batch."""

    rows_total: int
    rows_parsed: int
    rows_dropped: int


def _is_number(value: Any) -> bool:
    # bool is an int subclass; True must not become 1 ms after the epoch.
    return isinstance(value, Real) and not isinstance(value, bool)


def _checked_ms(ms: int) -> Optional[int]:
    if MIN_EPOCH_MS <= ms <= MAX_EPOCH_MS:
        return ms
    return None


def _from_number(value: Real) -> Optional[int]:
    f = float(value)
    if not math.isfinite(f):
        return None
    return _checked_ms(int(value) if isinstance(value, int) else math.floor(f))


def _from_string(text: str, tz: tzinfo) -> Optional[int]:
    s = text.strip()
    if not s:
        return None
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return _checked_ms(epoch_ms_from_dt(dt, tz))


def _from_seconds_pair(value: Any) -> Optional[int]:
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0))
    else:
        seconds = getattr(value, "seconds", None)
        nanos = getattr(value, "nanoseconds", 0)
    if not _is_number(seconds):
        return None
    if nanos is None:
        nanos = 0
    if not _is_number(nanos):
        return None
    if not (math.isfinite(float(seconds)) and math.isfinite(float(nanos))):
        return None
    if isinstance(seconds, int) and isinstance(nanos, int):
        return _checked_ms(seconds * 1000 + nanos // 1_000_000)
    ms = float(seconds) * 1000 + float(nanos) / 1_000_000
    if not math.isfinite(ms):
        return None
    return _checked_ms(math.floor(ms))


def normalize_timestamp(value: Any, tz: tzinfo = timezone.utc) -> Optional[int]:
    """Resolve a raw timestamp field to epoch milliseconds.

    Args:
        value: Raw field value in any supported encoding.
        tz: Timezone applied to naive datetimes and offset-less strings.

    Returns:
        Epoch milliseconds, or None if the value is missing or unparseable.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        try:
            return _checked_ms(epoch_ms_from_dt(value, tz))
        except (OverflowError, TypeError, ValueError):
            return None

    to_datetime = getattr(value, "to_datetime", None)
    if callable(to_datetime):
        try:
            dt = to_datetime()
        except Exception:  # foreign timestamp types raise their own errors
            logger.debug("to_datetime() failed for %r", value, exc_info=True)
            return None
        return normalize_timestamp(dt, tz) if isinstance(dt, datetime) else None

    if _is_number(value):
        return _from_number(value)

    if isinstance(value, str):
        return _from_string(value, tz)

    return _from_seconds_pair(value)


def _coordinate(value: Any, limit: float) -> Optional[float]:
    if not _is_number(value):
        return None
    f = float(value)
    if not math.isfinite(f) or abs(f) > limit:
        return None
    return f


def _location(doc: Mapping[str, Any]) -> Optional[LatLng]:
    lat = doc.get("lat", doc.get("latitude"))
    lng = doc.get("lng", doc.get("longitude"))
    nested = doc.get("location")
    if (lat is None or lng is None) and isinstance(nested, Mapping):
        lat = nested.get("lat", nested.get("latitude"))
        lng = nested.get("lng", nested.get("longitude"))

    lat_f = _coordinate(lat, 90.0)
    lng_f = _coordinate(lng, 180.0)
    if lat_f is None or lng_f is None:
        return None
    return lat_f, lng_f


def _optional_int(value: Any) -> Optional[int]:
    if _is_number(value) and math.isfinite(float(value)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _color_value(value: Any) -> Optional[int]:
    """ARGB colour stored as a number or a numeric string; "0" and junk mean unset."""
    if _is_number(value):
        return int(value) if math.isfinite(float(value)) else None
    if isinstance(value, str):
        try:
            f = float(value.strip())
        except ValueError:
            return None
        return int(f) if math.isfinite(f) and f != 0 else None
    return None


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _doc_id(doc: Mapping[str, Any]) -> Optional[str]:
    raw_id = doc.get("id", doc.get("_id"))
    if raw_id is None or isinstance(raw_id, bool):
        return None
    text = str(raw_id)
    return text or None


def _profile_snapshot(doc: Mapping[str, Any]) -> ProfileSnapshot:
    profile = doc.get("profile")
    if not isinstance(profile, Mapping):
        profile = {}
    color = profile.get("colorValue")
    if color is None:
        color = profile.get("avatarColor")
    return ProfileSnapshot(
        display_name=_text(profile.get("displayName")) or _text(profile.get("name")) or UNKNOWN_USER,
        avatar_image_base64=_text(profile.get("avatarImageBase64")),
        color_value=_optional_int(color),
        message=_text(doc.get("message")) or _text(profile.get("message")),
    )


def normalize(raw: Any, tz: tzinfo = timezone.utc) -> Optional[PresenceRecord]:
    """Normalize one raw presence document.

    Args:
        raw: Document mapping as returned by the snapshot provider.
        tz: Timezone for naive timestamps.

    Returns:
        PresenceRecord, or None if the document has no id or no resolvable
        timestamp. Bad coordinates only drop the location.
    """
    if not isinstance(raw, Mapping):
        return None
    record_id = _doc_id(raw)
    if record_id is None:
        return None

    timestamp = None
    for key in PRESENCE_TIME_FIELDS:
        if raw.get(key) is not None:
            timestamp = normalize_timestamp(raw[key], tz)
            break
    if timestamp is None:
        return None

    return PresenceRecord(
        id=record_id,
        timestamp=timestamp,
        location=_location(raw),
        # Only an explicit False ends a presence.
        active=raw.get("active") is not False,
        profile=_profile_snapshot(raw),
    )


def normalize_records(
    raws: Iterable[Any], tz: tzinfo = timezone.utc
) -> Tuple[List[PresenceRecord], NormalizationSummary]:
    """Normalize a snapshot of presence documents.

    Returns:
        (records, summary). Unparseable documents are dropped and logged.
    """
    return normalize_many(raws, normalize, tz, label="presence records")


def normalize_profile(raw: Any, tz: tzinfo = timezone.utc) -> Optional[Profile]:
    """Normalize an identity document.

    Profiles without a parseable ``createdAt`` are kept with ``created_at``
    unset so that all-time totals still count them.
    """
    if not isinstance(raw, Mapping):
        return None
    profile_id = _doc_id(raw)
    if profile_id is None:
        return None
    return Profile(
        id=profile_id,
        display_name=_text(raw.get("displayName")) or _text(raw.get("name")) or UNKNOWN_USER,
        created_at=normalize_timestamp(raw.get("createdAt"), tz),
        received_likes=_optional_int(raw.get("receivedLikes")) or 0,
        followers_count=_optional_int(raw.get("followersCount")) or 0,
        avatar_image_base64=_text(raw.get("avatarImageBase64")),
        color_value=_color_value(raw.get("avatarColor", raw.get("colorValue"))),
    )


def normalize_post(raw: Any, kind: PostKind, tz: tzinfo = timezone.utc) -> Optional[PostRecord]:
    """Normalize a timeline or emotion-map post document."""
    if not isinstance(raw, Mapping):
        return None
    post_id = _doc_id(raw)
    if post_id is None:
        return None
    if kind is PostKind.POST:
        author_id = _text(raw.get("authorId"))
        text = _text(raw.get("caption"))
    else:
        author_id = _text(raw.get("profileId")) or _text(raw.get("authorId"))
        text = _text(raw.get("message"))
    return PostRecord(
        id=post_id,
        kind=kind,
        created_at=normalize_timestamp(raw.get("createdAt"), tz),
        author_id=author_id,
        author_name=_text(raw.get("authorName")),
        text=text,
        emotion=_text(raw.get("emotion")) if kind is PostKind.EMOTION else None,
    )


def normalize_many(
    raws: Iterable[Any], normalizer, *args, label: str = "records"
) -> Tuple[List[Any], NormalizationSummary]:
    """Apply a per-document normalizer, keeping only the successes.

    Returns:
        (items, summary). A WARNING names the drop count when anything
        was dropped.
    """
    total = 0
    items: List[Any] = []
    for raw in raws:
        total += 1
        item = normalizer(raw, *args)
        if item is not None:
            items.append(item)

    summary = NormalizationSummary(
        rows_total=total,
        rows_parsed=len(items),
        rows_dropped=total - len(items),
    )
    if summary.rows_dropped > 0:
        logger.warning("Dropped %s of %s %s with unparseable fields",
                       summary.rows_dropped, summary.rows_total, label)
    return items, summary
