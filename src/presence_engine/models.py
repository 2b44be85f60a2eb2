"""Record and result types shared by the derivation modules.

Everything here is immutable. Derived objects (encounters, buckets, stats)
are rebuilt from a snapshot on every call and never stored.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

MS_IN_MINUTE = 60 * 1000
MS_IN_HOUR = 60 * MS_IN_MINUTE
MS_IN_DAY = 24 * MS_IN_HOUR

UNKNOWN_USER = "Unknown user"

LatLng = Tuple[float, float]


@dataclass(frozen=True, slots=True)
class ProfileSnapshot:
    """Denormalized copy of the owning identity, carried for display only."""

    display_name: str = UNKNOWN_USER
    avatar_image_base64: Optional[str] = None
    color_value: Optional[int] = None
    message: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PresenceRecord:
    """A single liveness report from one device/session.

    Attributes:
        id: Opaque identifier, unique within a snapshot.
        timestamp: Epoch milliseconds.
        location: (latitude, longitude) or None.
        active: False once the device has explicitly ended its presence.
        profile: Identity snapshot for display.
    """

    id: str
    timestamp: int
    location: Optional[LatLng] = None
    active: bool = True
    profile: ProfileSnapshot = field(default_factory=ProfileSnapshot)

    @property
    def has_location(self) -> bool:
        return self.location is not None


@dataclass(frozen=True, slots=True)
class Profile:
    """Identity record used by the stats rollup."""

    id: str
    display_name: str = UNKNOWN_USER
    created_at: Optional[int] = None
    received_likes: int = 0
    followers_count: int = 0
    avatar_image_base64: Optional[str] = None
    color_value: Optional[int] = None


class PostKind(str, Enum):
    POST = "post"
    EMOTION = "emotion"


@dataclass(frozen=True, slots=True)
class PostRecord:
    """Timeline post or emotion-map post.

    ``created_at`` is None when the stored value could not be parsed; such
    posts still count towards all-time totals.
    """

    id: str
    kind: PostKind
    created_at: Optional[int] = None
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    text: Optional[str] = None
    emotion: Optional[str] = None


@dataclass(frozen=True, slots=True)
class EncounterEvent:
    """Two presence records judged close in both time and space.

    ``distance_m`` and ``midpoint`` are either both set or both None.
    """

    id: str
    participants: Tuple[PresenceRecord, PresenceRecord]
    occurred_at: int
    distance_m: Optional[float] = None
    midpoint: Optional[LatLng] = None


class ActivityRange(str, Enum):
    """Supported trend-chart ranges."""

    LAST_24_HOURS = "24h"
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"

    @property
    def bucket_count(self) -> int:
        return {"24h": 24, "7d": 7, "30d": 30}[self.value]

    @property
    def bucket_width_ms(self) -> int:
        return MS_IN_HOUR if self is ActivityRange.LAST_24_HOURS else MS_IN_DAY

    @property
    def duration_ms(self) -> int:
        return self.bucket_count * self.bucket_width_ms

    @classmethod
    def parse(cls, value: "str | ActivityRange") -> "ActivityRange":
        """Accept either an enum member or its string value.

        Raises:
            ValueError: If the value names no supported range.
        """
        if isinstance(value, ActivityRange):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            valid = ", ".join(r.value for r in cls)
            raise ValueError(f"Unknown activity range {value!r} (expected one of: {valid})") from exc


@dataclass(frozen=True, slots=True)
class ActivityBucket:
    """One fixed-width interval of a trend series.

    The bucket covers ``(start_ms, end_ms]``.
    """

    index: int
    label: str
    start_ms: int
    end_ms: int
    counts: Dict[str, int]


@dataclass(frozen=True, slots=True)
class LivenessResult:
    online: List[PresenceRecord]
    offline_count: int

    @property
    def online_count(self) -> int:
        return len(self.online)


@dataclass(frozen=True, slots=True)
class DirectoryEntry:
    """One row of the all-users list.

    Online users carry their latest presence (time, location, display data);
    offline users carry profile data only.
    """

    id: str
    display_name: str
    online: bool
    last_updated: Optional[int] = None
    location: Optional[LatLng] = None
    avatar_image_base64: Optional[str] = None
    color_value: Optional[int] = None


@dataclass(frozen=True, slots=True)
class ActivityStats:
    """Scalar dashboard counters."""

    encounters_today: int = 0
    posts_today: int = 0
    emotion_posts_today: int = 0
    total_users: int = 0
    new_users_today: int = 0
    total_posts: int = 0
    total_emotion_posts: int = 0
    total_likes: int = 0
    total_followers: int = 0


@dataclass(frozen=True, slots=True)
class EmotionStat:
    emotion: str
    count: int
    percentage: float


@dataclass(frozen=True, slots=True)
class RecentActivity:
    id: str
    kind: PostKind
    title: str
    description: str
    timestamp: int
    user_id: Optional[str] = None
    user_name: Optional[str] = None
