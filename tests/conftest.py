"""Shared fixtures for presence_engine tests."""

import math

import pytest

from presence_engine.geo import EARTH_RADIUS_M
from presence_engine.models import MS_IN_MINUTE, PresenceRecord, ProfileSnapshot
from presence_engine.snapshot import InMemorySnapshotProvider
from presence_engine.timeutils import tzinfo_from_name

# 2024-01-01T03:00:00Z == 2024-01-01 12:00 in Asia/Tokyo
NOW = 1_704_078_000_000
TOKYO_DAY = (1_704_034_800_000, 1_704_121_199_999)

TOKYO_STATION = (35.6812, 139.7671)


def meters_north(point, meters):
    """Point ``meters`` due north of ``point`` (exact along a meridian)."""
    return point[0] + math.degrees(meters / EARTH_RADIUS_M), point[1]


# --- Fixtures ---


@pytest.fixture
def tokyo():
    return tzinfo_from_name("Asia/Tokyo")


@pytest.fixture
def make_presence():
    """Factory for PresenceRecord with sensible defaults."""

    def _make(record_id, timestamp=NOW, location=None, active=True, name=None):
        profile = ProfileSnapshot(display_name=name or record_id.upper())
        return PresenceRecord(
            id=record_id,
            timestamp=timestamp,
            location=location,
            active=active,
            profile=profile,
        )

    return _make


@pytest.fixture
def raw_datasets():
    """Store documents as the dashboard reads them, keyed by collection name.

    Reference instant is NOW (12:00 local, Asia/Tokyo).
    """
    near = meters_north(TOKYO_STATION, 50)
    return {
        "streetpass_presences": [
            {"id": "p1", "lastUpdatedMs": NOW - MS_IN_MINUTE, "lat": TOKYO_STATION[0],
             "lng": TOKYO_STATION[1], "active": True, "profile": {"displayName": "Aki"}},
            {"id": "p2", "lastUpdatedMs": NOW - 2 * MS_IN_MINUTE, "lat": near[0], "lng": near[1],
             "profile": {"displayName": "Ren", "colorValue": 4280391411}},
            {"id": "p3", "lastUpdatedMs": NOW - 120 * MS_IN_MINUTE, "lat": 34.7025, "lng": 135.4959,
             "profile": {"displayName": "Yui"}},
            {"id": "p4", "lastUpdatedMs": NOW - 10_000, "active": False,
             "profile": {"displayName": "Sora"}},
            {"id": "bad", "lastUpdatedMs": "garbage"},
        ],
        "timelinePosts": [
            {"id": "post1", "createdAt": NOW - 30 * MS_IN_MINUTE, "authorId": "u1",
             "authorName": "Aki", "caption": "hello"},
            {"id": "post2", "createdAt": NOW - 2 * 24 * 60 * MS_IN_MINUTE, "authorId": "u2",
             "authorName": "Ren", "caption": "older"},
            {"id": "post3", "authorId": "u1", "caption": "no timestamp"},
        ],
        "emotion_map_posts": [
            {"id": "e1", "createdAt": {"seconds": (NOW - 10 * MS_IN_MINUTE) // 1000, "nanoseconds": 0},
             "profileId": "u2", "emotion": "happy", "message": "yay"},
            {"id": "e2", "createdAt": "2024-01-01T09:00:00+09:00", "profileId": "u1", "emotion": "sad"},
        ],
        "profiles": {
            "u1": {"displayName": "Aki", "createdAt": NOW - 60 * MS_IN_MINUTE,
                   "receivedLikes": 3, "followersCount": 2},
            "u2": {"displayName": "Ren", "createdAt": "2023-12-22T12:00:00+09:00",
                   "receivedLikes": 5, "followersCount": "4"},
        },
    }


@pytest.fixture
def provider(raw_datasets, tokyo):
    return InMemorySnapshotProvider(raw_datasets, tokyo)
