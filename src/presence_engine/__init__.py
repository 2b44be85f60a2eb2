"""Presence & Encounter Derivation Engine."""

__version__ = "0.1.0"

from .aggregator import aggregate_activity, aggregate_category
from .engine import DashboardResult, Derived, PresenceEngine, load_config
from .geocoding import NominatimPlaceLookup, PlaceCache, ReverseGeocoder
from .liveness import classify_liveness, is_online, user_directory
from .matcher import match_encounters
from .models import ActivityRange
from .normalizer import normalize, normalize_records, normalize_timestamp
from .snapshot import InMemorySnapshotProvider, JsonSnapshotProvider, SnapshotError, SnapshotFilter
from .stats import emotion_breakdown, recent_activity, rollup_stats

__all__ = [
    "ActivityRange",
    "DashboardResult",
    "Derived",
    "InMemorySnapshotProvider",
    "JsonSnapshotProvider",
    "NominatimPlaceLookup",
    "PlaceCache",
    "PresenceEngine",
    "ReverseGeocoder",
    "SnapshotError",
    "SnapshotFilter",
    "aggregate_activity",
    "aggregate_category",
    "classify_liveness",
    "emotion_breakdown",
    "is_online",
    "load_config",
    "match_encounters",
    "normalize",
    "normalize_records",
    "normalize_timestamp",
    "recent_activity",
    "rollup_stats",
    "user_directory",
]
