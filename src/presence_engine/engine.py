"""Derivation engine: snapshot fetch -> normalization -> dashboard views.

Ties the pure derivation modules together the way the dashboard uses them:

- fetches every dataset a view needs from a snapshot provider, in parallel
- normalizes each snapshot once
- runs liveness, encounters, activity buckets, stats and the user
  directory in parallel
- reports a view whose inputs could not be fetched as unavailable instead
  of silently returning zeros
"""

import copy
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import tzinfo
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import yaml

from .aggregator import CATEGORIES, EMOTION_POSTS, NEW_USERS, ONLINE, POSTS, aggregate_activity
from .liveness import classify_liveness, user_directory
from .matcher import match_encounters
from .models import (
    MS_IN_MINUTE,
    ActivityRange,
    PostKind,
    PostRecord,
    PresenceRecord,
    Profile,
)
from .normalizer import (
    normalize,
    normalize_many,
    normalize_post,
    normalize_profile,
    normalize_records,
)
from .snapshot import SnapshotError, SnapshotFilter, SnapshotProvider
from .stats import emotion_breakdown, recent_activity, rollup_stats
from .timeutils import DEFAULT_TZ, day_bounds, tzinfo_from_name

logger = logging.getLogger(__name__)

PRESENCES = "presences"
PROFILES = "profiles"

DEFAULT_CONFIG: Dict[str, Any] = {
    'timezone': DEFAULT_TZ,
    'liveness': {'timeout_minutes': 5},
    'encounters': {'time_window_minutes': 5, 'distance_meters': 100.0},
    'activity': {
        'default_range': '24h',
        'snapshot_limit_hourly': 500,
        'snapshot_limit_daily': 1500,
    },
    'recent_activity': {'limit': 20},
    'datasets': {
        PRESENCES: 'streetpass_presences',
        POSTS: 'timelinePosts',
        EMOTION_POSTS: 'emotion_map_posts',
        PROFILES: 'profiles',
    },
    'geocoding': {
        'ttl_hours': 24,
        'precision': 3,
        'min_interval_seconds': 1.0,
        'language': 'ja',
        'timeout_seconds': 10.0,
        'user_agent': 'presence-engine/0.1 (reverse-geocode)',
    },
    'output': {'directory': 'output'},
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load YAML configuration merged over the built-in defaults.

    Args:
        config_path: Path to a YAML file, or None for defaults only.

    Returns:
        Configuration dictionary.
    """
    if config_path is None:
        return copy.deepcopy(DEFAULT_CONFIG)
    with open(config_path, 'r', encoding='utf-8') as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")
    return _merge(DEFAULT_CONFIG, loaded)


@dataclass(frozen=True, slots=True)
class Derived:
    """Outcome of one derivation: a value, or the reason it is unavailable."""

    value: Any = None
    unavailable_reason: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.unavailable_reason is None


@dataclass(frozen=True, slots=True)
class DashboardResult:
    """All dashboard views derived from one set of snapshots at ``now``."""

    now: int
    day: Tuple[int, int]
    activity_range: ActivityRange
    liveness: Derived
    encounters: Derived
    activity: Derived
    stats: Derived
    emotions: Derived
    recent: Derived
    users: Derived
    dropped: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class _Request:
    dataset: str
    snapshot_filter: Optional[SnapshotFilter] = None


class PresenceEngine:
    """Computes dashboard views from store snapshots."""

    def __init__(
        self,
        provider: SnapshotProvider,
        config: Optional[Dict[str, Any]] = None,
        max_workers: int = 4,
    ):
        """Initialize the engine.

        Args:
            provider: Snapshot provider for the document store.
            config: Configuration dictionary (see ``load_config``).
            max_workers: Thread pool size for fetches and derivations.

        Raises:
            ValueError: On an unknown timezone, range or non-positive threshold.
        """
        self.provider = provider
        self.config = _merge(DEFAULT_CONFIG, config or {})
        self.max_workers = max_workers

        self.tz: tzinfo = tzinfo_from_name(self.config['timezone'])
        self.timeout_ms = self._positive_minutes('liveness', 'timeout_minutes')
        self.time_window_ms = self._positive_minutes('encounters', 'time_window_minutes')
        self.distance_threshold_m = float(self.config['encounters']['distance_meters'])
        if self.distance_threshold_m <= 0:
            raise ValueError("encounters.distance_meters must be positive")
        self.default_range = ActivityRange.parse(self.config['activity']['default_range'])
        self.datasets: Dict[str, str] = self.config['datasets']

    @classmethod
    def from_config_file(cls, provider: SnapshotProvider, config_path: str, **kwargs) -> "PresenceEngine":
        return cls(provider, load_config(config_path), **kwargs)

    def _positive_minutes(self, section: str, key: str) -> int:
        minutes = float(self.config[section][key])
        if minutes <= 0:
            raise ValueError(f"{section}.{key} must be positive")
        return int(minutes * MS_IN_MINUTE)

    # ------------------------------------------------------------------
    # Snapshot fetching
    # ------------------------------------------------------------------

    def _activity_requests(self, activity_range: ActivityRange, now: int) -> Dict[str, _Request]:
        lower_bound = now - activity_range.duration_ms
        limit_key = (
            'snapshot_limit_hourly'
            if activity_range is ActivityRange.LAST_24_HOURS
            else 'snapshot_limit_daily'
        )
        limit = self.config['activity'].get(limit_key)

        def created_since(dataset_key: str, with_limit: bool) -> _Request:
            return _Request(
                self.datasets[dataset_key],
                SnapshotFilter(
                    field='createdAt',
                    since_ms=lower_bound,
                    limit=limit if with_limit else None,
                ),
            )

        return {
            POSTS: created_since(POSTS, True),
            EMOTION_POSTS: created_since(EMOTION_POSTS, True),
            NEW_USERS: created_since(PROFILES, False),
            ONLINE: _Request(
                self.datasets[PRESENCES],
                SnapshotFilter(field='lastUpdatedMs', since_ms=lower_bound),
            ),
        }

    def _fetch_all(self, requests: Sequence[_Request]) -> Dict[_Request, Any]:
        """Fetch unique requests concurrently; failures map to SnapshotError."""
        unique = list(dict.fromkeys(requests))

        def fetch(request: _Request) -> Any:
            try:
                return self.provider.fetch(request.dataset, request.snapshot_filter)
            except SnapshotError as e:
                logger.warning("Snapshot fetch failed: %s", e)
                return e
            except Exception as e:  # provider backends raise their own errors
                logger.warning("Snapshot fetch failed for %s: %s", request.dataset, e)
                return SnapshotError(request.dataset, str(e))

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            results = list(pool.map(fetch, unique))
        return dict(zip(unique, results))

    # ------------------------------------------------------------------
    # Derivations
    # ------------------------------------------------------------------

    def derive(
        self,
        now: int,
        activity_range: "ActivityRange | str | None" = None,
    ) -> DashboardResult:
        """Compute every dashboard view at the reference instant ``now``.

        Args:
            now: Reference instant, epoch ms.
            activity_range: Trend range; defaults to the configured one.

        Returns:
            DashboardResult. Views whose snapshots failed are unavailable.
        """
        activity_range = ActivityRange.parse(activity_range or self.default_range)
        day = day_bounds(now, self.tz)

        presences_req = _Request(self.datasets[PRESENCES])
        posts_req = _Request(self.datasets[POSTS])
        emotion_req = _Request(self.datasets[EMOTION_POSTS])
        profiles_req = _Request(self.datasets[PROFILES])
        activity_reqs = self._activity_requests(activity_range, now)

        fetched = self._fetch_all(
            [presences_req, posts_req, emotion_req, profiles_req, *activity_reqs.values()]
        )

        normalized: Dict[_Request, List[Any]] = {}
        dropped: Dict[str, int] = {}

        def normalize_once(request: _Request, normalizer: Callable[..., Any], *args: Any, label: str) -> List[Any]:
            if request not in normalized:
                items, summary = normalize_many(
                    fetched[request], normalizer, *args, label=f"{label} from {request.dataset}"
                )
                normalized[request] = items
                # Filtered and unfiltered fetches of one dataset overlap; report the larger count.
                dropped[request.dataset] = max(dropped.get(request.dataset, 0), summary.rows_dropped)
            return normalized[request]

        def presences(request: _Request) -> List[PresenceRecord]:
            return normalize_once(request, normalize, self.tz, label="presence records")

        def posts(request: _Request, kind: PostKind) -> List[PostRecord]:
            return normalize_once(request, normalize_post, kind, self.tz, label=f"{kind.value} records")

        def profiles(request: _Request) -> List[Profile]:
            return normalize_once(request, normalize_profile, self.tz, label="profile records")

        def inputs_ok(*requests: _Request) -> Optional[str]:
            failed = [fetched[r] for r in requests if isinstance(fetched[r], SnapshotError)]
            if failed:
                return "; ".join(str(e) for e in failed)
            return None

        # Normalize on this thread; the derivation jobs only read the results.
        all_presences: List[PresenceRecord] = []
        all_posts: List[PostRecord] = []
        all_emotion: List[PostRecord] = []
        all_profiles: List[Profile] = []
        activity_events: Dict[str, List[int]] = {}

        if inputs_ok(presences_req) is None:
            all_presences = presences(presences_req)
        if inputs_ok(posts_req) is None:
            all_posts = posts(posts_req, PostKind.POST)
        if inputs_ok(emotion_req) is None:
            all_emotion = posts(emotion_req, PostKind.EMOTION)
        if inputs_ok(profiles_req) is None:
            all_profiles = profiles(profiles_req)
        if inputs_ok(*activity_reqs.values()) is None:
            activity_events = {
                POSTS: [p.created_at for p in posts(activity_reqs[POSTS], PostKind.POST)
                        if p.created_at is not None],
                EMOTION_POSTS: [p.created_at for p in posts(activity_reqs[EMOTION_POSTS], PostKind.EMOTION)
                                if p.created_at is not None],
                NEW_USERS: [p.created_at for p in profiles(activity_reqs[NEW_USERS])
                            if p.created_at is not None],
                ONLINE: [r.timestamp for r in presences(activity_reqs[ONLINE])],
            }

        jobs: Dict[str, Tuple[Sequence[_Request], Callable[[], Any]]] = {}
        jobs['liveness'] = (
            [presences_req],
            lambda: classify_liveness(all_presences, now, self.timeout_ms),
        )
        jobs['encounters'] = (
            [presences_req],
            lambda: match_encounters(all_presences, day, self.time_window_ms, self.distance_threshold_m),
        )
        jobs['activity'] = (
            list(activity_reqs.values()),
            lambda: aggregate_activity(activity_events, activity_range, now, self.tz, CATEGORIES),
        )
        jobs['stats'] = (
            [presences_req, posts_req, emotion_req, profiles_req],
            lambda: rollup_stats(all_presences, all_posts, all_emotion, all_profiles, now, self.tz),
        )
        jobs['emotions'] = ([emotion_req], lambda: emotion_breakdown(all_emotion))
        jobs['users'] = (
            [presences_req, profiles_req],
            lambda: user_directory(all_profiles, classify_liveness(all_presences, now, self.timeout_ms)),
        )
        jobs['recent'] = (
            [posts_req, emotion_req],
            lambda: recent_activity(all_posts, all_emotion, int(self.config['recent_activity']['limit'])),
        )

        results = self._run_jobs(jobs, inputs_ok)

        return DashboardResult(
            now=now,
            day=day,
            activity_range=activity_range,
            dropped=dropped,
            **results,
        )

    def _run_jobs(
        self,
        jobs: Dict[str, Tuple[Sequence[_Request], Callable[[], Any]]],
        inputs_ok: Callable[..., Optional[str]],
    ) -> Dict[str, Derived]:
        results: Dict[str, Derived] = {}
        futures = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for name, (requests, job) in jobs.items():
                reason = inputs_ok(*requests)
                if reason is not None:
                    results[name] = Derived(unavailable_reason=reason)
                else:
                    futures[name] = pool.submit(job)
            for name, future in futures.items():
                results[name] = Derived(value=future.result())
        return results

    # ------------------------------------------------------------------
    # Single-view helpers
    # ------------------------------------------------------------------

    def online_now(self, now: int) -> Derived:
        """Liveness view alone (one presence fetch)."""
        request = _Request(self.datasets[PRESENCES])
        fetched = self._fetch_all([request])[request]
        if isinstance(fetched, SnapshotError):
            return Derived(unavailable_reason=str(fetched))
        records, _ = normalize_records(fetched, self.tz)
        return Derived(value=classify_liveness(records, now, self.timeout_ms))

    def encounters_on(self, now: int) -> Derived:
        """Encounters of the local day containing ``now``."""
        day = day_bounds(now, self.tz)
        request = _Request(
            self.datasets[PRESENCES],
            SnapshotFilter(field='lastUpdatedMs', since_ms=day[0]),
        )
        fetched = self._fetch_all([request])[request]
        if isinstance(fetched, SnapshotError):
            return Derived(unavailable_reason=str(fetched))
        records, _ = normalize_records(fetched, self.tz)
        return Derived(value=match_encounters(records, day, self.time_window_ms, self.distance_threshold_m))
