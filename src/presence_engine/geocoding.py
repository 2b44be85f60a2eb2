"""Reverse geocoding (lat/lng -> place name) with a time-bounded cache.

This is a collaborator of the derivation engine, not part of it: nothing in
the core waits on a lookup. Callers either ``peek`` at what is already cached
or call ``lookup`` from presentation code.

Cache semantics:
    - keys are coordinates rounded to ``precision`` decimals (3 ~ 110 m)
    - one map, one lock; each key is absent, in flight, or resolved
    - a failed lookup is stored as a negative entry (place None) so it is not
      retried until the entry expires
    - the clock is injected, so expiry is testable without sleeping

Nominatim is rate-limited (1 request/second) and requires a descriptive
User-Agent.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import Nominatim

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60.0
DEFAULT_PRECISION = 3

PlaceLookup = Callable[[float, float], Optional[str]]

_WARD_RE = re.compile(r"(.+?区)")
_LOCALITY_RE = re.compile(r"(.+?[市区町村])")


def coord_key(lat: float, lng: float, precision: int = DEFAULT_PRECISION) -> str:
    """Stable cache key: "lat,lng" with fixed decimals."""
    return f"{round(lat, precision):.{precision}f},{round(lng, precision):.{precision}f}"


def extract_place_name(address: Optional[Mapping[str, Any]], display_name: Optional[str] = None) -> Optional[str]:
    """Pick the most useful locality from a Nominatim address block.

    Preference: ward > city > town > village, then a ward-like prefix of a
    free-form address, then a municipality-like prefix of the display name.
    """
    if address:
        for key in ("ward", "city", "town", "village"):
            value = address.get(key)
            if value:
                return str(value)
        match = _WARD_RE.match(str(address.get("address", "") or ""))
        if match:
            return match.group(1)
    if display_name:
        match = _LOCALITY_RE.match(display_name)
        if match:
            return match.group(1)
    return None


def format_place(place: Optional[str], lat: float, lng: float) -> str:
    """Place name for display, falling back to raw coordinates."""
    return place if place else f"{lat:.5f}, {lng:.5f}"


class EntryState(Enum):
    IN_FLIGHT = "in_flight"
    RESOLVED = "resolved"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    state: EntryState
    place: Optional[str] = None
    stored_at: float = 0.0


class PlaceCache:
    """Thread-safe TTL cache with per-key in-flight tracking."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def _fresh(self, entry: Optional[CacheEntry], now: float) -> bool:
        return (
            entry is not None
            and entry.state is EntryState.RESOLVED
            and now - entry.stored_at < self.ttl_seconds
        )

    def get(self, key: str) -> Optional[CacheEntry]:
        """Resolved, unexpired entry for ``key`` (negative entries included)."""
        with self._lock:
            entry = self._entries.get(key)
            return entry if self._fresh(entry, self._clock()) else None

    def try_begin(self, key: str) -> bool:
        """Atomically claim ``key`` for a lookup.

        Returns:
            True if the caller now owns the lookup; False if a fresh result
            exists or another caller is already resolving it.
        """
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None and (entry.state is EntryState.IN_FLIGHT or self._fresh(entry, now)):
                return False
            self._entries[key] = CacheEntry(state=EntryState.IN_FLIGHT, stored_at=now)
            return True

    def complete(self, key: str, place: Optional[str]) -> None:
        """Store a result (None = negative entry) and clear the in-flight mark."""
        with self._lock:
            self._entries[key] = CacheEntry(
                state=EntryState.RESOLVED, place=place, stored_at=self._clock()
            )

    def in_flight(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.state is EntryState.IN_FLIGHT

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ReverseGeocoder:
    """Cached front end for a place lookup function."""

    def __init__(
        self,
        lookup: PlaceLookup,
        cache: Optional[PlaceCache] = None,
        precision: int = DEFAULT_PRECISION,
    ):
        self._lookup = lookup
        self.cache = cache if cache is not None else PlaceCache()
        self.precision = precision

    def peek(self, lat: float, lng: float) -> Optional[str]:
        """Cached place name, never triggering a request."""
        entry = self.cache.get(coord_key(lat, lng, self.precision))
        return entry.place if entry is not None else None

    def lookup(self, lat: float, lng: float) -> Optional[str]:
        """Place name for a coordinate, or None if unknown.

        Returns None immediately when another caller is already resolving
        the same key. Lookup failures are cached as negative entries.
        """
        key = coord_key(lat, lng, self.precision)
        entry = self.cache.get(key)
        if entry is not None:
            return entry.place
        if not self.cache.try_begin(key):
            return self.peek(lat, lng)

        place = None
        try:
            place = self._lookup(lat, lng)
        except Exception as e:  # any backend failure becomes a negative entry
            logger.warning("Reverse geocoding failed for %s: %s", key, e)
        finally:
            self.cache.complete(key, place)
        return place

    def lookup_many(self, coords: Iterable[Tuple[float, float]]) -> Dict[str, Optional[str]]:
        """Resolve several coordinates sequentially, keyed by cache key."""
        results: Dict[str, Optional[str]] = {}
        for lat, lng in coords:
            results[coord_key(lat, lng, self.precision)] = self.lookup(lat, lng)
        return results


class NominatimPlaceLookup:
    """Place lookup backed by geopy's Nominatim client."""

    def __init__(
        self,
        user_agent: str,
        language: str = "ja",
        timeout_seconds: float = 10.0,
        min_interval_seconds: float = 1.0,
        geocoder: Optional[Nominatim] = None,
    ):
        self.language = language
        self._geocoder = geocoder or Nominatim(user_agent=user_agent, timeout=timeout_seconds)
        self._reverse = RateLimiter(
            self._geocoder.reverse,
            min_delay_seconds=min_interval_seconds,
            max_retries=0,
            swallow_exceptions=False,
        )

    def __call__(self, lat: float, lng: float) -> Optional[str]:
        location = self._reverse((lat, lng), language=self.language, exactly_one=True)
        if location is None:
            return None
        raw = location.raw or {}
        return extract_place_name(raw.get("address"), raw.get("display_name"))
