"""Online/offline classification of presence records."""

from typing import Dict, Iterable, List

from .models import (
    MS_IN_MINUTE,
    UNKNOWN_USER,
    DirectoryEntry,
    LivenessResult,
    PresenceRecord,
    Profile,
)

DEFAULT_TIMEOUT_MS = 5 * MS_IN_MINUTE


def is_online(record: PresenceRecord, now: int, timeout: int = DEFAULT_TIMEOUT_MS) -> bool:
    """Decide whether a record counts as online at ``now``.

    An explicitly ended presence (``active=False``) is offline no matter how
    fresh it is. A timestamp ahead of ``now`` (clock skew) counts as zero
    elapsed time.

    Args:
        record: Normalized presence record.
        now: Reference instant, epoch ms.
        timeout: Maximum staleness in ms.

    Returns:
        True if online.
    """
    if not record.active:
        return False
    elapsed = max(0, now - record.timestamp)
    return elapsed <= timeout


def classify_liveness(
    records: Iterable[PresenceRecord],
    now: int,
    timeout: int = DEFAULT_TIMEOUT_MS,
) -> LivenessResult:
    """Split a snapshot into the online set and an offline count.

    Returns:
        LivenessResult with online records most recent first (ties by id).
    """
    online = []
    offline = 0
    for record in records:
        if is_online(record, now, timeout):
            online.append(record)
        else:
            offline += 1
    online.sort(key=lambda r: (-r.timestamp, r.id))
    return LivenessResult(online=online, offline_count=offline)


def user_directory(profiles: Iterable[Profile], liveness: LivenessResult) -> List[DirectoryEntry]:
    """Every known profile, annotated with its online state.

    A profile is online when a presence record with the same id is in the
    online set; its entry then shows the newest such record. Profiles with
    no online presence fall back to their own display data. Online presences
    without a profile are not listed.

    Returns:
        Online entries first, most recently updated first; then offline
        entries by display name (ties by id).
    """
    latest: Dict[str, PresenceRecord] = {}
    # liveness.online is newest first, so the first record per id wins.
    for record in liveness.online:
        latest.setdefault(record.id, record)

    online: List[DirectoryEntry] = []
    offline: List[DirectoryEntry] = []
    for profile in profiles:
        record = latest.get(profile.id)
        if record is not None:
            online.append(DirectoryEntry(
                id=profile.id,
                display_name=record.profile.display_name,
                online=True,
                last_updated=record.timestamp,
                location=record.location,
                avatar_image_base64=record.profile.avatar_image_base64,
                color_value=record.profile.color_value,
            ))
        else:
            offline.append(DirectoryEntry(
                id=profile.id,
                display_name=profile.display_name or UNKNOWN_USER,
                online=False,
                avatar_image_base64=profile.avatar_image_base64,
                color_value=profile.color_value,
            ))

    online.sort(key=lambda e: (-e.last_updated, e.id))
    offline.sort(key=lambda e: (e.display_name, e.id))
    return online + offline
