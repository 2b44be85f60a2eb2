"""Record-snapshot providers.

The engine never talks to the document store directly. A provider hands it a
finite list of raw documents for a dataset, optionally filtered by a
timestamp lower bound, ordered and limited. Providers raise SnapshotError
when a dataset cannot be fetched; the engine turns that into an
"unavailable" derivation instead of an empty one.
"""

import json
import logging
from dataclasses import dataclass
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol

from .normalizer import normalize_timestamp

logger = logging.getLogger(__name__)


class SnapshotError(Exception):
    """A dataset snapshot could not be fetched."""

    def __init__(self, dataset: str, reason: str):
        super().__init__(f"{dataset}: {reason}")
        self.dataset = dataset
        self.reason = reason


@dataclass(frozen=True, slots=True)
class SnapshotFilter:
    """Server-side filter hints.

    Attributes:
        field: Timestamp field used by ``since_ms`` and ``order_by``.
        since_ms: Keep documents whose ``field`` is at or after this instant.
        order_by: Field to sort on (defaults to ``field`` when set).
        descending: Sort direction.
        limit: Maximum number of documents returned.
    """

    field: Optional[str] = None
    since_ms: Optional[int] = None
    order_by: Optional[str] = None
    descending: bool = True
    limit: Optional[int] = None


class SnapshotProvider(Protocol):
    def fetch(self, dataset: str, snapshot_filter: Optional[SnapshotFilter] = None) -> List[Dict[str, Any]]:
        ...


def apply_filter(
    docs: List[Dict[str, Any]],
    snapshot_filter: Optional[SnapshotFilter],
    tz: tzinfo = timezone.utc,
) -> List[Dict[str, Any]]:
    """Apply a SnapshotFilter to in-memory documents.

    Documents whose filter field cannot be resolved to an instant are
    excluded from lower-bound and ordered queries, the way a document store
    skips documents missing the indexed field.
    """
    if snapshot_filter is None:
        return list(docs)

    out = list(docs)
    key_field = snapshot_filter.order_by or snapshot_filter.field

    if snapshot_filter.since_ms is not None and snapshot_filter.field:
        kept = []
        for doc in out:
            ts = normalize_timestamp(doc.get(snapshot_filter.field), tz)
            if ts is not None and ts >= snapshot_filter.since_ms:
                kept.append(doc)
        out = kept

    if key_field:
        keyed = []
        for doc in out:
            ts = normalize_timestamp(doc.get(key_field), tz)
            if ts is not None:
                keyed.append((ts, doc))
        keyed.sort(key=lambda pair: pair[0], reverse=snapshot_filter.descending)
        out = [doc for _, doc in keyed]

    if snapshot_filter.limit is not None:
        out = out[: max(0, snapshot_filter.limit)]
    return out


def _with_ids(payload: Any, dataset: str) -> List[Dict[str, Any]]:
    """Accept a list of documents or an ``{id: document}`` mapping."""
    if isinstance(payload, Mapping):
        docs = []
        for doc_id, doc in payload.items():
            if isinstance(doc, Mapping):
                docs.append({**doc, "id": doc.get("id", doc_id)})
        return docs
    if isinstance(payload, list):
        return [dict(doc) for doc in payload if isinstance(doc, Mapping)]
    raise SnapshotError(dataset, f"unexpected top-level JSON type {type(payload).__name__}")


class InMemorySnapshotProvider:
    """Serves datasets from dictionaries held in memory.

    A dataset mapped to an Exception instance raises it on fetch, which
    makes partial-failure scenarios easy to set up.
    """

    def __init__(self, datasets: Mapping[str, Any], tz: tzinfo = timezone.utc):
        self._datasets = dict(datasets)
        self._tz = tz

    def fetch(self, dataset: str, snapshot_filter: Optional[SnapshotFilter] = None) -> List[Dict[str, Any]]:
        if dataset not in self._datasets:
            raise SnapshotError(dataset, "unknown dataset")
        payload = self._datasets[dataset]
        if isinstance(payload, Exception):
            raise payload
        return apply_filter(_with_ids(payload, dataset), snapshot_filter, self._tz)


class JsonSnapshotProvider:
    """Reads ``<dataset>.json`` exports from a directory."""

    def __init__(self, base_path: Path, tz: tzinfo = timezone.utc):
        self.base_path = Path(base_path)
        self._tz = tz

    def fetch(self, dataset: str, snapshot_filter: Optional[SnapshotFilter] = None) -> List[Dict[str, Any]]:
        file_path = self.base_path / f"{dataset}.json"
        if not file_path.exists():
            raise SnapshotError(dataset, f"file not found: {file_path}")
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SnapshotError(dataset, f"could not read {file_path.name}: {e}") from e

        docs = _with_ids(payload, dataset)
        logger.debug("Loaded %s documents from %s", len(docs), file_path.name)
        return apply_filter(docs, snapshot_filter, self._tz)
