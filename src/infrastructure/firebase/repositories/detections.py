"""
Firestore repository for detections.

Detections are written by edge devices into nested `detections`
subcollections (e.g. cameras/<id>/detections/<doc>), so reads go through
a collection group query and sorting happens here, newest first.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional, Protocol

from ..client import FirebaseError

logger = logging.getLogger(__name__)


def timestamp_seconds(detection: dict[str, Any]) -> Optional[float]:
    """
    Seconds since the epoch for a detection's timestamp, if it has one.

    Accepts Firestore JSON ({"_seconds": ...} or {"seconds": ...}),
    datetimes and plain numbers.
    """
    ts = detection.get("timestamp")
    if ts is None:
        return None
    if isinstance(ts, datetime):
        return ts.timestamp()
    if isinstance(ts, (int, float)):
        return float(ts)
    if isinstance(ts, dict):
        seconds = ts.get("_seconds", ts.get("seconds"))
        if seconds is not None:
            return float(seconds)
    return None


def sort_detections(detections: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Newest first; detections without a timestamp go last."""
    return sorted(
        detections,
        key=lambda d: (timestamp_seconds(d) is None, -(timestamp_seconds(d) or 0.0)),
    )


def _serialize_timestamp(value: Any) -> Any:
    if isinstance(value, datetime):
        seconds = int(value.timestamp())
        return {"_seconds": seconds, "_nanoseconds": value.microsecond * 1000}
    return value


class DetectionSource(Protocol):
    async def fetch_all(self) -> list[dict[str, Any]]:
        ...


class FirestoreDetectionSource:
    """Reads every document in the `detections` collection group."""

    def __init__(self, app=None) -> None:
        from firebase_admin import firestore

        self._client = firestore.client(app)

    def _fetch(self) -> list[dict[str, Any]]:
        detections = []
        for doc in self._client.collection_group("detections").stream():
            data = {key: _serialize_timestamp(value) for key, value in (doc.to_dict() or {}).items()}
            grandparent = doc.reference.parent.parent
            detections.append({
                "id": doc.id,
                "parentPath": grandparent.path if grandparent is not None else None,
                **data,
            })
        return detections

    async def fetch_all(self) -> list[dict[str, Any]]:
        try:
            return await asyncio.to_thread(self._fetch)
        except Exception as e:
            logger.error("Error fetching detections", extra={"error": str(e)})
            raise FirebaseError(f"Failed to fetch detections: {e}")


class MockDetectionSource:

    def __init__(self, detections: Optional[list[dict[str, Any]]] = None) -> None:
        self.detections = list(detections or [])

    async def fetch_all(self) -> list[dict[str, Any]]:
        return list(self.detections)


class DetectionRepository:

    def __init__(self, source: DetectionSource) -> None:
        self._source = source

    async def list_detections(self) -> list[dict[str, Any]]:
        return sort_detections(await self._source.fetch_all())
