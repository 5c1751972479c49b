"""
Per-chunk analysis pipeline.

Once a chunk is in the bucket, its gs:// URI is annotated by Video
Intelligence, the result is processed, saved next to the local chunk,
and pushed to the uploading device and the dashboard. Alerts are
broadcast to everyone connected.
"""

import logging
from typing import Any, Optional, Protocol

from ..recording.models import ChunkRef, utcnow
from .models import ChunkAnalysis, CrowdThresholds
from .results import process_annotation_results

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    """Where analysis events go; implemented by the Socket.IO relay."""

    async def emit_to_client(self, event: str, data: dict[str, Any], sid: Optional[str]) -> None:
        ...

    async def emit_to_dashboard(self, event: str, data: dict[str, Any]) -> None:
        ...

    async def broadcast(self, event: str, data: dict[str, Any]) -> None:
        ...


class ChunkAnalysisService:
    """
    Runs Video Intelligence on uploaded chunks and publishes the results.

    Failures never propagate to the caller: they are published as
    analysis-error so the device and dashboard can show them.
    """

    def __init__(
        self,
        annotator,
        chunk_store,
        publisher: EventPublisher,
        features: list[str],
        video_context: dict[str, Any],
        thresholds: Optional[CrowdThresholds] = None,
    ) -> None:
        self._annotator = annotator
        self._chunks = chunk_store
        self._publisher = publisher
        self._features = features
        self._video_context = video_context
        self._thresholds = thresholds or CrowdThresholds()

    def _base_event(self, ref: ChunkRef) -> dict[str, Any]:
        return {
            "chunkId": ref.chunk_id,
            "sessionId": ref.session_id,
            "deviceId": ref.device_id,
            "timestamp": utcnow().isoformat(),
        }

    async def analyze(self, ref: ChunkRef, sid: Optional[str] = None) -> Optional[ChunkAnalysis]:
        """
        Analyze one chunk. `sid` is the uploading socket, if any.

        Returns the analysis, or None if it failed.
        """
        gcs_uri = self._chunks.gcs_uri_for(ref)
        logger.info("Starting chunk analysis", extra={"gcs_uri": gcs_uri})

        status_data = {**self._base_event(ref), "status": "analyzing"}
        await self._publisher.emit_to_client("analysis-status", status_data, sid)
        await self._publisher.emit_to_dashboard("analysis-status", status_data)

        try:
            _, response = await self._annotator.annotate_and_wait(
                gcs_uri=gcs_uri,
                features=self._features,
                video_context=self._video_context,
            )
            results = (response or {}).get("annotationResults") or [{}]
            analysis = process_annotation_results(results[0], self._thresholds)
            self._chunks.save_analysis(ref, analysis.to_dict())
        except Exception as e:
            logger.error(
                "Chunk analysis failed",
                extra={"chunk_id": ref.chunk_id, "error": str(e)}
            )
            error_data = {**self._base_event(ref), "status": "error", "error": str(e)}
            await self._publisher.emit_to_client("analysis-error", error_data, sid)
            await self._publisher.emit_to_dashboard("analysis-error", error_data)
            return None

        result_data = {**self._base_event(ref), "status": "completed", **analysis.to_dict()}
        await self._publisher.emit_to_client("analysis-result", result_data, sid)
        await self._publisher.emit_to_dashboard("analysis-result", result_data)

        logger.info(
            "Chunk analysis completed",
            extra={"chunk_id": ref.chunk_id, "summary": analysis.summary}
        )

        if analysis.alerts:
            await self._publisher.broadcast("security-alert", {
                **self._base_event(ref),
                "alerts": [alert.to_dict() for alert in analysis.alerts],
            })
            logger.warning(
                "Security alert sent",
                extra={"chunk_id": ref.chunk_id, "alerts": len(analysis.alerts)}
            )

        return analysis
