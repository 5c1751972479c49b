"""
Turns a raw Video Intelligence annotation result into a ChunkAnalysis.

Input is one entry of annotationResults in REST (camelCase) form.
Anything missing is treated as empty rather than as an error, since
features that found nothing are simply omitted by the API.
"""

from typing import Any, Optional

from .models import ChunkAlert, ChunkAnalysis, CrowdThresholds, LabelResult, PersonResult

MAX_LABELS = 10
MAX_TEXT_DETECTIONS = 5
SUMMARY_LABELS = 3

DANGEROUS_LABELS = ("weapon", "knife", "gun", "fire", "smoke")


def _first_confidence(annotation: dict[str, Any]) -> Optional[float]:
    """Confidence of the first frame, or of the first segment for shot-level labels."""
    for key in ("frames", "segments"):
        entries = annotation.get(key) or []
        if entries:
            return float(entries[0].get("confidence") or 0)
    return None


def process_labels(label_annotations: list[dict[str, Any]]) -> list[LabelResult]:
    labels = []
    for annotation in label_annotations:
        description = (annotation.get("entity") or {}).get("description")
        confidence = _first_confidence(annotation)
        if not description or confidence is None:
            continue

        categories = annotation.get("categoryEntities") or []
        category = categories[0].get("description") if categories else None
        labels.append(LabelResult(
            description=description,
            confidence=confidence,
            category=category or "general",
        ))

    labels.sort(key=lambda label: label.confidence, reverse=True)
    return labels[:MAX_LABELS]


def process_persons(person_annotations: list[dict[str, Any]]) -> list[PersonResult]:
    persons = []
    for annotation in person_annotations:
        # REST puts confidence and attributes on the tracks
        tracks = annotation.get("tracks") or []
        track = tracks[0] if tracks else {}
        persons.append(PersonResult(
            track_id=annotation.get("trackId", track.get("trackId")),
            confidence=annotation.get("confidence", track.get("confidence")),
            attributes=annotation.get("attributes") or track.get("attributes") or [],
        ))
    return persons


def process_objects(object_annotations: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "description": obj["entity"]["description"],
            "confidence": obj.get("confidence"),
            "trackId": obj.get("trackId"),
        }
        for obj in object_annotations
        if (obj.get("entity") or {}).get("description")
    ]


def process_text(text_annotations: list[dict[str, Any]]) -> list[dict[str, Any]]:
    detections = []
    for annotation in text_annotations[:MAX_TEXT_DETECTIONS]:
        confidence = annotation.get("confidence")
        if confidence is None:
            segments = annotation.get("segments") or []
            confidence = segments[0].get("confidence") if segments else None
        detections.append({"text": annotation.get("text"), "confidence": confidence})
    return detections


def summarize(analysis: ChunkAnalysis) -> str:
    parts = []
    if analysis.labels:
        names = ", ".join(label.description for label in analysis.labels[:SUMMARY_LABELS])
        parts.append(f"Objects: {names}")
    if analysis.person_count > 0:
        parts.append(f"People: {analysis.person_count}")
    if analysis.text_detections:
        parts.append(f"Text detected: {len(analysis.text_detections)} items")
    return " | ".join(parts) or "No significant content detected"


def process_annotation_results(
    annotation: Optional[dict[str, Any]],
    thresholds: Optional[CrowdThresholds] = None,
) -> ChunkAnalysis:
    """
    Build the chunk analysis: top labels, people, tracked objects, text,
    crowd density and alerts.
    """
    annotation = annotation or {}
    thresholds = thresholds or CrowdThresholds()

    analysis = ChunkAnalysis(
        labels=process_labels(annotation.get("labelAnnotations") or []),
        persons=process_persons(annotation.get("personDetectionAnnotations") or []),
        object_tracking=process_objects(annotation.get("objectAnnotations") or []),
        text_detections=process_text(annotation.get("textAnnotations") or []),
    )

    count = analysis.person_count
    if count > thresholds.high:
        analysis.crowd_density = "high"
        analysis.crowd_risk_level = "elevated"
        analysis.alerts.append(ChunkAlert(
            type="crowd_density",
            message=f"High crowd density detected: {count} people",
            severity="warning",
        ))
    elif count > thresholds.medium:
        analysis.crowd_density = "medium"

    analysis.summary = summarize(analysis)

    dangerous = [
        label.description
        for label in analysis.labels
        if any(word in label.description.lower() for word in DANGEROUS_LABELS)
    ]
    if dangerous:
        analysis.alerts.append(ChunkAlert(
            type="dangerous_object",
            message=f"Potential dangerous objects detected: {', '.join(dangerous)}",
            severity="critical",
        ))

    return analysis
