"""
AI security heuristics: crowd density, bottleneck risk, anomalies,
threats and crowd sentiment.

Detection itself is done by Vision and Video Intelligence; what happens
here is simple weighted scoring over their annotations. The scoring
functions are pure so they can be tested without any client.
SecurityAnalysisService wires them to the clients, stores every result
under analysis/<type> and raises alerts under alerts/<kind>.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from ..recording.models import utcnow
from .models import highest_severity

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Crowd density
# ---------------------------------------------------------------------------

ZONE_LOW = 0.33
ZONE_HIGH = 0.66


def _centroid(person: dict[str, Any]) -> Optional[tuple[float, float]]:
    vertices = (person.get("boundingPoly") or {}).get("normalizedVertices") or []
    if not vertices:
        return None
    x = sum(v.get("x", 0.0) for v in vertices) / len(vertices)
    y = sum(v.get("y", 0.0) for v in vertices) / len(vertices)
    return x, y


def crowd_zones(people: list[dict[str, Any]]) -> dict[str, int]:
    """Count people per image zone: the four corners and everything else."""
    zones = {"topLeft": 0, "topRight": 0, "bottomLeft": 0, "bottomRight": 0, "center": 0}
    for person in people:
        centre = _centroid(person)
        if centre is None:
            continue
        x, y = centre
        if x < ZONE_LOW and y < ZONE_LOW:
            zones["topLeft"] += 1
        elif x > ZONE_HIGH and y < ZONE_LOW:
            zones["topRight"] += 1
        elif x < ZONE_LOW and y > ZONE_HIGH:
            zones["bottomLeft"] += 1
        elif x > ZONE_HIGH and y > ZONE_HIGH:
            zones["bottomRight"] += 1
        else:
            zones["center"] += 1
    return zones


def congestion_level(people_count: int) -> str:
    if people_count > 20:
        return "high"
    if people_count > 10:
        return "medium"
    return "low"


def flow_metrics(people: list[dict[str, Any]], metadata: dict[str, Any]) -> dict[str, Any]:
    return {
        "averageCrowdSpeed": metadata.get("estimatedSpeed", "unknown"),
        "flowDirection": metadata.get("flowDirection", "unknown"),
        "congestionLevel": congestion_level(len(people)),
    }


def crowd_density(
    objects_response: dict[str, Any],
    metadata: dict[str, Any],
    now: datetime,
) -> dict[str, Any]:
    """Crowd density from Vision object localization (objects named "Person")."""
    objects = objects_response.get("localizedObjectAnnotations") or []
    people = [obj for obj in objects if obj.get("name") == "Person"]
    confidence = sum(p.get("score", 0.0) for p in people) / len(people) if people else 0.0

    return {
        "timestamp": now.isoformat(),
        "density": len(people),
        "peopleCount": len(people),
        "crowdZones": crowd_zones(people),
        "flowMetrics": flow_metrics(people, metadata),
        "metadata": metadata,
        "boundingBoxes": [p.get("boundingPoly") for p in people],
        "confidence": confidence,
    }


# ---------------------------------------------------------------------------
# Bottleneck prediction
# ---------------------------------------------------------------------------

BOTTLENECK_LOOKAHEAD = timedelta(minutes=15)


def bottleneck_risk(density: float, hour: int, event_type: str) -> dict[str, Any]:
    """Weighted score from density, time of day and event type."""
    score = 0
    actions: list[str] = []
    zones: list[str] = []

    if density > 30:
        score += 40
        actions.append("Deploy crowd control personnel")
        zones.append("high-density-areas")
    elif density > 20:
        score += 20

    # lunch hours
    if 12 <= hour <= 14:
        score += 15
        actions.append("Open additional service points")

    if event_type in ("concert", "sports"):
        score += 25
        actions.append("Prepare emergency exits")
        zones.extend(["main-entrance", "stage-area"])

    if score >= 60:
        level = "high"
    elif score >= 30:
        level = "medium"
    else:
        level = "low"

    return {"level": level, "score": score, "actions": actions, "zones": zones}


# ---------------------------------------------------------------------------
# Anomaly detection
# ---------------------------------------------------------------------------

RAPID_MOVEMENT_SPEED = 0.8
ERRATIC_STEP = 0.3
SUSPICIOUS_OBJECTS = ("weapon", "knife", "gun", "smoke", "fire")


def track_movement(timestamped_objects: list[dict[str, Any]]) -> tuple[float, bool]:
    """
    Average speed and erratic flag for one person track.

    Speed is the summed displacement of the box's top-left corner divided
    by the number of observations. A single step larger than ERRATIC_STEP
    marks the track erratic.
    """
    total = 0.0
    erratic = False
    for prev, curr in zip(timestamped_objects, timestamped_objects[1:]):
        prev_box = prev.get("normalizedBoundingBox")
        curr_box = curr.get("normalizedBoundingBox")
        if not prev_box or not curr_box:
            continue
        step = math.hypot(
            curr_box.get("left", 0.0) - prev_box.get("left", 0.0),
            curr_box.get("top", 0.0) - prev_box.get("top", 0.0),
        )
        total += step
        if step > ERRATIC_STEP:
            erratic = True

    if not timestamped_objects:
        return 0.0, False
    return total / len(timestamped_objects), erratic


def person_anomalies(person_annotations: list[dict[str, Any]]) -> list[dict[str, Any]]:
    anomalies = []
    for detection in person_annotations:
        for track in detection.get("tracks") or []:
            observations = track.get("timestampedObjects") or []
            if len(observations) < 2:
                continue

            speed, erratic = track_movement(observations)
            confidence = track.get("confidence") or 0.5
            if speed > RAPID_MOVEMENT_SPEED:
                anomalies.append({
                    "type": "RAPID_MOVEMENT",
                    "severity": "medium",
                    "description": "Detected rapid person movement, possible panic or emergency",
                    "trackId": track.get("trackId"),
                    "confidence": confidence,
                })
            if erratic:
                anomalies.append({
                    "type": "ERRATIC_MOVEMENT",
                    "severity": "high",
                    "description": "Detected erratic movement pattern, possible distress",
                    "trackId": track.get("trackId"),
                    "confidence": confidence,
                })
    return anomalies


def object_anomalies(object_annotations: list[dict[str, Any]]) -> list[dict[str, Any]]:
    anomalies = []
    for obj in object_annotations:
        description = (obj.get("entity") or {}).get("description")
        if not description:
            continue
        if any(word in description.lower() for word in SUSPICIOUS_OBJECTS):
            anomalies.append({
                "type": "SUSPICIOUS_OBJECT",
                "severity": "critical",
                "description": f"Detected suspicious object: {description}",
                "confidence": obj.get("confidence") or 0.5,
                "object": description,
            })
    return anomalies


# ---------------------------------------------------------------------------
# Threat recognition
# ---------------------------------------------------------------------------

WEAPON_KEYWORDS = ("gun", "knife", "weapon", "pistol", "rifle")
HAZARD_KEYWORDS = ("fire", "smoke", "explosion", "flame")
THREAT_WORDS = ("bomb", "attack", "kill", "terrorist", "explosion")


def image_threats(
    objects_response: dict[str, Any],
    labels_response: dict[str, Any],
    text_response: dict[str, Any],
) -> list[dict[str, Any]]:
    threats = []

    for obj in objects_response.get("localizedObjectAnnotations") or []:
        name = obj.get("name") or ""
        if any(keyword in name.lower() for keyword in WEAPON_KEYWORDS):
            threats.append({
                "type": "WEAPON_DETECTED",
                "severity": "critical",
                "description": f"Potential weapon detected: {name}",
                "confidence": obj.get("score"),
                "location": obj.get("boundingPoly"),
            })

    for label in labels_response.get("labelAnnotations") or []:
        description = label.get("description") or ""
        if any(keyword in description.lower() for keyword in HAZARD_KEYWORDS):
            threats.append({
                "type": "FIRE_SMOKE_DETECTED",
                "severity": "high",
                "description": f"Fire/smoke indicator detected: {description}",
                "confidence": label.get("score"),
            })

    # the first text annotation holds the full OCR text
    texts = text_response.get("textAnnotations") or []
    if texts:
        detected = (texts[0].get("description") or "").lower()
        for word in THREAT_WORDS:
            if word in detected:
                threats.append({
                    "type": "THREATENING_TEXT",
                    "severity": "high",
                    "description": f"Threatening text detected containing: {word}",
                    "confidence": 0.8,
                    "text": detected,
                })

    return threats


# ---------------------------------------------------------------------------
# Crowd sentiment
# ---------------------------------------------------------------------------

LIKELY = ("LIKELY", "VERY_LIKELY")


def crowd_sentiment(faces_response: dict[str, Any], metadata: dict[str, Any], now: datetime) -> dict[str, Any]:
    faces = faces_response.get("faceAnnotations") or []
    if not faces:
        return {
            "timestamp": now.isoformat(),
            "faceCount": 0,
            "averageSentiment": "neutral",
            "emotions": {},
            "metadata": metadata,
        }

    emotions = {"joy": 0, "sorrow": 0, "anger": 0, "surprise": 0, "fear": 0, "neutral": 0}
    for face in faces:
        for emotion in ("joy", "sorrow", "anger", "surprise"):
            if face.get(f"{emotion}Likelihood") in LIKELY:
                emotions[emotion] += 1

        # fear is a stress proxy: plainly LIKELY anger or sorrow
        if face.get("angerLikelihood") == "LIKELY" or face.get("sorrowLikelihood") == "LIKELY":
            emotions["fear"] += 1
        else:
            emotions["neutral"] += 1

    total = len(faces)
    scores = {
        "positive": emotions["joy"] / total,
        "negative": (emotions["sorrow"] + emotions["anger"] + emotions["fear"]) / total,
        "neutral": emotions["neutral"] / total,
    }

    if scores["positive"] > 0.4:
        sentiment = "positive"
    elif scores["negative"] > 0.3:
        sentiment = "negative"
    else:
        sentiment = "neutral"

    if scores["negative"] > 0.5:
        stress = "high"
    elif scores["negative"] > 0.3:
        stress = "medium"
    else:
        stress = "low"

    return {
        "timestamp": now.isoformat(),
        "faceCount": total,
        "averageSentiment": sentiment,
        "sentimentScores": scores,
        "emotions": emotions,
        "stressLevel": stress,
        "metadata": metadata,
    }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

ANOMALY_FEATURES = ["OBJECT_TRACKING", "PERSON_DETECTION", "LOGO_RECOGNITION", "TEXT_DETECTION"]
ANOMALY_VIDEO_CONTEXT = {
    "personDetectionConfig": {"includeBoundingBoxes": True, "includeAttributes": True},
}

ThreatHook = Callable[[dict[str, Any]], Awaitable[None]]


class SecurityAnalysisService:
    """
    Runs the heuristics against the Google clients and records results.

    on_critical_threat is awaited after a critical threat alert; the
    application uses it to open an emergency incident.
    """

    def __init__(
        self,
        vision,
        annotator,
        alerts,
        on_critical_threat: Optional[ThreatHook] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._vision = vision
        self._annotator = annotator
        self._alerts = alerts
        self._on_critical_threat = on_critical_threat
        self._clock = clock

    async def analyze_crowd_density(self, image: bytes, metadata: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        objects = await self._vision.object_localization(image)
        analysis = crowd_density(objects, metadata or {}, self._clock())
        await self._alerts.store_analysis("crowd_density", analysis)
        return analysis

    async def predict_bottlenecks(
        self,
        current_conditions: dict[str, Any],
        historical_data: Optional[list[dict[str, Any]]] = None,
    ) -> dict[str, Any]:
        """
        Bottleneck risk for the next 15 minutes.

        historical_data is accepted for API compatibility; the heuristic
        only looks at current conditions.
        """
        now = self._clock()
        local_hour = now.astimezone().hour
        density = current_conditions.get("density") or 0
        try:
            density = float(density)
        except (TypeError, ValueError):
            raise ValueError(f"density must be a number, got {density!r}")

        risk = bottleneck_risk(
            density,
            local_hour,
            current_conditions.get("eventType") or "general",
        )

        prediction = {
            "timestamp": now.isoformat(),
            "predictedBottleneckTime": (now + BOTTLENECK_LOOKAHEAD).isoformat(),
            "riskLevel": risk["level"],
            "riskScore": risk["score"],
            "suggestedActions": risk["actions"],
            "affectedZones": risk["zones"],
        }
        await self._alerts.store_analysis("bottleneck_prediction", prediction)

        if risk["level"] == "high":
            await self._alerts.push_alert("bottleneck", {
                "type": "BOTTLENECK_WARNING",
                "severity": "HIGH",
                "timestamp": now.isoformat(),
                "prediction": prediction,
                "message": f"High risk of bottleneck predicted in {', '.join(risk['zones'])}",
                "suggestedActions": risk["actions"],
            })

        return prediction

    async def detect_anomalies(self, video: bytes, metadata: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        _, response = await self._annotator.annotate_and_wait(
            input_content=video,
            features=ANOMALY_FEATURES,
            video_context=ANOMALY_VIDEO_CONTEXT,
        )
        results = (response or {}).get("annotationResults") or [{}]
        annotation = results[0]

        anomalies = person_anomalies(annotation.get("personDetectionAnnotations") or [])
        anomalies.extend(object_anomalies(annotation.get("objectAnnotations") or []))

        now = self._clock()
        analysis = {
            "timestamp": now.isoformat(),
            "anomalies": anomalies,
            "metadata": metadata or {},
            "severity": highest_severity(a["severity"] for a in anomalies),
        }
        await self._alerts.store_analysis("anomaly_detection", analysis)

        if analysis["severity"] == "high":
            await self._alerts.push_alert("anomalies", {
                "type": "ANOMALY_DETECTED",
                "severity": analysis["severity"].upper(),
                "timestamp": now.isoformat(),
                "anomalies": anomalies,
                "message": f"{len(anomalies)} anomalies detected",
                "requiresImmediateAction": False,
            })

        return analysis

    async def recognize_threats(
        self,
        media: bytes,
        media_type: str = "image",
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        if media_type not in ("image", "video"):
            raise ValueError("mediaType must be 'image' or 'video'")

        threats: list[dict[str, Any]] = []
        if media_type == "image":
            threats = image_threats(
                await self._vision.object_localization(media),
                await self._vision.label_detection(media),
                await self._vision.text_detection(media),
            )

        now = self._clock()
        analysis = {
            "timestamp": now.isoformat(),
            "mediaType": media_type,
            "threats": threats,
            "metadata": metadata or {},
            "threatLevel": highest_severity(t["severity"] for t in threats),
        }
        await self._alerts.store_analysis("threat_recognition", analysis)

        if analysis["threatLevel"] == "critical":
            await self._alerts.push_alert("threats", {
                "type": "THREAT_DETECTED",
                "severity": "CRITICAL",
                "timestamp": now.isoformat(),
                "threats": threats,
                "message": f"{len(threats)} threats detected - IMMEDIATE ACTION REQUIRED",
                "emergencyResponse": True,
            })
            if self._on_critical_threat is not None:
                await self._on_critical_threat(analysis)

        return analysis

    async def analyze_sentiment(self, image: bytes, metadata: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        faces = await self._vision.face_detection(image)
        now = self._clock()
        analysis = crowd_sentiment(faces, metadata or {}, now)

        # no faces means nothing worth recording
        if analysis["faceCount"] == 0:
            return analysis

        await self._alerts.store_analysis("sentiment_analysis", analysis)

        if analysis["stressLevel"] == "high":
            await self._alerts.push_alert("stress", {
                "type": "HIGH_STRESS_DETECTED",
                "severity": "MEDIUM",
                "timestamp": now.isoformat(),
                "analysis": analysis,
                "message": f"High stress levels detected in crowd - {analysis['faceCount']} faces analyzed",
                "suggestedActions": [
                    "Deploy calming personnel",
                    "Monitor for escalation",
                    "Prepare for crowd management",
                ],
            })

        return analysis
