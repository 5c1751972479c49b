"""
Unit tests for per-chunk analysis: annotation processing and the
publish pipeline.
"""

import asyncio

import pytest

from src.core.analysis.chunks import ChunkAnalysisService
from src.core.analysis.models import CrowdThresholds, highest_severity
from src.core.analysis.results import process_annotation_results, process_labels
from src.core.recording.models import ChunkRef
from src.infrastructure.google.video_intelligence import MockVideoIntelligenceClient
from src.infrastructure.storage import ChunkStore, MockStorageClient


def label(description, confidence, category=None, key="frames"):
    annotation = {
        "entity": {"description": description},
        key: [{"confidence": confidence}],
    }
    if category:
        annotation["categoryEntities"] = [{"description": category}]
    return annotation


def persons(count):
    return [{"tracks": [{"confidence": 0.9}]} for _ in range(count)]


class FakePublisher:
    def __init__(self):
        self.client_events = []
        self.dashboard_events = []
        self.broadcasts = []

    async def emit_to_client(self, event, data, sid):
        self.client_events.append((event, data, sid))

    async def emit_to_dashboard(self, event, data):
        self.dashboard_events.append((event, data))

    async def broadcast(self, event, data):
        self.broadcasts.append((event, data))


# ---------------------------------------------------------------------------
# Annotation processing
# ---------------------------------------------------------------------------

class TestProcessLabels:

    def test_sorted_by_confidence_and_capped(self):
        annotations = [label(f"thing{i}", i / 20) for i in range(15)]

        labels = process_labels(annotations)

        assert len(labels) == 10
        assert labels[0].description == "thing14"
        assert [l.confidence for l in labels] == sorted((l.confidence for l in labels), reverse=True)

    def test_shot_level_labels_use_segment_confidence(self):
        labels = process_labels([label("stage", 0.7, key="segments")])

        assert labels[0].confidence == 0.7
        assert labels[0].category == "general"

    def test_labels_without_confidence_are_skipped(self):
        assert process_labels([{"entity": {"description": "nothing"}}]) == []


class TestProcessAnnotationResults:

    def test_empty_annotation(self):
        analysis = process_annotation_results({})

        assert analysis.person_count == 0
        assert analysis.crowd_density == "low"
        assert analysis.alerts == []
        assert analysis.summary == "No significant content detected"

    def test_summary_lists_top_three_labels_people_and_text(self):
        annotation = {
            "labelAnnotations": [label("a", 0.9), label("b", 0.8), label("c", 0.7), label("d", 0.6)],
            "personDetectionAnnotations": persons(2),
            "textAnnotations": [{"text": "EXIT", "segments": [{"confidence": 0.95}]}],
        }

        analysis = process_annotation_results(annotation)

        assert analysis.summary == "Objects: a, b, c | People: 2 | Text detected: 1 items"
        assert analysis.text_detections == [{"text": "EXIT", "confidence": 0.95}]

    @pytest.mark.parametrize("count,density", [(20, "low"), (21, "medium"), (50, "medium"), (51, "high")])
    def test_crowd_density_thresholds(self, count, density):
        analysis = process_annotation_results({"personDetectionAnnotations": persons(count)})

        assert analysis.crowd_density == density

    def test_high_density_raises_warning(self):
        analysis = process_annotation_results({"personDetectionAnnotations": persons(51)})

        assert analysis.crowd_risk_level == "elevated"
        assert analysis.alerts[0].type == "crowd_density"
        assert analysis.alerts[0].severity == "warning"
        assert "51 people" in analysis.alerts[0].message

    def test_custom_thresholds(self):
        analysis = process_annotation_results(
            {"personDetectionAnnotations": persons(3)},
            CrowdThresholds(high=2, medium=1),
        )

        assert analysis.crowd_density == "high"

    def test_dangerous_labels_raise_critical_alert(self):
        annotation = {"labelAnnotations": [label("Kitchen knife", 0.8), label("Smoke", 0.6), label("tree", 0.9)]}

        analysis = process_annotation_results(annotation)

        assert len(analysis.alerts) == 1
        alert = analysis.alerts[0]
        assert alert.severity == "critical"
        assert alert.message == "Potential dangerous objects detected: Kitchen knife, Smoke"

    def test_thresholds_must_be_ordered(self):
        with pytest.raises(ValueError):
            CrowdThresholds(high=10, medium=20)


class TestHighestSeverity:

    def test_picks_worst(self):
        assert highest_severity(["low", "critical", "medium"]) == "critical"

    def test_empty_and_unknown_are_low(self):
        assert highest_severity([]) == "low"
        assert highest_severity(["bogus"]) == "low"


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

@pytest.fixture
def ref():
    return ChunkRef(device_id="device-1", session_id="session-1", chunk_id="chunk_00001")


def make_service(tmp_path, annotator, publisher):
    store = ChunkStore(storage=MockStorageClient("bucket"), uploads_dir=tmp_path, max_size_bytes=1024)
    service = ChunkAnalysisService(
        annotator=annotator,
        chunk_store=store,
        publisher=publisher,
        features=["LABEL_DETECTION", "PERSON_DETECTION"],
        video_context={},
    )
    return service, store


class TestChunkAnalysisService:

    def test_successful_analysis_is_saved_and_published(self, tmp_path, ref):
        annotator = MockVideoIntelligenceClient()
        publisher = FakePublisher()
        service, store = make_service(tmp_path, annotator, publisher)

        analysis = asyncio.run(service.analyze(ref, sid="sid-1"))

        assert analysis.person_count == 2
        assert annotator.requests[0]["gcsUri"] == "gs://bucket/streams/device-1/session-1/chunk_00001.mp4"
        assert store.load_analysis(ref)["summary"] == analysis.summary

        events = [event for event, _, _ in publisher.client_events]
        assert events == ["analysis-status", "analysis-result"]
        assert publisher.client_events[0][2] == "sid-1"
        assert [event for event, _ in publisher.dashboard_events] == ["analysis-status", "analysis-result"]
        assert publisher.dashboard_events[1][1]["status"] == "completed"
        assert publisher.broadcasts == []

    def test_status_reaches_dashboard_without_uploading_socket(self, tmp_path, ref):
        publisher = FakePublisher()
        service, _ = make_service(tmp_path, MockVideoIntelligenceClient(), publisher)

        asyncio.run(service.analyze(ref))

        event, data = publisher.dashboard_events[0]
        assert event == "analysis-status"
        assert data["status"] == "analyzing"
        assert data["chunkId"] == "chunk_00001"

    def test_alerts_are_broadcast(self, tmp_path, ref):
        annotator = MockVideoIntelligenceClient({"labelAnnotations": [label("gun", 0.9)]})
        publisher = FakePublisher()
        service, _ = make_service(tmp_path, annotator, publisher)

        asyncio.run(service.analyze(ref))

        event, data = publisher.broadcasts[0]
        assert event == "security-alert"
        assert data["chunkId"] == "chunk_00001"
        assert data["alerts"][0]["type"] == "dangerous_object"

    def test_failure_is_published_not_raised(self, tmp_path, ref):
        annotator = MockVideoIntelligenceClient()
        annotator.fail_operations = True
        publisher = FakePublisher()
        service, store = make_service(tmp_path, annotator, publisher)

        assert asyncio.run(service.analyze(ref, sid="sid-1")) is None

        assert publisher.client_events[-1][0] == "analysis-error"
        assert "Mock annotation failure" in publisher.client_events[-1][1]["error"]
        assert [event for event, _ in publisher.dashboard_events] == ["analysis-status", "analysis-error"]
        assert store.load_analysis(ref) is None
