"""
Unit tests for the Google REST clients (Video Intelligence, Maps).

HTTP is served by httpx.MockTransport handlers, so requests can be
inspected and no network is needed.
"""

import asyncio
import itertools
import json

import httpx
import pytest

from src.infrastructure.google.auth import StaticTokenProvider
from src.infrastructure.google.maps import MapsClient, strip_html
from src.infrastructure.google.video_intelligence import (
    AnnotationFailedError,
    AnnotationTimeoutError,
    MockVideoIntelligenceClient,
    VideoIntelligenceClient,
    VideoIntelligenceError,
    first_annotation_result,
    validate_gcs_uri,
)
from src.infrastructure.google.vision import MockVisionClient

OPERATION = "projects/p/locations/asia-east1/operations/42"


async def no_sleep(delay):
    pass


def make_vi_client(handler, **kwargs):
    return VideoIntelligenceClient(
        token_provider=StaticTokenProvider("token-123"),
        location_id="asia-east1",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        sleep=no_sleep,
        **kwargs,
    )


class OperationServer:
    """Answers videos:annotate and reports the operation done after `polls_until_done` polls."""

    def __init__(self, polls_until_done=1, error=None):
        self.polls_until_done = polls_until_done
        self.error = error
        self.requests = []
        self.polls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            return httpx.Response(200, json={"name": OPERATION})

        self.polls += 1
        if self.polls < self.polls_until_done:
            return httpx.Response(200, json={"name": OPERATION, "done": False})
        if self.error:
            return httpx.Response(200, json={"name": OPERATION, "done": True, "error": self.error})
        return httpx.Response(200, json={
            "name": OPERATION,
            "done": True,
            "response": {"annotationResults": [{"personDetectionAnnotations": []}]},
        })


# ---------------------------------------------------------------------------
# Video Intelligence
# ---------------------------------------------------------------------------

class TestValidateGcsUri:

    def test_accepts_gs_uri(self):
        assert validate_gcs_uri("gs://bucket/video.mp4") == "gs://bucket/video.mp4"

    @pytest.mark.parametrize("uri, message", [
        (None, "required"),
        ("", "required"),
        ("https://storage.googleapis.com/bucket/video.mp4", "gs://"),
    ])
    def test_rejects_missing_or_non_gcs(self, uri, message):
        with pytest.raises(ValueError, match=message):
            validate_gcs_uri(uri)


class TestVideoIntelligenceClient:

    def test_start_annotation_request_body(self):
        server = OperationServer()
        client = make_vi_client(server)

        operation = asyncio.run(client.start_annotation(
            gcs_uri="gs://bucket/a.mp4",
            features=["LABEL_DETECTION"],
        ))

        assert operation == {"name": OPERATION}
        request = server.requests[0]
        assert request.url.path == "/v1/videos:annotate"
        assert request.headers["Authorization"] == "Bearer token-123"
        body = json.loads(request.content)
        assert body["inputUri"] == "gs://bucket/a.mp4"
        assert body["features"] == ["LABEL_DETECTION"]
        assert body["locationId"] == "asia-east1"

    def test_inline_content_is_base64(self):
        server = OperationServer()
        client = make_vi_client(server)

        asyncio.run(client.start_annotation(input_content=b"video"))

        body = json.loads(server.requests[0].content)
        assert body["inputContent"] == "dmlkZW8="
        assert "inputUri" not in body

    def test_requires_exactly_one_input(self):
        client = make_vi_client(OperationServer())
        with pytest.raises(ValueError):
            asyncio.run(client.start_annotation())
        with pytest.raises(ValueError):
            asyncio.run(client.start_annotation(gcs_uri="gs://b/a.mp4", input_content=b"x"))

    def test_api_error_is_wrapped(self):
        def handler(request):
            return httpx.Response(403, json={"error": {"message": "Permission denied"}})

        client = make_vi_client(handler)

        with pytest.raises(VideoIntelligenceError, match="Permission denied"):
            asyncio.run(client.start_annotation(gcs_uri="gs://b/a.mp4"))

    def test_annotate_and_wait_polls_until_done(self):
        server = OperationServer(polls_until_done=3)
        client = make_vi_client(server)

        name, response = asyncio.run(client.annotate_and_wait(gcs_uri="gs://b/a.mp4"))

        assert name == OPERATION
        assert server.polls == 3
        assert first_annotation_result(response) == {"personDetectionAnnotations": []}
        assert server.requests[1].url.path == f"/v1/{OPERATION}"

    def test_failed_operation_raises(self):
        client = make_vi_client(OperationServer(error={"code": 3, "message": "Bad video"}))

        with pytest.raises(AnnotationFailedError, match="Bad video"):
            asyncio.run(client.poll_operation(OPERATION))

    def test_poll_times_out(self):
        clock = itertools.count(start=0, step=100)
        client = make_vi_client(
            OperationServer(polls_until_done=1000),
            max_wait_seconds=300,
            clock=lambda: next(clock),
        )

        with pytest.raises(AnnotationTimeoutError, match="300 seconds"):
            asyncio.run(client.poll_operation(OPERATION))


class TestMockVideoIntelligence:

    def test_operations_complete_immediately(self):
        client = MockVideoIntelligenceClient({"labelAnnotations": []})

        async def scenario():
            operation = await client.start_annotation(gcs_uri="gs://b/a.mp4")
            return await client.get_operation(operation["name"])

        operation = asyncio.run(scenario())

        assert operation["done"] is True
        assert operation["response"]["annotationResults"] == [{"labelAnnotations": []}]

    def test_failure_mode(self):
        client = MockVideoIntelligenceClient()
        client.fail_operations = True

        with pytest.raises(AnnotationFailedError):
            asyncio.run(client.annotate_and_wait(gcs_uri="gs://b/a.mp4"))

    def test_unknown_operation(self):
        with pytest.raises(VideoIntelligenceError):
            asyncio.run(MockVideoIntelligenceClient().get_operation("nope"))


class TestMockVision:

    def test_overrides_and_records_calls(self):
        vision = MockVisionClient({"text_detection": {"textAnnotations": [{"description": "EXIT"}]}})

        result = asyncio.run(vision.text_detection(b"image"))

        assert result["textAnnotations"][0]["description"] == "EXIT"
        assert vision.calls == ["text_detection"]

    def test_empty_image_is_rejected(self):
        with pytest.raises(ValueError):
            asyncio.run(MockVisionClient().face_detection(b""))


# ---------------------------------------------------------------------------
# Maps
# ---------------------------------------------------------------------------

ORIGIN = {"lat": 40.7128, "lng": -74.0060}
DESTINATION = {"lat": 40.7130, "lng": -74.0058}


def make_maps(handler, api_key="maps-key"):
    return MapsClient(
        api_key=api_key,
        fallback_minutes=5,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def distance_matrix(seconds, status="OK"):
    return {
        "status": "OK",
        "rows": [{"elements": [{
            "status": status,
            "duration": {"value": seconds, "text": f"{seconds // 60} mins"},
            "distance": {"text": "0.4 km"},
        }]}],
    }


class TestMapsClient:

    def test_distance_rounds_up_to_minutes(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=distance_matrix(301))

        estimate = asyncio.run(make_maps(handler).distance(ORIGIN, DESTINATION))

        assert estimate.duration_minutes == 6
        assert estimate.distance == "0.4 km"
        assert not estimate.fallback
        params = requests[0].url.params
        assert params["origins"] == "40.7128,-74.006"
        assert params["mode"] == "walking"
        assert params["units"] == "metric"

    def test_distance_falls_back_on_bad_element(self):
        def handler(request):
            return httpx.Response(200, json=distance_matrix(60, status="ZERO_RESULTS"))

        estimate = asyncio.run(make_maps(handler).distance(ORIGIN, DESTINATION))

        assert estimate.fallback
        assert estimate.duration_minutes == 5
        assert estimate.duration_text == "5 mins"

    def test_distance_falls_back_on_http_error(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        assert asyncio.run(make_maps(handler).distance(ORIGIN, DESTINATION)).fallback

    def test_route_strips_html(self):
        def handler(request):
            return httpx.Response(200, json={
                "status": "OK",
                "routes": [{"legs": [{
                    "duration": {"text": "2 mins"},
                    "distance": {"text": "150 m"},
                    "steps": [
                        {"html_instructions": "Head <b>north</b> on <b>Broadway</b>"},
                        {"html_instructions": "Turn <b>left</b>"},
                    ],
                }]}],
            })

        route = asyncio.run(make_maps(handler).route(ORIGIN, DESTINATION))

        assert route.duration == "2 mins"
        assert route.steps == ["Head north on Broadway", "Turn left"]
        assert route.to_dict()["distance"] == "150 m"

    def test_route_falls_back_without_routes(self):
        def handler(request):
            return httpx.Response(200, json={"status": "ZERO_RESULTS", "routes": []})

        route = asyncio.run(make_maps(handler).route(ORIGIN, DESTINATION))

        assert route.fallback
        assert route.steps == ["Navigate to incident location"]

    def test_no_api_key_never_calls_out(self):
        def handler(request):
            raise AssertionError("Maps should not be called without a key")

        maps = make_maps(handler, api_key=None)

        assert not maps.configured
        assert asyncio.run(maps.distance(ORIGIN, DESTINATION)).duration_minutes == 5
        assert asyncio.run(maps.route(ORIGIN, DESTINATION)).duration == "5 mins"

    def test_strip_html(self):
        assert strip_html("<div style='x'>Destination</div> on the right") == "Destination on the right"
