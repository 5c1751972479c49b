"""
Google Video Intelligence REST client.

Annotation is a long-running operation: we start it, get back an
operation name, and poll that name until it reports done. The REST API
is used instead of the gRPC SDK so the operation name can be handed to
API callers who check on it later.
"""

import asyncio
import base64
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx

from .auth import TokenProvider

logger = logging.getLogger(__name__)

API_BASE_URL = "https://videointelligence.googleapis.com/v1"

DEFAULT_CHUNK_FEATURES = [
    "LABEL_DETECTION",
    "PERSON_DETECTION",
    "OBJECT_TRACKING",
    "TEXT_DETECTION",
]

PERSON_DETECTION_CONTEXT = {
    "personDetectionConfig": {
        "includeBoundingBoxes": True,
        "includeAttributes": True,
    },
}

CHUNK_VIDEO_CONTEXT = {
    "personDetectionConfig": {
        "includeBoundingBoxes": True,
        "includeAttributes": True,
        "includePoseLandmarks": False,
    },
    "objectTrackingConfig": {"model": "builtin/latest"},
}


class VideoIntelligenceError(Exception):
    """Raised when a Video Intelligence call fails."""
    pass


class AnnotationFailedError(VideoIntelligenceError):
    """The operation finished with an error."""
    pass


class AnnotationTimeoutError(VideoIntelligenceError):
    """The operation did not finish within the allowed time."""
    pass


def validate_gcs_uri(gcs_uri: Optional[str]) -> str:
    """Video Intelligence only reads gs:// inputs."""
    if not gcs_uri:
        raise ValueError("gcsUri is required")
    if not gcs_uri.startswith("gs://"):
        raise ValueError("gcsUri must start with gs://")
    return gcs_uri


def first_annotation_result(response: Optional[dict[str, Any]]) -> dict[str, Any]:
    """The first annotationResults entry, or an empty dict."""
    results = (response or {}).get("annotationResults") or []
    return results[0] if results else {}


class VideoAnnotator(Protocol):
    """Protocol shared by the REST client and the mock."""

    async def start_annotation(
        self,
        *,
        gcs_uri: Optional[str] = None,
        input_content: Optional[bytes] = None,
        features: Optional[list[str]] = None,
        video_context: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        ...

    async def get_operation(self, operation_name: str) -> dict[str, Any]:
        ...

    async def poll_operation(
        self,
        operation_name: str,
        max_wait_seconds: Optional[float] = None,
    ) -> dict[str, Any]:
        ...

    async def annotate_and_wait(
        self,
        *,
        gcs_uri: Optional[str] = None,
        input_content: Optional[bytes] = None,
        features: Optional[list[str]] = None,
        video_context: Optional[dict[str, Any]] = None,
        max_wait_seconds: Optional[float] = None,
    ) -> tuple[str, dict[str, Any]]:
        ...


class VideoIntelligenceClient:
    """
    REST client for videos:annotate and operation polling.

    The httpx client can be injected, which is how tests plug in an
    httpx.MockTransport.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        location_id: Optional[str] = None,
        poll_interval_seconds: float = 5.0,
        max_wait_seconds: float = 300.0,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = API_BASE_URL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tokens = token_provider
        self._location_id = location_id
        self._poll_interval = poll_interval_seconds
        self._max_wait = max_wait_seconds
        self._http = http_client or httpx.AsyncClient(timeout=30.0)
        self._base_url = base_url.rstrip("/")
        self._sleep = sleep
        self._clock = clock

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _headers(self) -> dict[str, str]:
        token = await self._tokens.get_token()
        return {"Authorization": f"Bearer {token}"}

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return response.json().get("error", {}).get("message") or response.text
        except ValueError:
            return response.text

    async def start_annotation(
        self,
        *,
        gcs_uri: Optional[str] = None,
        input_content: Optional[bytes] = None,
        features: Optional[list[str]] = None,
        video_context: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Start an annotation and return the operation ({"name": ...}).

        Exactly one of gcs_uri or input_content must be given. Inline
        content is base64 encoded as the REST API expects.
        """
        if (gcs_uri is None) == (input_content is None):
            raise ValueError("Provide exactly one of gcs_uri or input_content")

        body: dict[str, Any] = {
            "features": features or ["PERSON_DETECTION"],
            "videoContext": video_context or PERSON_DETECTION_CONTEXT,
        }
        if gcs_uri is not None:
            body["inputUri"] = validate_gcs_uri(gcs_uri)
        else:
            body["inputContent"] = base64.b64encode(input_content).decode("ascii")
        if self._location_id:
            body["locationId"] = self._location_id

        try:
            response = await self._http.post(
                f"{self._base_url}/videos:annotate",
                json=body,
                headers=await self._headers(),
            )
        except httpx.HTTPError as e:
            logger.error("Video annotation request failed", extra={"error": str(e)})
            raise VideoIntelligenceError(f"Failed to start video annotation: {e}")

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error(
                "Error starting video annotation",
                extra={"status": response.status_code, "error": message}
            )
            raise VideoIntelligenceError(f"Failed to start video annotation: {message}")

        operation = response.json()
        logger.info(
            "Video annotation started",
            extra={"input": gcs_uri or "inline", "operation": operation.get("name")}
        )
        return operation

    async def get_operation(self, operation_name: str) -> dict[str, Any]:
        """Fetch the current state of an operation."""
        if not operation_name:
            raise ValueError("operationName is required")

        try:
            response = await self._http.get(
                f"{self._base_url}/{operation_name}",
                headers=await self._headers(),
            )
        except httpx.HTTPError as e:
            raise VideoIntelligenceError(f"Failed to poll operation: {e}")

        if response.status_code >= 400:
            raise VideoIntelligenceError(
                f"Failed to poll operation: {self._error_message(response)}"
            )
        return response.json()

    async def poll_operation(
        self,
        operation_name: str,
        max_wait_seconds: Optional[float] = None,
    ) -> dict[str, Any]:
        """
        Poll until the operation is done and return its response payload.

        Raises AnnotationFailedError if the operation reports an error and
        AnnotationTimeoutError once max_wait_seconds has elapsed.
        """
        max_wait = self._max_wait if max_wait_seconds is None else max_wait_seconds
        started = self._clock()

        logger.info("Polling operation", extra={"operation": operation_name})

        while self._clock() - started < max_wait:
            operation = await self.get_operation(operation_name)
            logger.debug(
                "Operation status check",
                extra={"operation": operation_name, "done": operation.get("done", False)}
            )

            if operation.get("done"):
                if operation.get("error"):
                    message = operation["error"].get("message", "unknown error")
                    raise AnnotationFailedError(f"Operation failed: {message}")

                logger.info("Operation completed", extra={"operation": operation_name})
                return operation.get("response") or {}

            await self._sleep(self._poll_interval)

        raise AnnotationTimeoutError(
            f"Operation timeout: {operation_name} did not complete within {max_wait:.0f} seconds"
        )

    async def annotate_and_wait(
        self,
        *,
        gcs_uri: Optional[str] = None,
        input_content: Optional[bytes] = None,
        features: Optional[list[str]] = None,
        video_context: Optional[dict[str, Any]] = None,
        max_wait_seconds: Optional[float] = None,
    ) -> tuple[str, dict[str, Any]]:
        """Start an annotation and poll it to completion."""
        operation = await self.start_annotation(
            gcs_uri=gcs_uri,
            input_content=input_content,
            features=features,
            video_context=video_context,
        )
        name = operation.get("name")
        if not name:
            raise VideoIntelligenceError("Annotation response did not include an operation name")
        response = await self.poll_operation(name, max_wait_seconds)
        return name, response


# ---------------------------------------------------------------------------
# Mock Client for Local Development
# ---------------------------------------------------------------------------

MOCK_ANNOTATION_RESULT: dict[str, Any] = {
    "inputUri": "/mock-bucket/streams/mock.mp4",
    "labelAnnotations": [
        {
            "entity": {"description": "person"},
            "categoryEntities": [{"description": "human"}],
            "frames": [{"confidence": 0.93, "timeOffset": "1s"}],
        },
        {
            "entity": {"description": "street"},
            "categoryEntities": [{"description": "road"}],
            "frames": [{"confidence": 0.81, "timeOffset": "2s"}],
        },
    ],
    "personDetectionAnnotations": [
        {"tracks": [{"confidence": 0.9, "timestampedObjects": []}]},
        {"tracks": [{"confidence": 0.86, "timestampedObjects": []}]},
    ],
    "objectAnnotations": [
        {"entity": {"description": "car"}, "confidence": 0.77, "trackId": "1"},
    ],
    "textAnnotations": [],
}


class MockVideoIntelligenceClient:
    """
    Video Intelligence stand-in for mock mode.

    Operations complete immediately with a canned annotation result.
    With fail_operations set, new operations finish with an error instead.
    """

    def __init__(self, annotation_result: Optional[dict[str, Any]] = None) -> None:
        self._result = annotation_result if annotation_result is not None else MOCK_ANNOTATION_RESULT
        self._operations: dict[str, dict[str, Any]] = {}
        self.requests: list[dict[str, Any]] = []
        self.fail_operations = False
        logger.info("Initialized mock Video Intelligence client")

    async def start_annotation(
        self,
        *,
        gcs_uri: Optional[str] = None,
        input_content: Optional[bytes] = None,
        features: Optional[list[str]] = None,
        video_context: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        if (gcs_uri is None) == (input_content is None):
            raise ValueError("Provide exactly one of gcs_uri or input_content")
        if gcs_uri is not None:
            validate_gcs_uri(gcs_uri)

        name = f"projects/mock/locations/mock/operations/{len(self._operations) + 1}"
        self.requests.append({"gcsUri": gcs_uri, "features": features, "inline": input_content is not None})

        if self.fail_operations:
            self._operations[name] = {
                "name": name,
                "done": True,
                "error": {"code": 3, "message": "Mock annotation failure"},
            }
        else:
            self._operations[name] = {
                "name": name,
                "done": True,
                "metadata": {"annotationProgress": [{"progressPercent": 100}]},
                "response": {"annotationResults": [self._result]},
            }
        return {"name": name}

    async def get_operation(self, operation_name: str) -> dict[str, Any]:
        if not operation_name:
            raise ValueError("operationName is required")
        operation = self._operations.get(operation_name)
        if operation is None:
            raise VideoIntelligenceError(f"Failed to poll operation: {operation_name} not found")
        return operation

    async def poll_operation(
        self,
        operation_name: str,
        max_wait_seconds: Optional[float] = None,
    ) -> dict[str, Any]:
        operation = await self.get_operation(operation_name)
        if operation.get("error"):
            raise AnnotationFailedError(f"Operation failed: {operation['error']['message']}")
        return operation.get("response") or {}

    async def annotate_and_wait(
        self,
        *,
        gcs_uri: Optional[str] = None,
        input_content: Optional[bytes] = None,
        features: Optional[list[str]] = None,
        video_context: Optional[dict[str, Any]] = None,
        max_wait_seconds: Optional[float] = None,
    ) -> tuple[str, dict[str, Any]]:
        operation = await self.start_annotation(
            gcs_uri=gcs_uri,
            input_content=input_content,
            features=features,
            video_context=video_context,
        )
        response = await self.poll_operation(operation["name"], max_wait_seconds)
        return operation["name"], response

    async def aclose(self) -> None:
        pass
