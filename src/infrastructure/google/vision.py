"""
Google Cloud Vision client.

Wraps ImageAnnotatorClient for the four single-feature calls the security
heuristics need. Responses are converted to plain camelCase dicts
(e.g. localizedObjectAnnotations, joyLikelihood: "LIKELY") so the
heuristics don't depend on protobuf types.
"""

import asyncio
import logging
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class VisionError(Exception):
    """Raised when a Vision API call fails."""
    pass


class VisionClient(Protocol):
    """Protocol for image annotation."""

    async def object_localization(self, image: bytes) -> dict[str, Any]:
        ...

    async def label_detection(self, image: bytes) -> dict[str, Any]:
        ...

    async def text_detection(self, image: bytes) -> dict[str, Any]:
        ...

    async def face_detection(self, image: bytes) -> dict[str, Any]:
        ...


class GoogleVisionClient:
    """Vision client backed by google-cloud-vision, run in a worker thread."""

    def __init__(self, keyfile: Optional[str] = None) -> None:
        from google.cloud import vision

        self._vision = vision
        if keyfile:
            self._client = vision.ImageAnnotatorClient.from_service_account_json(keyfile)
        else:
            self._client = vision.ImageAnnotatorClient()
        logger.info("Initialized Vision client")

    async def _annotate(self, method_name: str, image: bytes) -> dict[str, Any]:
        if not image:
            raise ValueError("Image content is required")

        method = getattr(self._client, method_name)
        try:
            response = await asyncio.to_thread(method, image=self._vision.Image(content=image))
        except Exception as e:
            logger.error("Vision API call failed", extra={"method": method_name, "error": str(e)})
            raise VisionError(f"Vision {method_name} failed: {e}")

        if response.error.message:
            raise VisionError(f"Vision {method_name} failed: {response.error.message}")

        return self._vision.AnnotateImageResponse.to_dict(
            response,
            use_integers_for_enums=False,
            preserving_proto_field_name=False,
        )

    async def object_localization(self, image: bytes) -> dict[str, Any]:
        return await self._annotate("object_localization", image)

    async def label_detection(self, image: bytes) -> dict[str, Any]:
        return await self._annotate("label_detection", image)

    async def text_detection(self, image: bytes) -> dict[str, Any]:
        return await self._annotate("text_detection", image)

    async def face_detection(self, image: bytes) -> dict[str, Any]:
        return await self._annotate("face_detection", image)


# ---------------------------------------------------------------------------
# Mock Client for Local Development
# ---------------------------------------------------------------------------

def _person(x: float, y: float, score: float) -> dict[str, Any]:
    return {
        "name": "Person",
        "score": score,
        "boundingPoly": {
            "normalizedVertices": [
                {"x": x, "y": y},
                {"x": x + 0.1, "y": y},
                {"x": x + 0.1, "y": y + 0.2},
                {"x": x, "y": y + 0.2},
            ],
        },
    }


MOCK_VISION_RESPONSES: dict[str, dict[str, Any]] = {
    "object_localization": {
        "localizedObjectAnnotations": [
            _person(0.05, 0.05, 0.92),
            _person(0.4, 0.4, 0.88),
            _person(0.8, 0.75, 0.81),
        ],
    },
    "label_detection": {
        "labelAnnotations": [
            {"description": "Crowd", "score": 0.9},
            {"description": "Event", "score": 0.74},
        ],
    },
    "text_detection": {"textAnnotations": []},
    "face_detection": {
        "faceAnnotations": [
            {"joyLikelihood": "LIKELY", "sorrowLikelihood": "VERY_UNLIKELY",
             "angerLikelihood": "VERY_UNLIKELY", "surpriseLikelihood": "UNLIKELY"},
            {"joyLikelihood": "POSSIBLE", "sorrowLikelihood": "UNLIKELY",
             "angerLikelihood": "UNLIKELY", "surpriseLikelihood": "VERY_UNLIKELY"},
        ],
    },
}


class MockVisionClient:
    """Returns canned responses; override per feature via `responses`."""

    def __init__(self, responses: Optional[dict[str, dict[str, Any]]] = None) -> None:
        self._responses = {**MOCK_VISION_RESPONSES, **(responses or {})}
        self.calls: list[str] = []
        logger.info("Initialized mock Vision client")

    async def _annotate(self, feature: str, image: bytes) -> dict[str, Any]:
        if not image:
            raise ValueError("Image content is required")
        self.calls.append(feature)
        return self._responses.get(feature, {})

    async def object_localization(self, image: bytes) -> dict[str, Any]:
        return await self._annotate("object_localization", image)

    async def label_detection(self, image: bytes) -> dict[str, Any]:
        return await self._annotate("label_detection", image)

    async def text_detection(self, image: bytes) -> dict[str, Any]:
        return await self._annotate("text_detection", image)

    async def face_detection(self, image: bytes) -> dict[str, Any]:
        return await self._annotate("face_detection", image)


def create_vision_client(keyfile: Optional[str] = None, mock_mode: bool = False) -> VisionClient:
    if mock_mode:
        return MockVisionClient()
    return GoogleVisionClient(keyfile)
