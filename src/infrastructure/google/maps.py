"""
Google Maps Distance Matrix and Directions client.

Travel estimates rank responders and give them route instructions. Maps
is a nice-to-have for dispatch: without an API key, or when a request
fails, both calls return a fixed fallback instead of raising.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"

FALLBACK_STEP = "Navigate to incident location"

_HTML_TAG = re.compile(r"<[^>]*>")


@dataclass
class TravelEstimate:
    duration_minutes: int
    distance: str = "unknown"
    duration_text: Optional[str] = None
    fallback: bool = False


@dataclass
class Route:
    duration: str
    distance: str = "unknown"
    steps: list[str] = field(default_factory=list)
    fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"duration": self.duration, "distance": self.distance, "steps": self.steps}


def strip_html(text: str) -> str:
    return _HTML_TAG.sub("", text)


def format_point(location: dict[str, Any]) -> str:
    return f"{location['lat']},{location['lng']}"


class MapsClient:
    """Thin async wrapper over the two Maps web services dispatch uses."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        travel_mode: str = "walking",
        fallback_minutes: int = 5,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self._mode = travel_mode
        self._fallback_minutes = fallback_minutes
        self._http = http_client or httpx.AsyncClient(timeout=10.0)

        if not api_key:
            logger.warning("Google Maps API key not configured, using fallback travel estimates")

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        await self._http.aclose()

    def fallback_estimate(self) -> TravelEstimate:
        return TravelEstimate(
            duration_minutes=self._fallback_minutes,
            duration_text=f"{self._fallback_minutes} mins",
            fallback=True,
        )

    def fallback_route(self) -> Route:
        return Route(
            duration=f"{self._fallback_minutes} mins",
            steps=[FALLBACK_STEP],
            fallback=True,
        )

    async def distance(self, origin: dict[str, Any], destination: dict[str, Any]) -> TravelEstimate:
        """Travel time in whole minutes (rounded up) between two lat/lng points."""
        if not self._api_key:
            return self.fallback_estimate()

        try:
            response = await self._http.get(
                DISTANCE_MATRIX_URL,
                params={
                    "origins": format_point(origin),
                    "destinations": format_point(destination),
                    "mode": self._mode,
                    "units": "metric",
                    "key": self._api_key,
                },
            )
            response.raise_for_status()
            data = response.json()

            if data.get("status") != "OK":
                raise ValueError(f"Distance Matrix status {data.get('status')}")
            element = data["rows"][0]["elements"][0]
            if element.get("status") != "OK":
                raise ValueError(f"Distance Matrix element status {element.get('status')}")

            seconds = element["duration"]["value"]
            return TravelEstimate(
                duration_minutes=-(-seconds // 60),
                distance=element["distance"]["text"],
                duration_text=element["duration"]["text"],
            )
        except (httpx.HTTPError, ValueError, KeyError, IndexError) as e:
            logger.warning("Distance calculation failed", extra={"error": str(e)})
            return self.fallback_estimate()

    async def route(self, origin: dict[str, Any], destination: dict[str, Any]) -> Route:
        """Turn-by-turn walking directions with HTML stripped from each step."""
        if not self._api_key:
            return self.fallback_route()

        try:
            response = await self._http.get(
                DIRECTIONS_URL,
                params={
                    "origin": format_point(origin),
                    "destination": format_point(destination),
                    "mode": self._mode,
                    "key": self._api_key,
                },
            )
            response.raise_for_status()
            data = response.json()

            if data.get("status") != "OK" or not data.get("routes"):
                raise ValueError("No route found")

            leg = data["routes"][0]["legs"][0]
            return Route(
                duration=leg["duration"]["text"],
                distance=leg["distance"]["text"],
                steps=[strip_html(step["html_instructions"]) for step in leg.get("steps", [])],
            )
        except (httpx.HTTPError, ValueError, KeyError, IndexError) as e:
            logger.warning("Detailed route calculation failed", extra={"error": str(e)})
            return self.fallback_route()
