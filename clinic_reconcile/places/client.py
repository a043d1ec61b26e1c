"""
HTTP client for the places provider.

Implements place details and text search lookups with status mapping and
exponential backoff retries for transient failures.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ..errors import PermanentServiceError, TransientServiceError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://maps.googleapis.com/maps/api/place"

TRANSIENT_STATUSES = {"OVER_QUERY_LIMIT", "UNKNOWN_ERROR"}
PERMANENT_STATUSES = {"NOT_FOUND", "ZERO_RESULTS", "INVALID_REQUEST", "REQUEST_DENIED"}

DETAILS_FIELDS = "place_id,name,formatted_address,geometry,rating,user_ratings_total,business_status"


@dataclass
class PlaceResult:
    """Result from a place lookup."""
    place_id: Optional[str]
    name: str
    address: str
    latitude: Optional[float]
    longitude: Optional[float]
    rating: Optional[float] = None
    review_count: Optional[int] = None
    business_status: Optional[str] = None


def backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 5.0) -> float:
    """Delay before retrying after failed attempt ``attempt`` (1-based)."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def _parse_place(result: Dict[str, Any]) -> PlaceResult:
    location = (result.get("geometry") or {}).get("location") or {}
    return PlaceResult(
        place_id=result.get("place_id"),
        name=result.get("name", ""),
        address=result.get("formatted_address", ""),
        latitude=location.get("lat"),
        longitude=location.get("lng"),
        rating=result.get("rating"),
        review_count=result.get("user_ratings_total"),
        business_status=result.get("business_status")
    )


class PlacesClient:
    """
    Places API client.

    Only transient failures are retried; permanent ones surface immediately
    so the caller can leave the record without coordinates.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        if not api_key:
            raise ValueError("Places API key is required")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(cls, places_config: Dict[str, Any]) -> Optional["PlacesClient"]:
        """
        Build a client from the ``places`` config section.

        Returns:
            PlacesClient, or None when no API key is set in the environment
        """
        api_key = os.environ.get(places_config.get("api_key_env", "GOOGLE_PLACES_API_KEY"))
        if not api_key:
            return None
        return cls(
            api_key=api_key,
            base_url=places_config.get("base_url", DEFAULT_BASE_URL),
            timeout=places_config.get("timeout", 10.0),
            max_attempts=places_config.get("max_attempts", 3),
            base_delay=places_config.get("base_delay", 1.0),
            max_delay=places_config.get("max_delay", 5.0)
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "PlacesClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _request_once(self, endpoint: str, params: Dict[str, str],
                            request_key: str) -> Dict[str, Any]:
        client = await self._get_client()
        url = f"{self.base_url}/{endpoint}/json"

        try:
            response = await client.get(url, params={**params, "key": self.api_key})
        except httpx.TimeoutException as e:
            raise TransientServiceError(f"Places request timed out: {e}",
                                        status="TIMEOUT", request_key=request_key)
        except httpx.RequestError as e:
            raise TransientServiceError(f"No response from places provider: {e}",
                                        status="CONNECTION_ERROR", request_key=request_key)

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientServiceError(f"Places provider returned HTTP {response.status_code}",
                                        status=str(response.status_code), request_key=request_key)
        if response.status_code >= 400:
            raise PermanentServiceError(f"Places provider returned HTTP {response.status_code}",
                                        status=str(response.status_code), request_key=request_key)

        try:
            data = response.json()
        except ValueError as e:
            raise TransientServiceError(f"Undecodable places response: {e}",
                                        status="DECODE_ERROR", request_key=request_key)

        status = data.get("status", "UNKNOWN_ERROR")
        if status == "OK":
            return data

        message = data.get("error_message") or status
        if status in TRANSIENT_STATUSES:
            raise TransientServiceError(f"Places API error: {message}",
                                        status=status, request_key=request_key)
        raise PermanentServiceError(f"Places API error: {message}",
                                    status=status, request_key=request_key)

    async def _request(self, endpoint: str, params: Dict[str, str],
                       request_key: str) -> Dict[str, Any]:
        last_error: Optional[TransientServiceError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._request_once(endpoint, params, request_key)
            except TransientServiceError as e:
                last_error = e
                if attempt < self.max_attempts:
                    wait_time = backoff_delay(attempt, self.base_delay, self.max_delay)
                    logger.warning(f"Attempt {attempt} for {request_key} failed ({e.status}), "
                                   f"retry in {wait_time:.1f}s")
                    await self._sleep(wait_time)

        logger.error(f"Giving up on {request_key} after {self.max_attempts} attempts: {last_error}")
        raise last_error

    async def fetch_place(self, place_id: str) -> PlaceResult:
        """
        Fetch place details by place id.

        Raises:
            PermanentServiceError: Unknown place id or rejected request
            TransientServiceError: Retries exhausted
        """
        if not place_id:
            raise PermanentServiceError("Place ID is required", status="INVALID_REQUEST")

        data = await self._request("details", {"place_id": place_id, "fields": DETAILS_FIELDS},
                                   request_key=place_id)
        return _parse_place(data.get("result") or {})

    async def search_text(self, query: str) -> PlaceResult:
        """
        Resolve a free-text query (typically "name, address") to its top result.

        Raises:
            PermanentServiceError: No result or rejected request
            TransientServiceError: Retries exhausted
        """
        data = await self._request("textsearch", {"query": query}, request_key=query)
        results = data.get("results") or []
        if not results:
            raise PermanentServiceError(f"No places result for '{query}'",
                                        status="ZERO_RESULTS", request_key=query)
        return _parse_place(results[0])
