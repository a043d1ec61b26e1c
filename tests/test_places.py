"""
Unit tests for the places client, batching and coordinate enrichment.
"""

import asyncio
import pytest
import sys
from pathlib import Path

import httpx

# Add package root to path
sys.path.append(str(Path(__file__).parent.parent))

from clinic_reconcile.errors import PermanentServiceError, TransientServiceError
from clinic_reconcile.models import SourceRecord
from clinic_reconcile.places.batch import batch_fetch
from clinic_reconcile.places.client import PlacesClient, backoff_delay
from clinic_reconcile.places.enricher import CoordinateEnricher


def place_payload(place_id, name, lat, lng):
    return {
        "place_id": place_id,
        "name": name,
        "formatted_address": f"{name} address",
        "geometry": {"location": {"lat": lat, "lng": lng}},
        "rating": 4.6,
        "user_ratings_total": 120,
    }


class RecordingSleep:
    """Sleep double that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class TestBackoff:
    """Test cases for retry delays."""

    def test_backoff_schedule(self):
        """Test delays double from the base and are capped."""
        assert [backoff_delay(n) for n in (1, 2, 3, 4, 5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
        assert backoff_delay(2, base_delay=0.5, max_delay=10) == 1.0


class TestPlacesClient:
    """Test cases for the places client."""

    def setup_method(self):
        """Setup test fixtures."""
        self.calls = []
        self.sleep = RecordingSleep()

    def make_client(self, handler):
        def recording_handler(request):
            self.calls.append(request)
            return handler(request)

        return PlacesClient("test-key", transport=httpx.MockTransport(recording_handler),
                            sleep=self.sleep)

    def test_fetch_place(self):
        """Test place details are parsed."""
        def handler(request):
            assert request.url.path.endswith("/details/json")
            assert request.url.params["place_id"] == "PL-1"
            assert request.url.params["key"] == "test-key"
            return httpx.Response(200, json={"status": "OK",
                                             "result": place_payload("PL-1", "Clinic", 25.1, -80.2)})

        result = asyncio.run(self.make_client(handler).fetch_place("PL-1"))
        assert result.place_id == "PL-1"
        assert result.latitude == 25.1
        assert result.longitude == -80.2
        assert result.review_count == 120

    def test_search_text(self):
        """Test text search returns the top result."""
        def handler(request):
            assert request.url.path.endswith("/textsearch/json")
            assert request.url.params["query"] == "Clinic, 1 Main St"
            return httpx.Response(200, json={"status": "OK", "results": [
                place_payload("PL-1", "Clinic", 25.1, -80.2),
                place_payload("PL-2", "Other", 0.0, 0.0),
            ]})

        result = asyncio.run(self.make_client(handler).search_text("Clinic, 1 Main St"))
        assert result.place_id == "PL-1"

    def test_transient_then_success(self):
        """Test 5xx responses are retried with backoff."""
        responses = [httpx.Response(503), httpx.Response(200, json={"status": "OVER_QUERY_LIMIT"}),
                     httpx.Response(200, json={"status": "OK",
                                               "result": place_payload("PL-1", "Clinic", 1.0, 2.0)})]

        result = asyncio.run(self.make_client(lambda request: responses.pop(0)).fetch_place("PL-1"))
        assert result.latitude == 1.0
        assert len(self.calls) == 3
        assert self.sleep.delays == [1.0, 2.0]

    def test_transient_exhausted(self):
        """Test retries stop at max attempts."""
        def handler(request):
            return httpx.Response(200, json={"status": "UNKNOWN_ERROR"})

        with pytest.raises(TransientServiceError) as exc_info:
            asyncio.run(self.make_client(handler).fetch_place("PL-1"))
        assert exc_info.value.status == "UNKNOWN_ERROR"
        assert exc_info.value.request_key == "PL-1"
        assert len(self.calls) == 3
        assert self.sleep.delays == [1.0, 2.0]

    @pytest.mark.parametrize("response", [
        httpx.Response(200, json={"status": "NOT_FOUND"}),
        httpx.Response(200, json={"status": "INVALID_REQUEST"}),
        httpx.Response(200, json={"status": "REQUEST_DENIED", "error_message": "bad key"}),
        httpx.Response(403),
        httpx.Response(404),
    ])
    def test_permanent_not_retried(self, response):
        """Test permanent failures surface after one attempt."""
        with pytest.raises(PermanentServiceError):
            asyncio.run(self.make_client(lambda request: response).fetch_place("PL-1"))
        assert len(self.calls) == 1
        assert self.sleep.delays == []

    def test_rate_limited_is_transient(self):
        """Test HTTP 429 is retried."""
        with pytest.raises(TransientServiceError):
            asyncio.run(self.make_client(lambda request: httpx.Response(429)).fetch_place("PL-1"))
        assert len(self.calls) == 3

    def test_timeout_is_transient(self):
        """Test timeouts are retried."""
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(TransientServiceError) as exc_info:
            asyncio.run(self.make_client(handler).fetch_place("PL-1"))
        assert exc_info.value.status == "TIMEOUT"
        assert len(self.calls) == 3

    def test_zero_results(self):
        """Test an empty search is permanent."""
        def handler(request):
            return httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []})

        with pytest.raises(PermanentServiceError) as exc_info:
            asyncio.run(self.make_client(handler).search_text("Nowhere Clinic"))
        assert exc_info.value.status == "ZERO_RESULTS"

    def test_missing_api_key(self):
        """Test a client cannot be built without a key."""
        with pytest.raises(ValueError):
            PlacesClient("")

    def test_from_config_without_key(self, monkeypatch):
        """Test no client is built when the key variable is unset."""
        monkeypatch.delenv("CLINIC_TEST_PLACES_KEY", raising=False)
        assert PlacesClient.from_config({"api_key_env": "CLINIC_TEST_PLACES_KEY"}) is None

        monkeypatch.setenv("CLINIC_TEST_PLACES_KEY", "abc")
        client = PlacesClient.from_config({"api_key_env": "CLINIC_TEST_PLACES_KEY", "max_attempts": 5})
        assert client.api_key == "abc"
        assert client.max_attempts == 5


class TestBatchFetch:
    """Test cases for batched concurrency."""

    def test_batches_and_isolation(self):
        """Test batch size, pauses between batches and per-request failures."""
        sleep = RecordingSleep()
        in_flight = {"now": 0, "max": 0}

        async def fetch(key):
            in_flight["now"] += 1
            in_flight["max"] = max(in_flight["max"], in_flight["now"])
            await asyncio.sleep(0)
            in_flight["now"] -= 1
            if key == 3:
                raise PermanentServiceError("not found", status="NOT_FOUND")
            return key * 10

        results = asyncio.run(batch_fetch(list(range(12)), fetch, concurrency=5,
                                          batch_delay=0.2, sleep=sleep))

        assert len(results) == 12
        assert isinstance(results[3], PermanentServiceError)
        assert [r for i, r in enumerate(results) if i != 3] == [i * 10 for i in range(12) if i != 3]
        assert in_flight["max"] <= 5
        assert sleep.delays == [0.2, 0.2]

    def test_empty(self):
        """Test no keys means no requests and no pauses."""
        sleep = RecordingSleep()

        async def fetch(key):
            raise AssertionError("should not be called")

        assert asyncio.run(batch_fetch([], fetch, sleep=sleep)) == []
        assert sleep.delays == []

    def test_invalid_concurrency(self):
        """Test concurrency must be positive."""
        async def fetch(key):
            return key

        with pytest.raises(ValueError):
            asyncio.run(batch_fetch([1], fetch, concurrency=0))


class TestCoordinateEnricher:
    """Test cases for coordinate enrichment."""

    def setup_method(self):
        """Setup test fixtures."""
        self.requests = []

        def handler(request):
            self.requests.append(request)
            if request.url.path.endswith("/details/json"):
                if request.url.params["place_id"] == "PL-GONE":
                    return httpx.Response(200, json={"status": "NOT_FOUND"})
                return httpx.Response(200, json={"status": "OK", "result": place_payload(
                    request.url.params["place_id"], "Clinic", 25.5, -80.5)})
            return httpx.Response(200, json={"status": "OK", "results": [
                place_payload("PL-SEARCH", "Clinic", 26.0, -81.0)]})

        self.client = PlacesClient("test-key", transport=httpx.MockTransport(handler),
                                   sleep=RecordingSleep())

    def test_enrich(self):
        """Test lookups by place id and by text search."""
        sources = [
            SourceRecord("By Place", place_id="PL-1"),
            SourceRecord("By Search", "1 Main St, Naples, FL"),
            SourceRecord("Unknown Place", place_id="PL-GONE"),
            SourceRecord("Has Coordinates", latitude=1.0, longitude=2.0, place_id="PL-HAS"),
        ]
        enricher = CoordinateEnricher(self.client, concurrency=2, batch_delay=0)
        enriched = enricher.enrich(sources)

        assert (enriched[0].latitude, enriched[0].longitude) == (25.5, -80.5)
        assert (enriched[1].latitude, enriched[1].longitude) == (26.0, -81.0)
        assert not enriched[2].has_coordinates
        assert enriched[3] is sources[3]
        assert sources[0].latitude is None

        assert len(self.requests) == 3
        assert enricher.last_stats == {"requested": 3, "enriched": 2,
                                       "permanent_failures": 1, "transient_failures": 0}

    def test_search_query(self):
        """Test the text query is 'name, address'."""
        enricher = CoordinateEnricher(self.client, batch_delay=0)
        enricher.enrich([SourceRecord("By Search", "1 Main St, Naples, FL")])
        assert self.requests[0].url.params["query"] == "By Search, 1 Main St, Naples, FL"

    def test_disabled_without_client(self):
        """Test enrichment is a no-op without an API key."""
        enricher = CoordinateEnricher(None)
        sources = [SourceRecord("By Place", place_id="PL-1")]
        assert not enricher.enabled
        assert enricher.enrich(sources) == sources


if __name__ == "__main__":
    pytest.main([__file__])
