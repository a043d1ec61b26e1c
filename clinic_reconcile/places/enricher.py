"""
Coordinate enrichment for bulk source rows.

Rows that arrived without coordinates are looked up at the places provider,
by place id when the row carries one and by "name, address" text search
otherwise.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from ..errors import ExternalServiceError, PermanentServiceError
from ..models import SourceRecord
from .batch import batch_fetch
from .client import PlaceResult, PlacesClient

logger = logging.getLogger(__name__)


class CoordinateEnricher:
    """
    Fills in missing source coordinates from the places provider.

    Records are immutable: enriched rows are new SourceRecord instances and
    rows that could not be resolved are returned unchanged. Without a client
    (no API key configured) enrichment is a no-op.
    """

    def __init__(self, client: Optional[PlacesClient], concurrency: int = 5,
                 batch_delay: float = 0.2):
        self.client = client
        self.concurrency = concurrency
        self.batch_delay = batch_delay
        self.last_stats: Dict[str, int] = {}

        if client is None:
            logger.info("Initialized CoordinateEnricher (disabled: no places API key)")
        else:
            logger.info("Initialized CoordinateEnricher")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CoordinateEnricher":
        places_config = config.get("places", {})
        return cls(
            PlacesClient.from_config(places_config),
            concurrency=places_config.get("concurrency", 5),
            batch_delay=places_config.get("batch_delay", 0.2)
        )

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def _lookup(self, source: SourceRecord) -> PlaceResult:
        if source.place_id:
            return await self.client.fetch_place(source.place_id)
        return await self.client.search_text(f"{source.name}, {source.address}")

    async def enrich_async(self, sources: Sequence[SourceRecord]) -> List[SourceRecord]:
        """
        Resolve coordinates for every source that lacks them.

        Args:
            sources: Source records

        Returns:
            Source records in input order, enriched where a lookup succeeded
        """
        enriched = list(sources)
        pending = [i for i, source in enumerate(sources) if not source.has_coordinates]
        stats = {"requested": len(pending), "enriched": 0,
                 "permanent_failures": 0, "transient_failures": 0}
        self.last_stats = stats

        if not self.enabled or not pending:
            return enriched

        logger.info(f"Looking up coordinates for {len(pending)} source records")

        try:
            outcomes = await batch_fetch(
                [sources[i] for i in pending], self._lookup,
                concurrency=self.concurrency, batch_delay=self.batch_delay
            )
        finally:
            await self.client.close()

        for index, outcome in zip(pending, outcomes):
            source = sources[index]
            if isinstance(outcome, PermanentServiceError):
                stats["permanent_failures"] += 1
                logger.warning(f"No coordinates for '{source.name}': {outcome} ({outcome.status})")
            elif isinstance(outcome, ExternalServiceError):
                stats["transient_failures"] += 1
                logger.warning(f"Lookup for '{source.name}' failed after retries: {outcome}")
            elif isinstance(outcome, BaseException):
                raise outcome
            elif outcome.latitude is None or outcome.longitude is None:
                stats["permanent_failures"] += 1
                logger.warning(f"Places result for '{source.name}' has no geometry")
            else:
                enriched[index] = source.with_coordinates(outcome.latitude, outcome.longitude)
                stats["enriched"] += 1

        logger.info(f"Coordinate enrichment completed: {stats['enriched']}/{stats['requested']} "
                    f"resolved, {stats['permanent_failures']} not found, "
                    f"{stats['transient_failures']} unavailable")
        return enriched

    def enrich(self, sources: Sequence[SourceRecord]) -> List[SourceRecord]:
        """Synchronous wrapper around ``enrich_async``."""
        return asyncio.run(self.enrich_async(sources))
