"""
Match classification for clinic_reconcile.

Scores every unresolved source record against the full target set, keeps
admissible candidates, ranks them and classifies each source as matched
(with up to two alternates) or unmatched.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..config import ScoringConfig
from ..models import MatchCandidate, MatchDecision, MatchOutcome, SourceRecord, TargetRecord
from ..normalize.address_normalizer import AddressNormalizer, Location
from ..normalize.name_normalizer import NameNormalizer
from .confidence import ConfidenceAggregator
from .geo_distance import haversine_km

logger = logging.getLogger(__name__)


def split_resolved(sources: Iterable[SourceRecord],
                   targets: Sequence[TargetRecord]) -> Tuple[List[SourceRecord], List[SourceRecord]]:
    """
    Separate sources already linked to a target by exact place id.

    Args:
        sources: Source records from the bulk export
        targets: Target records from the clinic store

    Returns:
        Tuple of (unresolved_sources, already_linked_sources)
    """
    known_place_ids = {t.place_id for t in targets if t.place_id}

    unresolved = []
    linked = []
    for source in sources:
        if source.place_id and source.place_id in known_place_ids:
            linked.append(source)
        else:
            unresolved.append(source)

    return unresolved, linked


class MatchClassifier:
    """
    Exhaustive scan classifier.

    O(sources x targets). Sequential on purpose: with a fixed target
    ordering the tie-breaks (earlier-scanned target wins) are reproducible.
    """

    def __init__(self, config: Optional[ScoringConfig] = None,
                 name_normalizer: Optional[NameNormalizer] = None,
                 address_normalizer: Optional[AddressNormalizer] = None,
                 aggregator: Optional[ConfidenceAggregator] = None):
        """
        Initialize classifier.

        Args:
            config: Scoring configuration
            name_normalizer: Name similarity scorer
            address_normalizer: Locality extractor
            aggregator: Confidence aggregator
        """
        self.config = config or ScoringConfig()
        self.name_normalizer = name_normalizer or NameNormalizer()
        self.address_normalizer = address_normalizer or AddressNormalizer()
        self.aggregator = aggregator or ConfidenceAggregator(self.config)
        self._target_locations: Dict[Tuple[int, str], Location] = {}

        logger.info("Initialized MatchClassifier")

    def _target_location(self, target: TargetRecord) -> Location:
        key = (target.target_id, target.address or "")
        location = self._target_locations.get(key)
        if location is None:
            location = self.address_normalizer.extract_location(target.address)
            self._target_locations[key] = location
        return location

    def source_location(self, source: SourceRecord) -> Location:
        """Locality of a source record (explicit columns, then its address)."""
        return self.address_normalizer.resolve_locality(source.city, source.state, source.address)

    @staticmethod
    def _same_city(city1: str, city2: str) -> bool:
        if not city1 or not city2:
            return False
        return city1 in city2 or city2 in city1

    @staticmethod
    def _same_state(state1: str, state2: str) -> bool:
        return bool(state1) and bool(state2) and state1 == state2

    def build_candidate(self, source: SourceRecord, source_location: Location,
                        target: TargetRecord) -> MatchCandidate:
        """
        Score one (source, target) pair.

        Args:
            source: Source record
            source_location: Pre-resolved locality of the source
            target: Target record

        Returns:
            Scored MatchCandidate
        """
        target_location = self._target_location(target)

        candidate = MatchCandidate(
            source=source,
            target=target,
            name_score=self.name_normalizer.best_name_score(source.name, target.name),
            distance_km=haversine_km(source.latitude, source.longitude,
                                     target.latitude, target.longitude),
            same_city=self._same_city(source_location.city, target_location.city),
            same_state=self._same_state(source_location.state, target_location.state)
        )
        return self.aggregator.score_candidate(candidate)

    def classify(self, source: SourceRecord, targets: Sequence[TargetRecord]) -> MatchDecision:
        """
        Classify one source record against the ordered target set.

        Args:
            source: Source record
            targets: Target records in identifier order

        Returns:
            MatchDecision
        """
        location = self.source_location(source)

        admissible = []
        for target in targets:
            candidate = self.build_candidate(source, location, target)
            if candidate.admissible:
                admissible.append(candidate)

        # list.sort is stable, so equal confidences keep scan order
        admissible.sort(key=lambda c: c.confidence, reverse=True)

        if not admissible:
            return MatchDecision(
                source=source,
                outcome=MatchOutcome.UNMATCHED,
                source_city=location.city,
                source_state=location.state
            )

        return MatchDecision(
            source=source,
            outcome=MatchOutcome.MATCHED,
            best=admissible[0],
            alternates=admissible[1:1 + self.config.max_alternates],
            source_city=location.city,
            source_state=location.state
        )

    def classify_all(self, sources: Sequence[SourceRecord],
                     targets: Sequence[TargetRecord]) -> List[MatchDecision]:
        """
        Classify every source record.

        Args:
            sources: Unresolved source records
            targets: Target records in identifier order

        Returns:
            One MatchDecision per source, in input order
        """
        logger.info(f"Classifying {len(sources)} source records against {len(targets)} targets")

        self._target_locations = {}
        decisions = []
        for source in sources:
            decision = self.classify(source, targets)
            if decision.is_match:
                best = decision.best
                logger.debug(f"'{source.name}' -> '{best.target.name}' "
                             f"(ID: {best.target.target_id}, {best.confidence}%): "
                             f"{', '.join(best.reasons)}")
            else:
                logger.debug(f"'{source.name}' has no admissible candidate")
            decisions.append(decision)

        matched = sum(1 for d in decisions if d.is_match)
        logger.info(f"Classification completed: {matched} matched, {len(decisions) - matched} unmatched")
        return decisions

    def get_classification_statistics(self, decisions: Sequence[MatchDecision]) -> Dict[str, object]:
        """
        Calculate classification statistics.

        Args:
            decisions: Decisions from ``classify_all``

        Returns:
            Dictionary with counts and best-candidate confidence distribution
        """
        matched = [d for d in decisions if d.is_match]
        statistics = {
            "total_sources": len(decisions),
            "matched": len(matched),
            "unmatched": len(decisions) - len(matched),
            "with_alternates": sum(1 for d in matched if d.alternates),
            "thresholds": self.aggregator.describe_thresholds()
        }

        if not matched:
            statistics["confidence_statistics"] = {}
            return statistics

        confidences = pd.Series([d.best.confidence for d in matched])
        statistics["confidence_statistics"] = {
            "mean_confidence": float(confidences.mean()),
            "median_confidence": float(confidences.median()),
            "min_confidence": int(confidences.min()),
            "max_confidence": int(confidences.max()),
            "p25_confidence": float(np.percentile(confidences, 25)),
            "p75_confidence": float(np.percentile(confidences, 75))
        }
        statistics["confidence_distribution"] = {
            int(k): int(v) for k, v in confidences.value_counts().sort_index().items()
        }
        return statistics
