"""
Confidence aggregation for clinic_reconcile.

Combines name, distance and locality signals into a single integer
confidence with a human-readable reason trail, and decides whether a
candidate is admissible for ranking.
"""

import logging
from typing import Dict, List, Optional, Tuple

from ..config import ScoringConfig
from ..models import MatchCandidate

logger = logging.getLogger(__name__)


class ConfidenceAggregator:
    """
    Heuristic confidence scorer for (source, target) clinic pairs.

    Each axis contributes at most one tier: the highest name tier, the
    closest distance tier, plus independent same-state and same-city bonuses.
    The result is fully determined by the four inputs.
    """

    def __init__(self, config: Optional[ScoringConfig] = None):
        """
        Initialize aggregator with scoring thresholds.

        Args:
            config: Scoring configuration (defaults to the named constants)
        """
        self.config = config or ScoringConfig()
        logger.info("Initialized ConfidenceAggregator")

    def calculate_confidence(self, name_score: int, distance_km: Optional[float],
                             same_city: bool, same_state: bool) -> Tuple[int, List[str]]:
        """
        Calculate confidence and the ordered reasons that produced it.

        Args:
            name_score: Best name score (0-100)
            distance_km: Distance in km, or None when unknown
            same_city: Whether the localities share a city
            same_state: Whether the localities share a state

        Returns:
            Tuple of (confidence, reasons)
        """
        cfg = self.config
        confidence = 0
        reasons = []

        if name_score >= cfg.name_match_threshold:
            confidence += cfg.name_match_points
            reasons.append(f"Name match: {name_score}%")
        elif name_score >= cfg.name_similar_threshold:
            confidence += cfg.name_similar_points
            reasons.append(f"Name similar: {name_score}%")
        elif name_score >= cfg.name_partial_threshold:
            confidence += cfg.name_partial_points
            reasons.append(f"Name partial: {name_score}%")

        if distance_km is not None:
            if distance_km < cfg.same_location_km:
                confidence += cfg.same_location_points
                reasons.append(f"Same location: {distance_km:.2f}km")
            elif distance_km < cfg.nearby_km:
                confidence += cfg.nearby_points
                reasons.append(f"Nearby: {distance_km:.2f}km")

        if same_state:
            confidence += cfg.same_state_points
            reasons.append("Same state")

        if same_city:
            confidence += cfg.same_city_points
            reasons.append("Same city")

        return confidence, reasons

    def is_admissible(self, confidence: int, name_score: int, same_state: bool) -> bool:
        """
        Decide whether a candidate is retained for ranking.

        A confidence floor, or a strong name match inside the same state
        even when coordinates are missing or addresses are noisy.
        """
        return (confidence >= self.config.min_confidence
                or (name_score >= self.config.name_with_state_min and same_state))

    def score_candidate(self, candidate: MatchCandidate) -> MatchCandidate:
        """
        Fill in confidence, reasons and admissibility on a candidate.

        Args:
            candidate: Candidate with its four scoring inputs set

        Returns:
            The same candidate, scored
        """
        confidence, reasons = self.calculate_confidence(
            candidate.name_score, candidate.distance_km,
            candidate.same_city, candidate.same_state
        )
        candidate.confidence = confidence
        candidate.reasons = reasons
        candidate.admissible = self.is_admissible(
            confidence, candidate.name_score, candidate.same_state
        )
        return candidate

    def describe_thresholds(self) -> Dict[str, float]:
        """Thresholds in effect, for logging and reports."""
        cfg = self.config
        return {
            "name_match": cfg.name_match_threshold,
            "name_similar": cfg.name_similar_threshold,
            "name_partial": cfg.name_partial_threshold,
            "same_location_km": cfg.same_location_km,
            "nearby_km": cfg.nearby_km,
            "min_confidence": cfg.min_confidence,
            "name_with_state_min": cfg.name_with_state_min
        }
