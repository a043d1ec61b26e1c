"""
Record types shared across the reconciliation workflow.

One canonical snake_case shape per entity. Spreadsheet column names and the
camelCase report keys are translated at the ingestion and serialization
boundaries only.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class SourceRecord:
    """One externally supplied candidate clinic from a bulk export."""

    name: str
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    place_id: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""
    rating: Optional[float] = None
    review_count: Optional[int] = None
    enrichment: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def with_coordinates(self, latitude: float, longitude: float) -> "SourceRecord":
        return replace(self, latitude=latitude, longitude=longitude)


@dataclass(frozen=True)
class TargetRecord:
    """One canonical clinic owned by the clinic store."""

    target_id: int
    name: str
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    place_id: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None


@dataclass
class MatchCandidate:
    """A scored (source, target) pair."""

    source: SourceRecord
    target: TargetRecord
    name_score: int
    distance_km: Optional[float]
    same_city: bool
    same_state: bool
    confidence: int = 0
    reasons: List[str] = field(default_factory=list)
    admissible: bool = False


class MatchOutcome(str, Enum):
    MATCHED = "matched"
    UNMATCHED = "unmatched"


@dataclass
class MatchDecision:
    """Classification outcome for one source record."""

    source: SourceRecord
    outcome: MatchOutcome
    best: Optional[MatchCandidate] = None
    alternates: List[MatchCandidate] = field(default_factory=list)
    source_city: str = ""
    source_state: str = ""

    @property
    def is_match(self) -> bool:
        return self.outcome == MatchOutcome.MATCHED

    @property
    def is_creation_candidate(self) -> bool:
        return self.outcome == MatchOutcome.UNMATCHED


class CorrectionState(str, Enum):
    PENDING = "pending"
    REVERSAL_DONE = "reversal_done"
    CREATED = "created"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class CorrectionAction:
    """
    Human-confirmed instruction to undo one wrong (source, target) pairing.

    The action moves through ``CorrectionState`` as the applier works on it;
    ``new_target_id`` is set once an identifier has been reserved.
    """

    action_id: str
    source: SourceRecord
    wrong_target_id: int
    wrong_target_name: str = ""
    distance_km: Optional[float] = None
    state: CorrectionState = CorrectionState.PENDING
    new_target_id: Optional[int] = None
    linkage_rows_removed: int = 0
    reverted: bool = False
    error: Optional[str] = None
    needs_manual_followup: bool = False
