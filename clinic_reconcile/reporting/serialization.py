"""
Wire format for reconciliation artifacts.

The only place where records are translated to and from the camelCase keys
used by report and correction files.
"""

import logging
from typing import Any, Dict, List, Optional

from ..errors import DataError
from ..match.geo_distance import coerce_coordinate
from ..models import CorrectionAction, MatchCandidate, MatchDecision, SourceRecord, TargetRecord

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def _round(value: Optional[float], digits: int = 4) -> Optional[float]:
    return None if value is None else round(value, digits)


def source_to_dict(source: SourceRecord) -> Dict[str, Any]:
    return {
        "name": source.name,
        "address": source.address,
        "latitude": source.latitude,
        "longitude": source.longitude,
        "placeId": source.place_id,
        "phone": source.phone,
        "website": source.website,
        "street": source.street,
        "city": source.city,
        "state": source.state,
        "postalCode": source.postal_code,
        "country": source.country,
        "rating": source.rating,
        "reviewCount": source.review_count,
        "enrichment": dict(source.enrichment),
    }


def source_from_dict(data: Dict[str, Any]) -> SourceRecord:
    """
    Rebuild a SourceRecord from its wire form.

    Raises:
        DataError: If the record has no name
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise DataError("Source record without a name", field="name", value=data.get("name"))

    review_count = data.get("reviewCount")
    return SourceRecord(
        name=name,
        address=data.get("address") or "",
        latitude=coerce_coordinate(data.get("latitude")),
        longitude=coerce_coordinate(data.get("longitude")),
        place_id=data.get("placeId"),
        phone=data.get("phone"),
        website=data.get("website"),
        street=data.get("street") or "",
        city=data.get("city") or "",
        state=data.get("state") or "",
        postal_code=data.get("postalCode") or "",
        country=data.get("country") or "",
        rating=data.get("rating"),
        review_count=int(review_count) if review_count is not None else None,
        enrichment=dict(data.get("enrichment") or {})
    )


def target_to_dict(target: TargetRecord) -> Dict[str, Any]:
    return {
        "targetId": target.target_id,
        "name": target.name,
        "address": target.address,
        "latitude": target.latitude,
        "longitude": target.longitude,
        "placeId": target.place_id,
        "phone": target.phone,
        "website": target.website,
    }


def candidate_to_dict(candidate: MatchCandidate) -> Dict[str, Any]:
    return {
        "targetRecord": target_to_dict(candidate.target),
        "confidence": candidate.confidence,
        "nameScore": candidate.name_score,
        "distanceKm": _round(candidate.distance_km),
        "reasons": list(candidate.reasons),
    }


def match_to_dict(decision: MatchDecision) -> Dict[str, Any]:
    return {
        "sourceRecord": source_to_dict(decision.source),
        "sourceName": decision.source.name,
        "bestMatch": candidate_to_dict(decision.best),
        "alternateMatches": [candidate_to_dict(c) for c in decision.alternates],
    }


def no_match_to_dict(decision: MatchDecision) -> Dict[str, Any]:
    return {
        "sourceRecord": source_to_dict(decision.source),
        "sourceName": decision.source.name,
        "address": decision.source.address,
        "city": decision.source_city,
        "state": decision.source_state,
    }


def report_to_dict(run_id: str, timestamp: str, total_unmatched: int,
                   decisions: List[MatchDecision]) -> Dict[str, Any]:
    """
    Build the review report for a matching run.

    Args:
        run_id: Run identifier
        timestamp: ISO-8601 run timestamp
        total_unmatched: Source rows scanned (not already linked by place id)
        decisions: Classification decisions, in source order

    Returns:
        Report dictionary ready for JSON encoding
    """
    matches = [match_to_dict(d) for d in decisions if d.is_match]
    no_matches = [no_match_to_dict(d) for d in decisions if not d.is_match]

    return {
        "schemaVersion": SCHEMA_VERSION,
        "runId": run_id,
        "timestamp": timestamp,
        "summary": {
            "totalUnmatched": total_unmatched,
            "duplicatesFound": len(matches),
            "newClinics": len(no_matches),
        },
        "matches": matches,
        "noMatches": no_matches,
    }


def correction_to_dict(action: CorrectionAction) -> Dict[str, Any]:
    return {
        "sourceRecord": source_to_dict(action.source),
        "sourceName": action.source.name,
        "wrongTargetId": action.wrong_target_id,
        "wrongTargetName": action.wrong_target_name,
        "distanceKm": _round(action.distance_km),
    }


def correction_from_dict(data: Dict[str, Any], action_id: str) -> CorrectionAction:
    """
    Rebuild a CorrectionAction from a confirmed correction entry.

    Raises:
        DataError: If the entry lacks a source record or wrong target id
    """
    if not isinstance(data, dict) or not isinstance(data.get("sourceRecord"), dict):
        raise DataError("Correction entry without sourceRecord", field="sourceRecord")

    wrong_target_id = data.get("wrongTargetId")
    if wrong_target_id is None or isinstance(wrong_target_id, bool):
        raise DataError("Correction entry without wrongTargetId", field="wrongTargetId",
                        value=wrong_target_id)
    try:
        wrong_target_id = int(wrong_target_id)
    except (TypeError, ValueError):
        raise DataError(f"Invalid wrongTargetId: {wrong_target_id!r}", field="wrongTargetId",
                        value=wrong_target_id)

    distance = data.get("distanceKm")
    return CorrectionAction(
        action_id=action_id,
        source=source_from_dict(data["sourceRecord"]),
        wrong_target_id=wrong_target_id,
        wrong_target_name=data.get("wrongTargetName") or "",
        distance_km=float(distance) if distance is not None else None
    )
