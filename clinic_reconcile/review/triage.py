"""
Review triage for clinic_reconcile.

Helps a reviewer work through a matching report: separates low-confidence
matches, suggests a verdict for each and drafts the correction file that the
reviewer edits and confirms. Nothing here changes the clinic store.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..audit.audit_logger import AuditLogger
from ..errors import DataError
from ..match.geo_distance import haversine_km
from ..merge.correction_applier import generate_action_id
from ..models import CorrectionAction
from ..reporting.serialization import correction_from_dict

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_THRESHOLD = 60

# Verdict rules, in the order they are tried
SAME_AREA_KM = 50
DIFFERENT_LOCATION_KM = 100
SAME_LOCATION_KM = 10
EXACT_NAME_SCORE = 100
VERY_HIGH_NAME_SCORE = 95
LOW_NAME_SCORE = 85


class Verdict(str, Enum):
    CORRECT = "correct"
    WRONG = "wrong"
    PROBABLY_CORRECT = "probably_correct"


def flag_low_confidence(report: Dict[str, Any],
                        threshold: int = LOW_CONFIDENCE_THRESHOLD) -> Tuple[List[Dict], List[Dict]]:
    """
    Split report matches by best-candidate confidence.

    Args:
        report: Report from ``load_report``
        threshold: Matches below this confidence are suspicious

    Returns:
        Tuple of (suspicious_matches, confident_matches)
    """
    suspicious = []
    confident = []
    for match in report.get("matches", []):
        if match["bestMatch"]["confidence"] < threshold:
            suspicious.append(match)
        else:
            confident.append(match)

    logger.info(f"Flagged {len(suspicious)} matches below {threshold}% confidence "
                f"({len(confident)} at or above)")
    return suspicious, confident


def match_distance(match: Dict[str, Any]) -> Optional[float]:
    """Distance of the best candidate, recomputed from coordinates when absent."""
    best = match["bestMatch"]
    if best.get("distanceKm") is not None:
        return best["distanceKm"]

    source = match.get("sourceRecord") or {}
    target = best.get("targetRecord") or {}
    return haversine_km(source.get("latitude"), source.get("longitude"),
                        target.get("latitude"), target.get("longitude"))


def suggest_verdict(match: Dict[str, Any]) -> Tuple[Verdict, str]:
    """
    Suggest a verdict for a reported match.

    Args:
        match: One entry of the report's ``matches``

    Returns:
        Tuple of (verdict, reason)
    """
    name_score = match["bestMatch"]["nameScore"]
    distance = match_distance(match)
    known = distance is not None

    if name_score == EXACT_NAME_SCORE and known and distance < SAME_AREA_KM:
        return Verdict.CORRECT, "Exact name match, same general area"
    if name_score >= VERY_HIGH_NAME_SCORE and known and distance < SAME_AREA_KM:
        return Verdict.CORRECT, "Very high name match, same area"
    if known and distance > DIFFERENT_LOCATION_KM:
        return Verdict.WRONG, f"{distance:.0f}km apart, different locations"
    if name_score < LOW_NAME_SCORE:
        return Verdict.WRONG, "Low name similarity, likely different clinics"
    if known and distance < SAME_LOCATION_KM:
        return Verdict.CORRECT, f"Same location (within {SAME_LOCATION_KM}km)"

    distance_text = f"{distance:.1f}km" if known else "unknown"
    if name_score >= VERY_HIGH_NAME_SCORE:
        return Verdict.PROBABLY_CORRECT, f"Uncertain, distance {distance_text}; {name_score}% name match"
    return Verdict.WRONG, f"Uncertain, distance {distance_text}; treated as wrong"


def _draft_entry(match: Dict[str, Any], verdict: Verdict, reason: str) -> Dict[str, Any]:
    best = match["bestMatch"]
    return {
        "sourceRecord": match["sourceRecord"],
        "sourceName": match["sourceName"],
        "wrongTargetId": best["targetRecord"]["targetId"],
        "wrongTargetName": best["targetRecord"]["name"],
        "distanceKm": match_distance(match),
        "confidence": best["confidence"],
        "nameScore": best["nameScore"],
        "verdict": verdict.value,
        "reason": reason,
    }


def build_correction_draft(matches: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Sort matches into a draft for the reviewer.

    Args:
        matches: Report matches to review (typically the suspicious ones)

    Returns:
        ``{"definitelyWrong": [...], "probablyCorrect": [...]}``
    """
    draft = {"definitelyWrong": [], "probablyCorrect": []}
    for match in matches:
        verdict, reason = suggest_verdict(match)
        bucket = "definitelyWrong" if verdict == Verdict.WRONG else "probablyCorrect"
        draft[bucket].append(_draft_entry(match, verdict, reason))
    return draft


def write_correction_draft(report: Dict[str, Any], output_path: str,
                           threshold: int = LOW_CONFIDENCE_THRESHOLD,
                           audit_logger: Optional[AuditLogger] = None) -> Dict[str, List[Dict[str, Any]]]:
    """
    Draft the correction file for the suspicious matches of a report.

    Args:
        report: Report from ``load_report``
        output_path: Where to write the draft
        threshold: Confidence below which a match is reviewed
        audit_logger: Records each suggested verdict when given

    Returns:
        The draft that was written
    """
    suspicious, _ = flag_low_confidence(report, threshold)
    draft = build_correction_draft(suspicious)

    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(draft, f, indent=2)

    if audit_logger is not None:
        for entry in draft["definitelyWrong"] + draft["probablyCorrect"]:
            audit_logger.record_review_decision(
                entry["sourceRecord"].get("placeId"), entry["sourceName"], entry["wrongTargetId"],
                decision=entry["verdict"].upper(), reviewer="triage", comment=entry["reason"]
            )

    logger.info(f"Correction draft saved to: {output_path} "
                f"({len(draft['definitelyWrong'])} wrong, {len(draft['probablyCorrect'])} probably correct)")
    return draft


def load_corrections(path: str) -> List[CorrectionAction]:
    """
    Read a confirmed correction file.

    Only ``definitelyWrong`` entries become actions. Repeated entries for the
    same (source, wrong target) pair are collapsed.

    Args:
        path: Path to the confirmed correction file

    Returns:
        Pending CorrectionActions, in file order

    Raises:
        DataError: If the file or any entry is malformed
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise DataError(f"Cannot read corrections file {path}: {e}", field="path", value=path)

    if not isinstance(data, dict) or not isinstance(data.get("definitelyWrong"), list):
        raise DataError(f"Corrections file {path} has no definitelyWrong list",
                        field="definitelyWrong")

    actions = []
    seen = set()
    for index, entry in enumerate(data["definitelyWrong"]):
        try:
            action = correction_from_dict(entry, action_id="")
        except DataError as e:
            raise DataError(f"Correction entry {index} in {path}: {e}", field=e.field, value=e.value)

        action.action_id = generate_action_id(action.source, action.wrong_target_id)
        if action.action_id in seen:
            logger.warning(f"Skipping repeated correction for '{action.source.name}' "
                           f"(target {action.wrong_target_id})")
            continue
        seen.add(action.action_id)
        actions.append(action)

    logger.info(f"Loaded {len(actions)} corrections from {path}")
    return actions
