"""
Unit tests for report writing and serialization.
"""

import json
import pytest
import tempfile
import sys
from pathlib import Path

# Add package root to path
sys.path.append(str(Path(__file__).parent.parent))

from clinic_reconcile.errors import DataError, ReportIntegrityError
from clinic_reconcile.models import MatchCandidate, MatchDecision, MatchOutcome, SourceRecord, TargetRecord
from clinic_reconcile.reporting.report_writer import (
    ReconciliationRecordStore, ReconciliationReportWriter, load_report
)
from clinic_reconcile.reporting.serialization import (
    SCHEMA_VERSION, correction_from_dict, source_from_dict, source_to_dict
)


def build_decisions():
    source_a = SourceRecord("Skin Solutions Miami", "101 Biscayne Blvd, Miami, FL 33132",
                            latitude=25.7752, longitude=-80.1937, place_id="PL-NEW",
                            city="Miami", state="FL", enrichment={"instagram": "@skin"})
    source_b = SourceRecord("ABC Wellness Clinic", "1600 Broadway, Denver, CO 80202",
                            latitude=39.7392, longitude=-104.9903)

    best = MatchCandidate(
        source=source_a,
        target=TargetRecord(1, "Skin Solutions of Miami", "100 Biscayne Blvd, Miami, FL 33132",
                            25.7743, -80.1937),
        name_score=93, distance_km=0.100073, same_city=True, same_state=True,
        confidence=110, reasons=["Name match: 93%", "Same location: 0.10km", "Same state", "Same city"],
        admissible=True
    )
    alternate = MatchCandidate(
        source=source_a,
        target=TargetRecord(7, "Skin Solutions Kendall", "", None, None),
        name_score=80, distance_km=None, same_city=False, same_state=True,
        confidence=40, reasons=["Name similar: 80%", "Same state"], admissible=True
    )

    return [
        MatchDecision(source_a, MatchOutcome.MATCHED, best=best, alternates=[alternate],
                      source_city="miami", source_state="FL"),
        MatchDecision(source_b, MatchOutcome.UNMATCHED, source_city="denver", source_state="CO"),
    ]


class TestReportWriter:
    """Test cases for the report writer."""

    def setup_method(self):
        """Setup test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.record_store = ReconciliationRecordStore(str(Path(self.temp_dir) / "runs.db"))
        self.writer = ReconciliationReportWriter(str(Path(self.temp_dir) / "reports"), self.record_store)
        self.decisions = build_decisions()

    def test_report_shape(self):
        """Test the report carries summary, matches and no-matches."""
        artifact = self.writer.write(self.decisions, total_rows=3, total_unmatched=2)
        report = json.loads(artifact.path.read_text())

        assert report["schemaVersion"] == SCHEMA_VERSION
        assert report["runId"] == artifact.run_id
        assert report["summary"] == {"totalUnmatched": 2, "duplicatesFound": 1, "newClinics": 1}

        match = report["matches"][0]
        assert match["sourceName"] == "Skin Solutions Miami"
        assert match["sourceRecord"]["placeId"] == "PL-NEW"
        assert match["bestMatch"]["targetRecord"]["targetId"] == 1
        assert match["bestMatch"]["confidence"] == 110
        assert match["bestMatch"]["nameScore"] == 93
        assert match["bestMatch"]["distanceKm"] == pytest.approx(0.1001)
        assert match["bestMatch"]["reasons"][1] == "Same location: 0.10km"
        assert match["alternateMatches"][0]["distanceKm"] is None

        no_match = report["noMatches"][0]
        assert no_match["sourceName"] == "ABC Wellness Clinic"
        assert no_match["city"] == "denver"
        assert no_match["state"] == "CO"

    def test_runs_never_overwrite(self):
        """Test two runs produce two distinct files."""
        first = self.writer.write(self.decisions, total_rows=3, total_unmatched=2)
        second = self.writer.write(self.decisions, total_rows=3, total_unmatched=2)
        assert first.path != second.path
        assert first.path.exists() and second.path.exists()
        assert first.path.name.startswith("matching-report-")

    def test_zero_rows_is_fatal(self):
        """Test an empty input refuses to produce a report."""
        with pytest.raises(ReportIntegrityError):
            self.writer.write([], total_rows=0, total_unmatched=0)
        assert not (Path(self.temp_dir) / "reports").exists()
        assert self.record_store.list_runs().empty

    def test_zero_unresolved_still_reports(self):
        """Test a run where every row was already linked."""
        artifact = self.writer.write([], total_rows=5, total_unmatched=0)
        assert artifact.report["summary"] == {"totalUnmatched": 0, "duplicatesFound": 0, "newClinics": 0}

    def test_matched_without_best_is_fatal(self):
        """Test an inconsistent decision is rejected."""
        broken = MatchDecision(SourceRecord("X"), MatchOutcome.MATCHED)
        with pytest.raises(ReportIntegrityError):
            self.writer.write([broken], total_rows=1, total_unmatched=1)

    def test_record_store(self):
        """Test runs and decisions are queryable."""
        artifact = self.writer.write(self.decisions, total_rows=3, total_unmatched=2)

        runs = self.record_store.list_runs()
        assert list(runs["run_id"]) == [artifact.run_id]
        assert runs.iloc[0]["duplicates_found"] == 1
        assert self.record_store.schema_version() == SCHEMA_VERSION

        decisions = self.record_store.get_run_decisions(artifact.run_id)
        assert list(decisions["outcome"]) == ["matched", "unmatched"]
        assert decisions.iloc[0]["best_target_id"] == 1

        candidates = self.record_store.get_run_candidates(artifact.run_id)
        assert list(candidates["rank"]) == [0, 1]
        assert list(candidates["target_id"]) == [1, 7]

    def test_load_report(self):
        """Test a written report reads back."""
        artifact = self.writer.write(self.decisions, total_rows=3, total_unmatched=2)
        report = load_report(str(artifact.path))
        assert report["runId"] == artifact.run_id

    def test_load_report_rejects_garbage(self):
        """Test unreadable or incomplete reports are rejected."""
        bad_json = Path(self.temp_dir) / "bad.json"
        bad_json.write_text("{not json")
        with pytest.raises(ReportIntegrityError):
            load_report(str(bad_json))

        incomplete = Path(self.temp_dir) / "incomplete.json"
        incomplete.write_text(json.dumps({"summary": {}}))
        with pytest.raises(ReportIntegrityError):
            load_report(str(incomplete))

        with pytest.raises(ReportIntegrityError):
            load_report(str(Path(self.temp_dir) / "missing.json"))


class TestSerialization:
    """Test cases for the wire format."""

    def test_source_roundtrip(self):
        """Test a source record survives its wire form."""
        source = build_decisions()[0].source
        assert source_from_dict(source_to_dict(source)) == source
        assert source_from_dict(source_to_dict(source)).enrichment == {"instagram": "@skin"}

    def test_source_without_name_rejected(self):
        """Test a nameless source record is rejected."""
        with pytest.raises(DataError):
            source_from_dict({"name": "  "})

    def test_correction_from_dict(self):
        """Test a correction entry becomes a pending action."""
        source = build_decisions()[0].source
        action = correction_from_dict({
            "sourceRecord": source_to_dict(source),
            "sourceName": source.name,
            "wrongTargetId": "12",
            "wrongTargetName": "Wrong Clinic",
            "distanceKm": 812.4
        }, action_id="CORR-1")

        assert action.action_id == "CORR-1"
        assert action.wrong_target_id == 12
        assert action.source.place_id == "PL-NEW"
        assert action.distance_km == pytest.approx(812.4)

    @pytest.mark.parametrize("entry", [
        {"wrongTargetId": 1},
        {"sourceRecord": {"name": "A"}},
        {"sourceRecord": {"name": "A"}, "wrongTargetId": "abc"},
        "not a dict",
    ])
    def test_correction_from_dict_rejects(self, entry):
        """Test malformed correction entries raise DataError."""
        with pytest.raises(DataError):
            correction_from_dict(entry, action_id="CORR-1")


if __name__ == "__main__":
    pytest.main([__file__])
