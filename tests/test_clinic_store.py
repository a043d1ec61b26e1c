"""
Unit tests for the SQLite clinic store.
"""

import pytest
import sqlite3
import tempfile
import sys
from pathlib import Path

# Add package root to path
sys.path.append(str(Path(__file__).parent.parent))

from clinic_reconcile.errors import PersistenceError
from clinic_reconcile.models import SourceRecord, TargetRecord
from clinic_reconcile.store.clinic_store import SqliteClinicStore, enrichment_payload


class TestSqliteClinicStore:
    """Test cases for the clinic store."""

    def setup_method(self):
        """Setup test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = str(Path(self.temp_dir) / "clinics.db")
        self.store = SqliteClinicStore(self.db_path)

        self.store.insert_target(TargetRecord(2, "Sunrise Dental Care", "500 Congress Ave, Austin, TX 78701",
                                              30.2672, -97.7431, place_id="PL-2"))
        self.store.insert_target(TargetRecord(1, "Skin Solutions of Miami", "100 Biscayne Blvd, Miami, FL 33132",
                                              25.7743, -80.1937, place_id="PL-1", phone="+13055550100"))

        self.source = SourceRecord(
            "Skin Solutions Miami", "101 Biscayne Blvd, Miami, FL 33132",
            latitude=25.7752, longitude=-80.1937, place_id="PL-NEW",
            city="Miami", state="FL", enrichment={"instagram": "@skinsolutions", "verified": True}
        )

    def test_fetch_targets_ordered_by_id(self):
        """Test targets come back in identifier order."""
        targets = self.store.fetch_targets()
        assert [t.target_id for t in targets] == [1, 2]
        assert targets[0].name == "Skin Solutions of Miami"
        assert targets[0].latitude == pytest.approx(25.7743)
        assert targets[0].phone == "+13055550100"

    def test_get_target(self):
        """Test single target lookup."""
        assert self.store.get_target(2).name == "Sunrise Dental Care"
        assert self.store.get_target(99) is None

    def test_max_target_id(self):
        """Test max identifier and empty store."""
        assert self.store.max_target_id() == 2
        empty = SqliteClinicStore(str(Path(self.temp_dir) / "empty.db"))
        assert empty.max_target_id() == 0

    def test_deleted_identifier_not_reissued(self):
        """Test the watermark survives deleting the highest clinic."""
        self.store.delete_target(2)
        assert [t.target_id for t in self.store.fetch_targets()] == [1]
        assert self.store.max_target_id() == 2

    def test_duplicate_id_raises_persistence_error(self):
        """Test inserting an existing identifier is rejected."""
        with pytest.raises(PersistenceError) as exc_info:
            self.store.insert_target(TargetRecord(1, "Duplicate"))
        assert exc_info.value.operation == "insert_target"
        assert exc_info.value.context["target_id"] == 1
        assert isinstance(exc_info.value.__context__, sqlite3.IntegrityError)

    def test_enrichment_roundtrip(self):
        """Test enrichment payload is stored under the clinic id."""
        self.store.insert_enrichment(1, self.source)
        rows = self.store.fetch_enrichment(1)
        assert len(rows) == 1
        assert rows[0]["place_id"] == "PL-NEW"
        assert rows[0]["payload"]["instagram"] == "@skinsolutions"
        assert rows[0]["payload"]["verified"] is True
        assert rows[0]["payload"]["business_name"] == "Skin Solutions Miami"

    def test_delete_enrichment_idempotent(self):
        """Test deleting a linkage twice removes it once."""
        self.store.insert_enrichment(1, self.source)
        assert self.store.delete_enrichment("PL-NEW", 1) == 1
        assert self.store.delete_enrichment("PL-NEW", 1) == 0
        assert self.store.fetch_enrichment(1) == []

    def test_delete_enrichment_scoped_to_pair(self):
        """Test only the (place id, clinic id) pair is removed."""
        self.store.insert_enrichment(1, self.source)
        self.store.insert_enrichment(2, self.source)
        assert self.store.delete_enrichment("PL-NEW", 1) == 1
        assert len(self.store.fetch_enrichment(2)) == 1

    def test_delete_enrichment_without_place_id(self):
        """Test a source without place id leaves the clinic's own rows alone."""
        self.store.insert_enrichment(2, SourceRecord("Sunrise Dental Care"))
        assert self.store.delete_enrichment(None, 2) == 0
        assert len(self.store.fetch_enrichment(2)) == 1

    def test_mark_issued(self):
        """Test a burned identifier raises the watermark without a clinic."""
        self.store.mark_issued(7)
        assert self.store.max_target_id() == 7
        assert self.store.get_target(7) is None

        self.store.mark_issued(5)
        assert self.store.max_target_id() == 7

    def test_enrichment_payload(self):
        """Test payload carries core fields and extra profile fields."""
        payload = enrichment_payload(self.source)
        assert payload["place_id"] == "PL-NEW"
        assert payload["city"] == "Miami"
        assert payload["instagram"] == "@skinsolutions"


if __name__ == "__main__":
    pytest.main([__file__])
