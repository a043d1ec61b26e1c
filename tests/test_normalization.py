"""
Unit tests for normalization modules.
"""

import pytest
import sys
from pathlib import Path

# Add package root to path
sys.path.append(str(Path(__file__).parent.parent))

from clinic_reconcile.normalize.name_normalizer import NameNormalizer, normalize_string
from clinic_reconcile.normalize.address_normalizer import AddressNormalizer, Location


class TestNormalizeString:
    """Test cases for free-text canonicalization."""

    def test_normalize_basic(self):
        """Test lowercase, punctuation and whitespace handling."""
        assert normalize_string("  Skin   Solutions, Inc. ") == "skin solutions inc"
        assert normalize_string("Dr. Smith's\tClinic") == "dr smiths clinic"

    def test_normalize_missing(self):
        """Test missing input yields an empty string."""
        assert normalize_string(None) == ""
        assert normalize_string(float("nan")) == ""
        assert normalize_string("") == ""
        assert normalize_string("!!!") == ""

    def test_normalize_non_string(self):
        """Test non-string input is stringified."""
        assert normalize_string(12345) == "12345"

    @pytest.mark.parametrize("text", [
        None, "", "  A  B  ", "Skin Solutions of Miami", "O'Brien & Sons, LLC", "Café  Médical"
    ])
    def test_normalize_idempotent(self, text):
        """Test normalizing twice equals normalizing once."""
        once = normalize_string(text)
        assert normalize_string(once) == once


class TestNameNormalizer:
    """Test cases for name similarity."""

    def setup_method(self):
        """Setup test fixtures."""
        self.normalizer = NameNormalizer()

    def test_identical_names_score_100(self):
        """Test identical names after normalization."""
        sim = self.normalizer.calculate_name_similarity("Skin Solutions Miami", "skin solutions, miami")
        assert sim["ratio"] == 100
        assert sim["best"] == 100

    def test_word_order_insensitive(self):
        """Test token sort handles reordered words."""
        sim = self.normalizer.calculate_name_similarity("Miami Skin Solutions", "Skin Solutions Miami")
        assert sim["token_sort_ratio"] == 100
        assert sim["best"] == 100

    def test_best_is_max_of_strategies(self):
        """Test best equals the maximum strategy score."""
        sim = self.normalizer.calculate_name_similarity("Skin Solutions Miami", "Skin Solutions of Miami")
        assert sim["best"] == max(sim["ratio"], sim["partial_ratio"], sim["token_sort_ratio"])
        assert sim["best"] >= 90

    def test_empty_name_scores_zero(self):
        """Test an empty name never matches anything."""
        assert self.normalizer.best_name_score("", "Skin Solutions") == 0
        assert self.normalizer.best_name_score(None, None) == 0

    def test_scores_in_range(self):
        """Test scores stay on the 0-100 scale."""
        sim = self.normalizer.calculate_name_similarity("ABC Wellness Clinic", "Zyx Podiatry")
        for value in sim.values():
            assert 0 <= value <= 100


class TestAddressNormalizer:
    """Test cases for address normalization."""

    def setup_method(self):
        """Setup test fixtures."""
        self.normalizer = AddressNormalizer({"default_country": "US"})

    def test_extract_location_basic(self):
        """Test city and state from a standard address."""
        location = self.normalizer.extract_location("123 Main St, Miami, FL 33139")
        assert location == Location("miami", "FL")

    def test_extract_location_state_in_second_last(self):
        """Test state found next to the city."""
        location = self.normalizer.extract_location("Suite 5, Tampa FL, 33602")
        assert location.state == "FL"
        assert location.city == "tampa"

    def test_extract_location_missing(self):
        """Test degenerate input yields empty locality."""
        assert self.normalizer.extract_location(None) == Location("", "")
        assert self.normalizer.extract_location("") == Location("", "")
        assert self.normalizer.extract_location("No commas here") == Location("", "")

    def test_extract_location_no_state(self):
        """Test address without a state token."""
        location = self.normalizer.extract_location("12 Rue de Rivoli, Paris, 75001")
        assert location.state == ""
        assert location.city == "paris"

    def test_normalize_state(self):
        """Test state normalization."""
        assert self.normalizer.normalize_state("Florida") == "FL"
        assert self.normalizer.normalize_state("fl") == "FL"
        assert self.normalizer.normalize_state("New York") == "NY"
        assert self.normalizer.normalize_state("Narnia") == ""
        assert self.normalizer.normalize_state(None) == ""

    def test_normalize_zipcode(self):
        """Test ZIP code normalization."""
        assert self.normalizer.normalize_zipcode("33139-1234") == "33139"
        assert self.normalizer.normalize_zipcode(2134) == "02134"
        assert self.normalizer.normalize_zipcode(None) == ""
        assert self.normalizer.normalize_zipcode("n/a") == ""

    def test_normalize_phone(self):
        """Test phone normalization to E164."""
        assert self.normalizer.normalize_phone("(212) 736-5000") == "+12127365000"
        assert self.normalizer.normalize_phone("212.736.5000") == "+12127365000"
        assert self.normalizer.normalize_phone("call us") == ""
        assert self.normalizer.normalize_phone(None) == ""

    def test_normalize_email(self):
        """Test email normalization."""
        assert self.normalizer.normalize_email(" Front.Desk@Clinic.COM ") == "front.desk@clinic.com"
        assert self.normalizer.normalize_email("not-an-email") == ""

    def test_parse_address(self):
        """Test usaddress component parsing."""
        components = self.normalizer.parse_address("600 N Wolfe St, Baltimore, MD 21287")
        assert components["city"] == "Baltimore"
        assert components["state"] == "MD"
        assert components["zipcode"] == "21287"
        assert components["street"].startswith("600")

    def test_resolve_locality_prefers_columns(self):
        """Test explicit columns win over the address."""
        location = self.normalizer.resolve_locality("Coral Gables", "Florida",
                                                    "123 Main St, Miami, FL 33139")
        assert location == Location("coral gables", "FL")

    def test_resolve_locality_from_address(self):
        """Test missing columns are derived from the address."""
        location = self.normalizer.resolve_locality(None, None, "600 N Wolfe St, Baltimore, MD 21287")
        assert location == Location("baltimore", "MD")

    def test_resolve_locality_nothing_known(self):
        """Test a record with no locality at all."""
        assert self.normalizer.resolve_locality(None, None, None) == Location("", "")


if __name__ == "__main__":
    pytest.main([__file__])
