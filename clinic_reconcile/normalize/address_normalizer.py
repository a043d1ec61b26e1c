"""
Address normalization for clinic_reconcile.

Derives city/state locality from free-text clinic addresses and standardizes
state codes, ZIP codes, phone numbers and emails on incoming rows.
"""

import logging
import math
import re
from typing import Dict, NamedTuple, Optional

import phonenumbers
import usaddress
from phonenumbers import PhoneNumberFormat

logger = logging.getLogger(__name__)

STATE_ABBREVIATIONS = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "florida": "FL", "georgia": "GA", "hawaii": "HI", "idaho": "ID",
    "illinois": "IL", "indiana": "IN", "iowa": "IA", "kansas": "KS",
    "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN", "mississippi": "MS",
    "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK",
    "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT",
    "vermont": "VT", "virginia": "VA", "washington": "WA", "west virginia": "WV",
    "wisconsin": "WI", "wyoming": "WY", "district of columbia": "DC",
    "puerto rico": "PR"
}


class Location(NamedTuple):
    """City (lowercase) and two-letter state code; either may be empty."""
    city: str
    state: str


EMPTY_LOCATION = Location("", "")


def _is_missing(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return not isinstance(value, str)


class AddressNormalizer:
    """
    Normalizes clinic addresses for locality comparison.

    ``extract_location`` is a best-effort comma heuristic, not a postal
    parser: it can misfire on unusual punctuation and callers must tolerate
    empty results. ``parse_address`` uses usaddress for the richer
    component breakdown needed when a bulk row has no city/state columns.
    """

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize address normalizer with configuration.

        Args:
            config: Address normalization options (default_country, zip_regex)
        """
        self.config = config or {}
        self.default_country = self.config.get("default_country", "US")
        self.zip_regex = self.config.get("zip_regex", r"\d{5}(-\d{4})?")

        self.zip_pattern = re.compile(self.zip_regex)
        self.state_token_pattern = re.compile(r"\b([A-Z]{2})\b")
        self.punctuation_pattern = re.compile(r"[^\w\s]")
        self.whitespace_pattern = re.compile(r"\s+")

        logger.info("Initialized AddressNormalizer")

    def extract_location(self, address) -> Location:
        """
        Derive city and state from a free-text address.

        Splits on commas and inspects the last two segments. The state is the
        first standalone two-letter uppercase token in the last segment, or
        failing that in the second-to-last; the city is the second-to-last
        segment with that kind of token removed.

        Args:
            address: Address like "123 Main St, Miami, FL 33139"

        Returns:
            Location with lowercase city and uppercase state code
        """
        if _is_missing(address):
            return EMPTY_LOCATION

        parts = [part.strip() for part in address.split(",")]
        if len(parts) < 2:
            return EMPTY_LOCATION

        last_part = parts[-1]
        second_last_part = parts[-2]

        state_match = (self.state_token_pattern.search(last_part)
                       or self.state_token_pattern.search(second_last_part))
        state = state_match.group(1) if state_match else ""

        city = self.state_token_pattern.sub("", second_last_part, count=1).strip()

        return Location(self.normalize_city(city), state.upper())

    def parse_address(self, address) -> Dict[str, str]:
        """
        Parse address into components using usaddress.

        Args:
            address: Raw address string

        Returns:
            Dictionary with street, city, state and zipcode components
        """
        components = {
            "street": "",
            "city": "",
            "state": "",
            "zipcode": ""
        }
        if _is_missing(address) or not address.strip():
            return components

        try:
            parsed, _ = usaddress.tag(address)
        except usaddress.RepeatedLabelError as e:
            logger.warning(f"Failed to parse address '{address}': {e}")
            return components

        street_parts = [
            parsed.get(label, "")
            for label in ("AddressNumber", "StreetNamePreDirectional", "StreetName",
                          "StreetNamePostType", "StreetNamePostDirectional")
        ]
        components["street"] = " ".join(part for part in street_parts if part)
        components["city"] = parsed.get("PlaceName", "")
        components["state"] = parsed.get("StateName", "")
        components["zipcode"] = parsed.get("ZipCode", "")
        return components

    def normalize_city(self, city) -> str:
        """Lowercase city name with punctuation and extra spaces removed."""
        if _is_missing(city):
            return ""

        city = self.punctuation_pattern.sub(' ', city)
        city = self.whitespace_pattern.sub(' ', city).strip()
        return city.lower()

    def normalize_state(self, state) -> str:
        """
        Normalize state name/abbreviation.

        Args:
            state: Raw state name or abbreviation

        Returns:
            Normalized 2-letter state abbreviation, or "" if unrecognised
        """
        if _is_missing(state):
            return ""

        state = state.strip().lower()

        if len(state) == 2 and state.isalpha():
            return state.upper()

        return STATE_ABBREVIATIONS.get(state, "")

    def normalize_zipcode(self, zipcode) -> str:
        """Normalize ZIP code to 5-digit format."""
        if zipcode is None or (isinstance(zipcode, float) and math.isnan(zipcode)):
            return ""
        if isinstance(zipcode, (int, float)):
            zipcode = f"{int(zipcode):05d}"
        if not isinstance(zipcode, str):
            return ""

        match = self.zip_pattern.search(zipcode)
        if match:
            return match.group(0)[:5]

        return ""

    def normalize_phone(self, phone) -> str:
        """
        Normalize phone number to E164 format.

        Args:
            phone: Raw phone number

        Returns:
            E164 phone number, or "" when the number cannot be parsed or is invalid
        """
        if _is_missing(phone) or not phone.strip():
            return ""

        try:
            parsed_phone = phonenumbers.parse(phone, self.default_country)
        except phonenumbers.NumberParseException as e:
            logger.warning(f"Failed to normalize phone '{phone}': {e}")
            return ""

        if not phonenumbers.is_valid_number(parsed_phone):
            return ""

        return phonenumbers.format_number(parsed_phone, PhoneNumberFormat.E164)

    def normalize_email(self, email) -> str:
        """Lowercase email address, or "" if it is not plausibly an address."""
        if _is_missing(email):
            return ""

        email = email.strip().lower()

        if "@" in email and "." in email.split("@")[1]:
            return email
        return ""

    def resolve_locality(self, city, state, address) -> Location:
        """
        Resolve a source row's locality.

        Explicit city/state columns win. Whatever is still missing is taken
        from a usaddress parse of the free-text address, and finally from the
        comma heuristic.

        Args:
            city: City column value (may be missing)
            state: State column value (may be missing)
            address: Free-text address

        Returns:
            Location with lowercase city and uppercase state code
        """
        resolved_city = self.normalize_city(city)
        resolved_state = self.normalize_state(state)

        if resolved_city and resolved_state:
            return Location(resolved_city, resolved_state)

        parsed = self.parse_address(address)
        resolved_city = resolved_city or self.normalize_city(parsed["city"])
        resolved_state = resolved_state or self.normalize_state(parsed["state"])

        if not (resolved_city and resolved_state):
            fallback = self.extract_location(address)
            resolved_city = resolved_city or fallback.city
            resolved_state = resolved_state or fallback.state

        return Location(resolved_city, resolved_state)
