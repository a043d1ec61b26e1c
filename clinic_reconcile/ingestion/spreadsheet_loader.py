"""
Bulk export loading for clinic_reconcile.

Reads the places bulk export (Excel, CSV or JSON lines) into a DataFrame and
converts validated rows into SourceRecords. Spreadsheet column names are
known only to this module.
"""

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from ..errors import DataError
from ..match.geo_distance import coerce_coordinate
from ..models import SourceRecord
from ..normalize.address_normalizer import AddressNormalizer

logger = logging.getLogger(__name__)

NAME_COLUMN = "business name"
ADDRESS_COLUMNS = ["full_address", "Provided Address"]

# Spreadsheet column -> SourceRecord field
COLUMN_MAP = {
    "business name": "name",
    "full_address": "address",
    "street": "street",
    "city": "city",
    "state": "state",
    "postal_code": "postal_code",
    "country": "country",
    "place_id": "place_id",
    "latitude": "latitude",
    "longitude": "longitude",
    "phone": "phone",
    "site": "website",
    "rating": "rating",
    "reviews": "review_count",
}

# Profile columns carried through to the enrichment payload
ENRICHMENT_COLUMN_MAP = {
    "google_id": "google_id",
    "cid": "cid",
    "email_1": "email",
    "facebook": "facebook",
    "instagram": "instagram",
    "linkedin": "linkedin",
    "twitter": "twitter",
    "youtube": "youtube",
    "working_hours": "working_hours",
    "business_status": "business_status",
    "verified": "verified",
    "photo": "photo",
    "logo": "logo",
    "street_view": "street_view",
    "description": "description",
    "about": "about",
    "subtypes": "subtypes",
    "category": "category",
    "google profile link": "google_profile_link",
    "reviews_link": "reviews_link",
    "booking_appointment_link": "booking_appointment_link",
    "menu_link": "menu_link",
}


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def _text(value) -> str:
    """Cell value as trimmed text; integral floats lose their '.0'."""
    if _is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _number(value) -> Optional[float]:
    if _is_blank(value):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _flag(value) -> bool:
    if isinstance(value, bool):
        return value
    return _text(value).upper() in ("TRUE", "1", "YES")


class SpreadsheetLoader:
    """
    Loads a bulk export file into a DataFrame.

    Supports .xlsx/.xls (pandas + openpyxl), .csv and JSON (array or lines).
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize loader.

        Args:
            config: ``ingestion`` configuration section
        """
        self.config = config or {}
        self.sheet_name = self.config.get("sheet_name", 0)
        self.required_columns = self.config.get("required_columns", [NAME_COLUMN])

        logger.info("Initialized SpreadsheetLoader")

    def _read(self, path: Path) -> pd.DataFrame:
        suffix = path.suffix.lower()

        if suffix in (".xlsx", ".xls"):
            return pd.read_excel(path, sheet_name=self.sheet_name)

        if suffix == ".csv":
            return pd.read_csv(path, dtype={"place_id": str, "postal_code": str,
                                            "phone": str, "cid": str})

        if suffix in (".json", ".jsonl"):
            with open(path, 'r', encoding='utf-8') as f:
                content = f.read()
            if content.lstrip().startswith("["):
                return pd.DataFrame(json.loads(content))
            return pd.DataFrame([json.loads(line) for line in content.splitlines() if line.strip()])

        raise DataError(f"Unsupported bulk file type: {suffix}", field="path", value=str(path))

    def load(self, path: str) -> pd.DataFrame:
        """
        Load a bulk export.

        Args:
            path: Path to the export file

        Returns:
            DataFrame with one row per exported clinic

        Raises:
            DataError: If the file type is unsupported or required columns are missing
        """
        file_path = Path(path)
        if not file_path.exists():
            raise DataError(f"Bulk file not found: {path}", field="path", value=path)

        df = self._read(file_path)
        df.columns = [str(column).strip() for column in df.columns]

        missing = [column for column in self.required_columns if column not in df.columns]
        if missing:
            raise DataError(f"Bulk file {path} is missing required columns: {missing}",
                            field="columns", value=missing)

        logger.info(f"Loaded {len(df)} rows from {path}")
        return df


def row_to_source_record(row: Dict[str, Any],
                         address_normalizer: Optional[AddressNormalizer] = None) -> SourceRecord:
    """
    Convert one spreadsheet row into a SourceRecord.

    Missing city/state are derived from the free-text address. Phones are
    converted to E.164 when they parse and kept as given otherwise.

    Args:
        row: Row dictionary keyed by spreadsheet column names
        address_normalizer: Normalizer used for locality, phone and ZIP code

    Returns:
        SourceRecord
    """
    normalizer = address_normalizer or AddressNormalizer()

    address = ""
    for column in ADDRESS_COLUMNS:
        address = _text(row.get(column))
        if address:
            break

    raw_city = _text(row.get("city"))
    raw_state = _text(row.get("state"))
    location = normalizer.resolve_locality(raw_city, raw_state, address)

    raw_phone = _text(row.get("phone"))
    phone = normalizer.normalize_phone(raw_phone) or raw_phone or None

    review_count = _number(row.get("reviews"))

    enrichment = {}
    for column, key in ENRICHMENT_COLUMN_MAP.items():
        if column not in row or _is_blank(row[column]):
            continue
        enrichment[key] = _flag(row[column]) if key == "verified" else _text(row[column])

    return SourceRecord(
        name=_text(row.get(NAME_COLUMN)),
        address=address,
        latitude=coerce_coordinate(row.get("latitude")),
        longitude=coerce_coordinate(row.get("longitude")),
        place_id=_text(row.get("place_id")) or None,
        phone=phone,
        website=_text(row.get("site")) or None,
        street=_text(row.get("street")),
        city=raw_city or location.city,
        state=normalizer.normalize_state(raw_state) or location.state,
        postal_code=normalizer.normalize_zipcode(row.get("postal_code")),
        country=_text(row.get("country")),
        rating=_number(row.get("rating")),
        review_count=int(review_count) if review_count is not None else None,
        enrichment=enrichment
    )


def rows_to_source_records(df: pd.DataFrame,
                           address_normalizer: Optional[AddressNormalizer] = None) -> List[SourceRecord]:
    """
    Convert validated rows into SourceRecords, in row order.

    Args:
        df: DataFrame from ``validate_source_rows``
        address_normalizer: Normalizer shared across rows

    Returns:
        List of SourceRecord
    """
    normalizer = address_normalizer or AddressNormalizer()
    records = [row_to_source_record(row, normalizer) for row in df.to_dict("records")]

    without_coordinates = sum(1 for record in records if not record.has_coordinates)
    logger.info(f"Converted {len(records)} rows to source records "
                f"({without_coordinates} without coordinates)")
    return records
