"""
Bulk row validation for clinic_reconcile.

Checks exported rows for the data quality problems that break matching:
missing names, unusable coordinates and repeated place ids. Rows without a
name are dropped; bad coordinates are blanked so distance scoring treats
them as unknown.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd

from .spreadsheet_loader import NAME_COLUMN

logger = logging.getLogger(__name__)

COORDINATE_BOUNDS = {
    "latitude": (-90.0, 90.0),
    "longitude": (-180.0, 180.0),
}


class SourceRowValidator:
    """
    Validates and cleans bulk source rows.

    Security note: only counts and column names are logged, never row values.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize validator with configuration.

        Args:
            config: ``ingestion`` configuration section
        """
        self.config = config or {}
        self.required_columns = self.config.get("required_columns", [NAME_COLUMN])

        logger.info("Initialized SourceRowValidator")

    def drop_blank_names(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, int]:
        """Remove rows whose business name is missing or whitespace."""
        names = df[NAME_COLUMN]
        blank_mask = names.isna() | names.astype(str).str.strip().eq("")
        removed_count = int(blank_mask.sum())
        if removed_count:
            logger.info(f"Removed {removed_count} rows without a business name")
        return df[~blank_mask], removed_count

    def clean_coordinates(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, int]:
        """
        Coerce coordinates to floats, blanking invalid values.

        Returns:
            Tuple of (DataFrame, number of rows with at least one invalid coordinate)
        """
        cleaned_df = df.copy()
        invalid_rows = pd.Series(False, index=cleaned_df.index)

        for column, (low, high) in COORDINATE_BOUNDS.items():
            if column not in cleaned_df.columns:
                continue

            raw = cleaned_df[column]
            numeric = pd.to_numeric(raw, errors="coerce").astype(float)
            out_of_range = ~np.isfinite(numeric) | (numeric < low) | (numeric > high)
            supplied = raw.notna() & raw.astype(str).str.strip().ne("")

            invalid = supplied & out_of_range
            invalid_rows |= invalid
            cleaned_df[column] = numeric.where(~out_of_range, np.nan)

        invalid_count = int(invalid_rows.sum())
        if invalid_count:
            logger.warning(f"Blanked invalid coordinates on {invalid_count} rows")
        return cleaned_df, invalid_count

    def count_duplicate_place_ids(self, df: pd.DataFrame) -> int:
        """Rows repeating a place id already seen earlier in the file (kept)."""
        if "place_id" not in df.columns:
            return 0

        place_ids = df["place_id"]
        present = place_ids.notna() & place_ids.astype(str).str.strip().ne("")
        duplicate_mask = place_ids[present].duplicated(keep='first')
        duplicate_count = int(duplicate_mask.sum())
        if duplicate_count:
            logger.warning(f"Found {duplicate_count} rows with a repeated place id")
        return duplicate_count

    def validate(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, Dict[str, Any]]:
        """
        Validate and clean bulk rows.

        Args:
            df: DataFrame from ``SpreadsheetLoader.load``

        Returns:
            Tuple of (cleaned_df, validation_summary)
        """
        original_rows = len(df)
        missing_columns = [c for c in self.required_columns if c not in df.columns]

        summary = {
            "total_rows": original_rows,
            "missing_columns": missing_columns,
            "removed_blank_names": 0,
            "invalid_coordinates": 0,
            "duplicate_place_ids": 0,
        }

        if missing_columns:
            logger.error(f"Missing required columns: {missing_columns}")
            summary.update(valid_rows=0, success=False, success_rate=0.0)
            return df.iloc[0:0], summary

        cleaned_df, summary["removed_blank_names"] = self.drop_blank_names(df)
        cleaned_df, summary["invalid_coordinates"] = self.clean_coordinates(cleaned_df)
        summary["duplicate_place_ids"] = self.count_duplicate_place_ids(cleaned_df)

        summary["valid_rows"] = len(cleaned_df)
        summary["success"] = (summary["removed_blank_names"] == 0
                              and summary["invalid_coordinates"] == 0)
        summary["success_rate"] = (summary["valid_rows"] / original_rows) if original_rows else 0.0

        logger.info(f"Validation summary: {summary['valid_rows']}/{original_rows} rows kept "
                    f"({summary['success_rate']:.2%} success rate)")

        return cleaned_df.reset_index(drop=True), summary


def validate_source_rows(df: pd.DataFrame,
                         config: Optional[Dict[str, Any]] = None) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """
    Convenience function to validate and clean bulk rows.

    Args:
        df: Bulk rows
        config: ``ingestion`` configuration section

    Returns:
        Tuple of (cleaned_df, validation_summary)
    """
    validator = SourceRowValidator(config)
    return validator.validate(df)
