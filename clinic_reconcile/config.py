"""
Configuration utilities for clinic_reconcile.

Provides configuration loading, validation and the named scoring constants
used by the confidence aggregator and match classifier.
"""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/clinic_reconcile.yaml"

# Name score tiers (0-100 scale) and the points each tier contributes
NAME_MATCH_THRESHOLD = 90
NAME_SIMILAR_THRESHOLD = 75
NAME_PARTIAL_THRESHOLD = 60
NAME_MATCH_POINTS = 50
NAME_SIMILAR_POINTS = 30
NAME_PARTIAL_POINTS = 15

# Distance tiers in kilometres
SAME_LOCATION_KM = 0.5
NEARBY_KM = 5.0
SAME_LOCATION_POINTS = 40
NEARBY_POINTS = 20

SAME_STATE_POINTS = 10
SAME_CITY_POINTS = 10

# Admission gates
MIN_CONFIDENCE = 40
NAME_WITH_STATE_MIN = 70

MAX_ALTERNATES = 2


@dataclass(frozen=True)
class ScoringConfig:
    """Thresholds and points for confidence aggregation."""

    name_match_threshold: int = NAME_MATCH_THRESHOLD
    name_similar_threshold: int = NAME_SIMILAR_THRESHOLD
    name_partial_threshold: int = NAME_PARTIAL_THRESHOLD
    name_match_points: int = NAME_MATCH_POINTS
    name_similar_points: int = NAME_SIMILAR_POINTS
    name_partial_points: int = NAME_PARTIAL_POINTS
    same_location_km: float = SAME_LOCATION_KM
    nearby_km: float = NEARBY_KM
    same_location_points: int = SAME_LOCATION_POINTS
    nearby_points: int = NEARBY_POINTS
    same_state_points: int = SAME_STATE_POINTS
    same_city_points: int = SAME_CITY_POINTS
    min_confidence: int = MIN_CONFIDENCE
    name_with_state_min: int = NAME_WITH_STATE_MIN
    max_alternates: int = MAX_ALTERNATES

    @classmethod
    def from_dict(cls, scoring: Dict[str, Any]) -> "ScoringConfig":
        """
        Build scoring config from the ``scoring`` section of the YAML file.

        Unknown keys are ignored with a warning.

        Args:
            scoring: Scoring configuration dictionary

        Returns:
            ScoringConfig instance
        """
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in (scoring or {}).items():
            if key in known:
                values[key] = value
            else:
                logger.warning(f"Ignoring unknown scoring option: {key}")
        return cls(**values)


def get_default_config() -> Dict[str, Any]:
    """
    Get default configuration.

    Returns:
        Default configuration dictionary
    """
    return {
        "ingestion": {
            "sheet_name": 0,
            "required_columns": ["business name"],
        },
        "normalization": {
            "address": {
                "default_country": "US",
            },
        },
        "scoring": {
            "name_match_threshold": NAME_MATCH_THRESHOLD,
            "name_similar_threshold": NAME_SIMILAR_THRESHOLD,
            "name_partial_threshold": NAME_PARTIAL_THRESHOLD,
            "same_location_km": SAME_LOCATION_KM,
            "nearby_km": NEARBY_KM,
            "min_confidence": MIN_CONFIDENCE,
            "name_with_state_min": NAME_WITH_STATE_MIN,
            "max_alternates": MAX_ALTERNATES,
        },
        "places": {
            "api_key_env": "GOOGLE_PLACES_API_KEY",
            "base_url": "https://maps.googleapis.com/maps/api/place",
            "timeout": 10.0,
            "concurrency": 5,
            "batch_delay": 0.2,
            "max_attempts": 3,
            "base_delay": 1.0,
            "max_delay": 5.0,
        },
        "storage": {
            "clinic_db_path": "data/clinics.db",
            "audit_db_path": "data/audit.db",
        },
        "reporting": {
            "output_dir": "reports",
            "record_store_path": "data/reconciliation.db",
        },
        "review": {
            "low_confidence_threshold": 60,
        },
    }


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load configuration from YAML file, layered over the defaults.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    defaults = get_default_config()
    try:
        config_file = Path(config_path)
        if not config_file.exists():
            logger.warning(f"Configuration file {config_path} not found, using defaults")
            return defaults

        with open(config_file, 'r') as f:
            user_config = yaml.safe_load(f) or {}

        config = merge_configs(defaults, user_config)
        logger.info(f"Loaded configuration from {config_path}")
        return config

    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load configuration from {config_path}: {e}")
        return defaults


def validate_config(config: Dict[str, Any]) -> bool:
    """
    Validate configuration.

    Args:
        config: Configuration dictionary

    Returns:
        True if configuration is valid, False otherwise
    """
    required_sections = ["scoring", "places", "storage", "reporting"]

    for section in required_sections:
        if section not in config:
            logger.error(f"Missing required configuration section: {section}")
            return False

    scoring = config.get("scoring", {})
    for key in ["name_match_threshold", "name_similar_threshold",
                "name_partial_threshold", "name_with_state_min", "min_confidence"]:
        value = scoring.get(key, 0)
        if not isinstance(value, (int, float)) or not 0 <= value <= 100:
            logger.error(f"scoring.{key} must be a number between 0 and 100")
            return False

    if not (scoring.get("name_partial_threshold", NAME_PARTIAL_THRESHOLD)
            <= scoring.get("name_similar_threshold", NAME_SIMILAR_THRESHOLD)
            <= scoring.get("name_match_threshold", NAME_MATCH_THRESHOLD)):
        logger.error("scoring name thresholds must be ordered partial <= similar <= match")
        return False

    if scoring.get("same_location_km", SAME_LOCATION_KM) >= scoring.get("nearby_km", NEARBY_KM):
        logger.error("scoring.same_location_km must be smaller than scoring.nearby_km")
        return False

    places = config.get("places", {})
    if not isinstance(places.get("concurrency", 5), int) or places.get("concurrency", 5) < 1:
        logger.error("places.concurrency must be a positive integer")
        return False

    if places.get("max_attempts", 3) < 1:
        logger.error("places.max_attempts must be at least 1")
        return False

    logger.info("Configuration validation passed")
    return True


def merge_configs(base_config: Dict[str, Any], override_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge two configuration dictionaries.

    Args:
        base_config: Base configuration
        override_config: Override configuration

    Returns:
        Merged configuration
    """
    merged = base_config.copy()

    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value

    return merged
