"""
Name normalization and similarity scoring for clinic_reconcile.

Canonicalizes free text for comparison and scores clinic names with several
fuzzy strategies, keeping the best of them.
"""

import logging
import math
import re
from typing import Dict, Optional

from thefuzz import fuzz

logger = logging.getLogger(__name__)

_PUNCTUATION_PATTERN = re.compile(r'[^\w\s]')
_WHITESPACE_PATTERN = re.compile(r'\s+')


def normalize_string(text) -> str:
    """
    Canonicalize free text for comparison.

    Lowercases, strips punctuation, collapses whitespace and trims. Missing
    input (None, NaN) yields an empty string. Idempotent.

    Args:
        text: Arbitrary text, possibly absent

    Returns:
        Normalized string
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        if isinstance(text, float) and math.isnan(text):
            return ""
        text = str(text)

    text = text.lower()
    text = _PUNCTUATION_PATTERN.sub('', text)
    text = _WHITESPACE_PATTERN.sub(' ', text)
    return text.strip()


class NameNormalizer:
    """
    Scores clinic names against each other.

    Three independent strategies run over the normalized names:

    - ``ratio``: edit-distance similarity over the full strings
    - ``partial_ratio``: best alignment of the shorter string against any
      equal-length window of the longer one ("Dr. Smith" vs "Smith, MD")
    - ``token_sort_ratio``: tokens sorted before comparison, so word order
      does not matter ("Miami Skin Solutions" vs "Skin Solutions Miami")

    The best of the three is the name score used for confidence aggregation.
    """

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize name normalizer.

        Args:
            config: Name normalization options (currently unused keys are ignored)
        """
        self.config = config or {}
        logger.info("Initialized NameNormalizer")

    def normalize_name(self, name) -> str:
        """Normalize a single clinic name."""
        return normalize_string(name)

    def calculate_name_similarity(self, name1, name2) -> Dict[str, int]:
        """
        Calculate every similarity strategy between two names.

        Args:
            name1: First name (raw or normalized)
            name2: Second name (raw or normalized)

        Returns:
            Dictionary with ratio, partial_ratio, token_sort_ratio and best,
            each on a 0-100 scale
        """
        norm1 = normalize_string(name1)
        norm2 = normalize_string(name2)

        if not norm1 or not norm2:
            return {
                "ratio": 0,
                "partial_ratio": 0,
                "token_sort_ratio": 0,
                "best": 0
            }

        ratio = int(fuzz.ratio(norm1, norm2))
        partial_ratio = int(fuzz.partial_ratio(norm1, norm2))
        token_sort_ratio = int(fuzz.token_sort_ratio(norm1, norm2))

        return {
            "ratio": ratio,
            "partial_ratio": partial_ratio,
            "token_sort_ratio": token_sort_ratio,
            "best": max(ratio, partial_ratio, token_sort_ratio)
        }

    def best_name_score(self, name1, name2) -> int:
        """Return the best-of-strategies name score (0-100)."""
        return self.calculate_name_similarity(name1, name2)["best"]
