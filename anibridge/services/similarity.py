from __future__ import annotations

import re
from difflib import SequenceMatcher

# Catalogs disagree on these freely ("Title, Part 2" vs "Title Part 2").
_COSMETIC_PUNCTUATION = re.compile(r"[,:]")
MAX_SIMILARITY = 10.0


def normalize_title(title: str) -> str:
    return _COSMETIC_PUNCTUATION.sub("", title).lower().strip()


def title_similarity(candidate_title: str, query_title: str) -> float:
    """Score how closely a catalog title matches the query on a 0-10 scale.

    The value is rounded to two decimals; ranking uses the rounded value, so
    near-equal candidates tie and keep their search-result order. The
    underlying ``SequenceMatcher`` ratio is not guaranteed to be symmetric,
    which is why the argument order is fixed as (candidate, query).
    """
    ratio = SequenceMatcher(
        None,
        normalize_title(candidate_title),
        normalize_title(query_title),
    ).ratio()
    return round(ratio * MAX_SIMILARITY, 2)
