"""Fuzzy matching helpers shared by validation and conflict detection.

Pure functions, no store access:
- normalize_company_name / calculate_similarity: company identity matching
- check_territory_overlap: territory equivalence
- is_deal_value_similar / is_within_time_window / days_between: value and
  timing proximity
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone

_LEGAL_SUFFIX_RE = re.compile(r"\b(inc|corp|corporation|ltd|limited|llc|co)\b\.?")
_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")

# Two territories overlap when both match the same pattern.
TERRITORY_EQUIVALENCE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(north|south|east|west)\s*(america|us|usa|united states)$"),
    re.compile(r"^(northeast|northwest|southeast|southwest)\s*(region|territory)?$"),
    re.compile(r"^(global|worldwide|international)$"),
    re.compile(r"^(enterprise|commercial|federal)$"),
)


# ── Company Names ───────────────────────────────────────────────────────────


def normalize_company_name(name: str) -> str:
    """Lowercase, drop legal suffixes and punctuation, collapse whitespace.

    >>> normalize_company_name("ACME Corporation")
    'acme'
    """
    normalized = name.lower()
    normalized = _LEGAL_SUFFIX_RE.sub("", normalized)
    normalized = _PUNCTUATION_RE.sub("", normalized)
    normalized = _WHITESPACE_RE.sub(" ", normalized)
    return normalized.strip()


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (char_a != char_b),
                )
            )
        previous = current
    return previous[-1]


def calculate_similarity(name_a: str, name_b: str) -> float:
    """Similarity in [0, 1] between two company names after normalization.

    Computed as ``(longer - distance) / longer`` on the normalized names.
    Two names that normalize to the empty string are identical (1.0).
    """
    a = normalize_company_name(name_a)
    b = normalize_company_name(name_b)
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return (longer - levenshtein_distance(a, b)) / longer


# ── Territories ─────────────────────────────────────────────────────────────


def check_territory_overlap(territory_a: str, territory_b: str) -> bool:
    """True when two territories are the same or equivalent.

    Comparison is case-insensitive; otherwise both territories must match
    the same equivalence pattern.
    """
    a = territory_a.strip().lower()
    b = territory_b.strip().lower()
    if a == b:
        return True
    return any(
        pattern.match(a) and pattern.match(b)
        for pattern in TERRITORY_EQUIVALENCE_PATTERNS
    )


# ── Value & Timing ──────────────────────────────────────────────────────────


def is_deal_value_similar(value_a: float, value_b: float, tolerance: float = 0.1) -> bool:
    """True when the relative difference to the mean is within ``tolerance``."""
    mean = (value_a + value_b) / 2
    if mean == 0:
        return value_a == value_b
    return abs(value_a - value_b) / mean <= tolerance


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days_between(first: datetime, second: datetime) -> float:
    """Absolute distance between two instants, in (fractional) days."""
    delta = as_utc(first) - as_utc(second)
    return abs(delta.total_seconds()) / 86_400


def is_within_time_window(first: datetime, second: datetime, window_days: int = 90) -> bool:
    """True when the two instants are at most ``window_days`` apart (partial days round up)."""
    return math.ceil(days_between(first, second)) <= window_days
