"""Fuzzy matching of a free-text company/person reference against CRM search results.

Rules are evaluated top to bottom and the first one that applies decides the
confidence tier for the top candidate. With more than ``ambiguity_threshold``
candidates a "high" from a fuzzy rule is demoted to "medium"; the cap never
promotes.
"""

import re
from dataclasses import dataclass
from typing import Literal, Optional, Sequence

from crm_intake.config import settings
from crm_intake.schemas.action import SearchResult

Confidence = Literal["high", "medium", "low", "none"]

COMPANY_SUFFIXES = [
    "inc",
    "inc.",
    "incorporated",
    "llc",
    "llc.",
    "ltd",
    "ltd.",
    "limited",
    "corp",
    "corp.",
    "corporation",
    "co",
    "co.",
    "company",
    "labs",
    "lab",
    "technologies",
    "technology",
    "tech",
    "solutions",
    "services",
    "group",
    "holdings",
    "partners",
    "ventures",
    "capital",
    "gmbh",
    "ag",
    "sa",
    "pty",
    "plc",
]

_SUFFIX_PATTERNS = [re.compile(rf"\s+{re.escape(suffix)}\.?$", re.IGNORECASE) for suffix in COMPANY_SUFFIXES]

_FROM_DOMAIN_RE = re.compile(r"^(.+?)\s+from\s+(\S+\.\S+)$", re.IGNORECASE)
_PAREN_DOMAIN_RE = re.compile(r"^(.+?)\s*\((\S+\.\S+)\)$")
_DOMAIN_ONLY_RE = re.compile(r"^(?:https?://)?(?:www\.)?([a-z0-9-]+\.[a-z.]+)$", re.IGNORECASE)


@dataclass(frozen=True)
class MatchConfidenceResult:
    confidence: Confidence
    reason: str


@dataclass(frozen=True)
class CompanyInput:
    name: str
    domain: Optional[str] = None


def parse_company_input(value: str) -> CompanyInput:
    """Split "Acme from acme.com", "Acme (acme.com)" or a bare "acme.com" into name and domain."""
    trimmed = value.strip()

    match = _FROM_DOMAIN_RE.match(trimmed)
    if match:
        return CompanyInput(match.group(1).strip(), match.group(2).lower())

    match = _PAREN_DOMAIN_RE.match(trimmed)
    if match:
        return CompanyInput(match.group(1).strip(), match.group(2).lower())

    match = _DOMAIN_ONLY_RE.match(trimmed)
    if match:
        domain = match.group(1).lower()
        name = domain.split(".")[0]
        return CompanyInput(name[:1].upper() + name[1:], domain)

    return CompanyInput(trimmed)


def strip_company_suffixes(name: str) -> str:
    result = name.lower().strip()
    for pattern in _SUFFIX_PATTERNS:
        result = pattern.sub("", result).strip()
    return result


def sequential_match(value: str, candidate: str) -> float:
    """Share of ``value`` that matches ``candidate`` character by character from the start."""
    a, b = value.lower(), candidate.lower()
    count = 0
    for left, right in zip(a, b):
        if left != right:
            break
        count += 1
    return count / len(value) if value else 0.0


def best_word_match(value: str, candidate: str) -> tuple[float, str]:
    """Best sequential score of ``value`` against any single word of ``candidate``."""
    value = value.lower().strip()
    words = candidate.lower().split()
    if not value or not words:
        return 0.0, ""

    best_score, best_word = 0.0, ""
    for word in words:
        if word == value:
            return 1.0, word
        score = sequential_match(value, word)
        if score > best_score:
            best_score, best_word = score, word
    return best_score, best_word


def word_similarity(a: str, b: str) -> float:
    words_a = a.lower().split()
    words_b = b.lower().split()
    if not words_a or not words_b:
        return 0.0
    matching = sum(1 for word in words_a if any(w == word or w in word or word in w for w in words_b))
    return matching / max(len(words_a), len(words_b))


def _pct(ratio: float) -> int:
    return int(ratio * 100 + 0.5)


def match_confidence(
    value: str,
    candidates: Sequence[SearchResult],
    parsed_name: Optional[str] = None,
    parsed_domain: Optional[str] = None,
    ambiguity_threshold: Optional[int] = None,
) -> MatchConfidenceResult:
    """Score the top candidate for ``value``.

    ``parsed_name``/``parsed_domain`` default to what parse_company_input finds
    in ``value``.
    """
    if not candidates:
        return MatchConfidenceResult("none", "No results found")

    if parsed_name is None:
        parsed = parse_company_input(value)
        parsed_name = parsed.name
        parsed_domain = parsed_domain or parsed.domain

    threshold = settings.ambiguity_threshold if ambiguity_threshold is None else ambiguity_threshold
    ambiguous = len(candidates) > threshold

    def capped(reason: str, ambiguous_reason: Optional[str] = None) -> MatchConfidenceResult:
        if ambiguous:
            return MatchConfidenceResult("medium", ambiguous_reason or reason)
        return MatchConfidenceResult("high", reason)

    top = candidates[0]
    value_lower = value.lower().strip()
    name_lower = parsed_name.lower().strip()
    top_lower = top.name.lower().strip()

    value_core = strip_company_suffixes(name_lower)
    top_core = strip_company_suffixes(top_lower)

    if top_lower == value_lower or top_lower == name_lower:
        return MatchConfidenceResult("high", "Exact name match")

    if value_core == top_core and len(value_core) > 2:
        if len(name_lower) > len(value_core):
            return MatchConfidenceResult("high", "Exact match (ignoring suffixes)")
        return capped("Exact match (ignoring suffixes)", "Match found but ambiguous results")

    if parsed_domain and top.extra:
        domain = parsed_domain.lower()
        top_domain = top.extra.lower()
        if domain == top_domain:
            return MatchConfidenceResult("high", "Exact domain match")
        if domain in top_domain or top_domain in domain:
            return MatchConfidenceResult("medium", "Partial domain match")

    seq = sequential_match(value_core, top_core)
    if seq >= 0.9 and len(value_core) >= 3:
        return capped(f"Sequential match ({_pct(seq)}% of input)")

    word_score, word = best_word_match(value_core, top_core)
    if word_score >= 0.9 and len(value_core) >= 3:
        return capped(f'Word match "{word}" ({_pct(word_score)}%)')
    if word_score >= 0.7 and len(value_core) >= 3:
        return MatchConfidenceResult("medium", f'Partial word match "{word}" ({_pct(word_score)}%)')

    if value_core in top_core and len(value_core) >= 3:
        remainder = top_core.replace(value_core, "", 1).strip()
        if len(remainder) < len(value_core):
            return capped("Core name match with qualifier", "Core name match but ambiguous results")
        return MatchConfidenceResult("medium", "Name contained in result")

    if top_core in value_core and len(top_core) >= 3:
        return MatchConfidenceResult("medium", "Result name contained in input")

    similarity = word_similarity(value_core, top_core)
    if similarity >= 0.8:
        return capped(f"Word match ({_pct(similarity)}%)")
    if similarity >= 0.5:
        return MatchConfidenceResult("medium", f"Partial word match ({_pct(similarity)}%)")

    longest = max(len(value_core), len(top_core))
    overlap = min(len(value_core), len(top_core)) / longest if longest else 0.0
    if overlap > 0.8:
        return MatchConfidenceResult("medium", f"Name overlap ({_pct(overlap)}%)")

    if len(candidates) > 1:
        if top_core.startswith(value_core) and len(value_core) >= 3:
            return MatchConfidenceResult("medium", "Best match among multiple results")
        return MatchConfidenceResult("low", f"Ambiguous: {len(candidates)} results, no clear match")

    if overlap > 0.5:
        return MatchConfidenceResult("low", f"Weak name overlap ({_pct(overlap)}%)")

    return MatchConfidenceResult("low", "Weak match - first result taken")
