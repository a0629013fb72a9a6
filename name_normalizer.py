#!/usr/bin/env python3
"""
Candidate name normalisation for OCR matching.

OCR engines return candidate names as free text ("HON. JANE DOE (ABC)").
Matching against the canonical candidate list is exact on the normalised
form only; no edit-distance or fuzzy matching is performed.

Usage:
    from name_normalizer import normalize_candidate_name, names_match

    normalize_candidate_name("Hon. Jane DOE (ABC Party)")  # "jane doe"
"""

import re

# Party annotations, e.g. "(Democratic Party)"
_PARENTHESIZED = re.compile(r"\([^)]*\)")

# Honorifics/titles as whole words, with or without a trailing period
_HONORIFICS = re.compile(r"\b(hon\.?|dr\.?|prof\.?|mr\.?|mrs\.?|ms\.?)\b")

_SEPARATORS = re.compile(r"[:;,]")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_candidate_name(name) -> str:
    """
    Canonicalise a free-text candidate name for matching.

    Total function: None or non-string input yields "".

    Args:
        name: Raw candidate name (from OCR output or the candidate list)

    Returns:
        Lower-case name with party annotations, honorifics and punctuation removed
    """
    if not isinstance(name, str):
        return ""

    text = name.lower()
    text = _PARENTHESIZED.sub(" ", text)
    text = _HONORIFICS.sub(" ", text)
    text = _SEPARATORS.sub(" ", text)
    text = _NON_ALNUM.sub("", text)
    text = _WHITESPACE.sub(" ", text)
    return text.strip()


def names_match(a, b) -> bool:
    """True if both names normalise to the same non-empty key."""
    key = normalize_candidate_name(a)
    return bool(key) and key == normalize_candidate_name(b)
