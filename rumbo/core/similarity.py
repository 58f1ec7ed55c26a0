"""
String similarity used for fuzzy description matching.
"""
import re
import unicodedata

from rapidfuzz.distance import Levenshtein

_NON_WORD = re.compile(r"[^\w\s]")


def normalize_string(text: str) -> str:
    """Lowercase, strip diacritics and punctuation, trim."""
    decomposed = unicodedata.normalize('NFD', text.lower())
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_WORD.sub("", without_marks).strip()


def string_similarity(a: str, b: str) -> float:
    """
    Returns a score in [0, 1]: 1 - edit_distance / max_length over the
    normalized strings. Identical strings (including two empty ones) score 1.0.
    """
    s1 = normalize_string(a)
    s2 = normalize_string(b)

    if s1 == s2:
        return 1.0

    return Levenshtein.normalized_similarity(s1, s2)
