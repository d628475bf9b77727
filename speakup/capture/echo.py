"""
Echo filter.

Decides whether captured text is really the coach's own synthesized voice
being picked up by the microphone.
"""

import re

DEFAULT_MIN_CHARS = 6
DEFAULT_OVERLAP_RATIO = 0.7

_SYMBOLS = re.compile(r"[^\w\s]|_")
_SPACES = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Lower-case, turn punctuation into spaces and collapse whitespace."""
    if not text:
        return ""
    text = _SYMBOLS.sub(" ", text.lower())
    return _SPACES.sub(" ", text).strip()


def word_overlap(candidate: str, reference: str) -> float:
    """
    Share of reference words that also occur in the candidate, measured
    against the larger of the two vocabularies.
    """
    cand_words = set(normalize(candidate).split())
    ref_words = normalize(reference).split()
    denominator = max(len(cand_words), len(ref_words))
    if denominator == 0:
        return 0.0
    hits = sum(1 for word in ref_words if word in cand_words)
    return hits / denominator


def _contains_words(text: str, part: str) -> bool:
    """Containment on whole words only; "yes" is not inside "yesterday"."""
    return f" {part} " in f" {text} "


def is_echo(
    candidate: str,
    reference: str,
    min_chars: int = DEFAULT_MIN_CHARS,
    overlap_ratio: float = DEFAULT_OVERLAP_RATIO,
) -> bool:
    """
    Return True when ``candidate`` looks like a re-transcription of
    ``reference``.

    Very short candidates are never echo, so answers such as "yes" survive
    even when the coach just said them. A short reference such as "Great!"
    is likewise too small to count as contained in a longer candidate.
    """
    cand = normalize(candidate)
    ref = normalize(reference)
    if not cand or not ref:
        return False
    if len(cand) < min_chars:
        return False
    if _contains_words(ref, cand) or (len(ref) >= min_chars and _contains_words(cand, ref)):
        return True
    return word_overlap(cand, ref) >= overlap_ratio


class EchoFilter:
    """is_echo bound to configured thresholds."""

    def __init__(self, min_chars: int = DEFAULT_MIN_CHARS, overlap_ratio: float = DEFAULT_OVERLAP_RATIO):
        self.min_chars = min_chars
        self.overlap_ratio = overlap_ratio

    def __call__(self, candidate: str, reference: str) -> bool:
        return is_echo(candidate, reference, self.min_chars, self.overlap_ratio)
