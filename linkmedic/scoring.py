"""
Rule-based candidate scoring

Every point is traceable to a rule so the number can be explained to the
person deciding whether to swap a link in their own description:

    base 70 for being a top organic result
    +15 when every significant query word is in the title,
        otherwise up to +10 in proportion when at least half are
    +10 when the query phrase appears verbatim
    +5 for the first accepted result
    clamped to 100
"""

import math
import re
from typing import List

from .models import Candidate


BASE_SCORE = 70
ALL_WORDS_BONUS = 15
PARTIAL_WORDS_MAX_BONUS = 10
EXACT_PHRASE_BONUS = 10
FIRST_RESULT_BONUS = 5
EMPTY_QUERY_SCORE = 75
MAX_SCORE = 100

MIN_WORD_LENGTH = 3

CONFIDENCE_BANDS = [
    (85, 'high'),
    (70, 'medium'),
    (60, 'low'),
]

_WORD_RE = re.compile(r'[\w]+', re.UNICODE)


def significant_words(text: str) -> List[str]:
    """Lower-cased words of at least three characters, in order"""
    return [w for w in _WORD_RE.findall((text or '').lower()) if len(w) >= MIN_WORD_LENGTH]


def _collapse(text: str) -> str:
    return ' '.join((text or '').lower().split())


def score(title: str, query: str, first: bool = True) -> int:
    """Score a candidate title against the search query that found it"""
    words = significant_words(query)
    if not words:
        return EMPTY_QUERY_SCORE

    title_lower = _collapse(title)
    total = BASE_SCORE

    matched = sum(1 for w in words if w in title_lower)
    ratio = matched / len(words)
    if matched == len(words):
        total += ALL_WORDS_BONUS
    elif ratio >= 0.5:
        total += int(math.floor(ratio * PARTIAL_WORDS_MAX_BONUS + 0.5))

    phrase = _collapse(query)
    if phrase and phrase in title_lower:
        total += EXACT_PHRASE_BONUS

    if first:
        total += FIRST_RESULT_BONUS

    return min(total, MAX_SCORE)


def confidence_level(value) -> str:
    """Display band for a score: high, medium, low or none"""
    if value is None:
        return 'none'
    for threshold, label in CONFIDENCE_BANDS:
        if value >= threshold:
            return label
    return 'none'


class CandidateScorer:
    """Scores a ranked candidate list, first result gets the top-result bonus"""

    def score_all(self, candidates: List[Candidate], query: str) -> List[Candidate]:
        for position, candidate in enumerate(candidates):
            candidate.confidence_score = score(candidate.title, query, first=(position == 0))
        return candidates

    def best(self, candidates: List[Candidate]):
        """Highest score wins, earliest position breaks ties"""
        best = None
        for candidate in candidates:
            if best is None or candidate.confidence_score > best.confidence_score:
                best = candidate
        return best
