"""
Replacement suggestions for broken links

The suggested URL is always built from a product id parsed out of a real
search result. When nothing trustworthy is left the result says so; it
never falls back to a guessed link.
"""

import logging
from typing import List, Optional

from .errors import FetchError, NetworkFailure, RateLimited
from .models import SearchContext, SuggestionRequest, SuggestionResult
from .ratelimit import TokenBucket
from .scoring import CandidateScorer, confidence_level, significant_words
from .search import ReplacementSearcher
from .sources import link_context
from .urls import DEFAULT_REGION, classify_url, product_url


logger = logging.getLogger(__name__)

MAX_QUERY_WORDS = 5
MAX_ALTERNATIVES = 3
DEFAULT_MIN_CONFIDENCE = 60

NO_REPLACEMENT = 'No reliable replacement found'

# Words that describe the link rather than the product
STOP_WORDS = frozenset({
    'the', 'and', 'for', 'with', 'this', 'that', 'these', 'those', 'from', 'your', 'you', 'our',
    'here', 'there', 'check', 'out', 'get', 'buy', 'link', 'links', 'amazon', 'affiliate',
    'use', 'used', 'using', 'what', 'are', 'was', 'one', 'all', 'best', 'review', 'video',
    'shop', 'price', 'deal', 'deals', 'click', 'below', 'above', 'gear', 'commission',
})


def _keywords(text: str) -> List[str]:
    words = []
    for word in significant_words(text):
        if word in STOP_WORDS or word.isdigit() or word in words:
            continue
        words.append(word)
    return words


def build_search_query(context: SearchContext, original_url: str) -> str:
    """Search query for a broken link, built from where the link was published

    Prefers the description line carrying the link, then the video title,
    and keeps the first few words that say something about the product.
    The dead URL itself is never used.
    """
    line = link_context(context.video_description_excerpt, original_url) if original_url else None
    for text in (line, context.video_title):
        if not text:
            continue
        words = _keywords(text)
        if words:
            return ' '.join(words[:MAX_QUERY_WORDS])
    return ''


class SuggestionCoordinator:
    """Turn a broken link into the best replacement the marketplace search offers"""

    def __init__(self, searcher: ReplacementSearcher, limiter: Optional[TokenBucket] = None,
                 min_confidence: int = DEFAULT_MIN_CONFIDENCE, scorer: Optional[CandidateScorer] = None):
        self.searcher = searcher
        self.limiter = limiter
        self.min_confidence = min_confidence
        self.scorer = scorer or CandidateScorer()

    def find_replacement(self, request: SuggestionRequest) -> SuggestionResult:
        query = build_search_query(request.search_context, request.original_url)
        if not query:
            return SuggestionResult(success=False, search_query='',
                                    error='Not enough context to build a search query')

        region = classify_url(request.original_url).region or DEFAULT_REGION
        try:
            candidates = self.searcher.search(query, region)
        except RateLimited as e:
            logger.warning('suggest: search throttled for %r', query)
            return SuggestionResult(success=False, search_query=query,
                                    error=f'Search rate limited: {e.message}', retryable=True)
        except NetworkFailure as e:
            logger.warning('suggest: search failed for %r: %s', query, e.message)
            return SuggestionResult(success=False, search_query=query,
                                    error=f'Search failed: {e.message}', retryable=True)
        except FetchError as e:
            logger.warning('suggest: search failed for %r: %s', query, e.message)
            return SuggestionResult(success=False, search_query=query, error=f'Search failed: {e.message}')

        excluded = {pid.upper() for pid in request.exclude_product_ids}
        remaining = [c for c in candidates if c.product_id.upper() not in excluded]
        if len(remaining) < len(candidates):
            logger.debug('suggest: excluded %d candidates', len(candidates) - len(remaining))
        if not remaining:
            logger.info('suggest: no candidates left for %r', query)
            return SuggestionResult(success=False, search_query=query, error=NO_REPLACEMENT)

        self.scorer.score_all(remaining, query)
        best = self.scorer.best(remaining)
        if best.confidence_score < self.min_confidence:
            logger.info('suggest: best match for %r scored %d, below %d',
                        query, best.confidence_score, self.min_confidence)
            return SuggestionResult(
                success=False,
                search_query=query,
                error=f'{NO_REPLACEMENT} (best match scored {best.confidence_score})',
            )

        alternatives = sorted((c for c in remaining if c is not best),
                              key=lambda c: c.confidence_score, reverse=True)[:MAX_ALTERNATIVES]
        logger.info('suggest: %r -> %s (%d)', query, best.product_id, best.confidence_score)
        return SuggestionResult(
            success=True,
            search_query=query,
            best_match=best,
            suggested_url=product_url(best.product_id, region, request.affiliate_tag),
            confidence_level=confidence_level(best.confidence_score),
            alternatives=alternatives,
        )

    def refresh(self, request: SuggestionRequest, previous: SuggestionResult) -> SuggestionResult:
        """Ask again, ruling out the product suggested last time"""
        if previous.best_match is not None:
            request = request.excluding(previous.best_match.product_id)
        return self.find_replacement(request)

    def find_replacements(self, requests: List[SuggestionRequest]) -> List[SuggestionResult]:
        """Suggestions for a batch of broken links, one at a time through the limiter"""
        results = []
        for request in requests:
            if self.limiter is not None:
                self.limiter.acquire()
            results.append(self.find_replacement(request))
        found = sum(1 for r in results if r.success)
        logger.info('suggest: %d of %d links have a replacement', found, len(results))
        return results
