"""
Data types shared by the audit and suggestion engines
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional


class LinkStatus(Enum):
    """Health of one affiliate link after a probe"""

    OK = 'OK'
    OUT_OF_STOCK = 'OUT_OF_STOCK'
    OUT_OF_STOCK_THIRD_PARTY = 'OUT_OF_STOCK_THIRD_PARTY'
    NOT_FOUND = 'NOT_FOUND'
    SEARCH_REDIRECT = 'SEARCH_REDIRECT'
    MISSING_TAG = 'MISSING_TAG'
    REDIRECT = 'REDIRECT'
    UNKNOWN = 'UNKNOWN'

    @property
    def is_broken(self) -> bool:
        """True when the link is losing commission and needs a replacement"""
        return self in _BROKEN

    @property
    def needs_review(self) -> bool:
        """True when a human should look at the link, broken or not"""
        return self is not LinkStatus.OK


_BROKEN = frozenset({
    LinkStatus.NOT_FOUND,
    LinkStatus.SEARCH_REDIRECT,
    LinkStatus.MISSING_TAG,
    LinkStatus.OUT_OF_STOCK,
    LinkStatus.OUT_OF_STOCK_THIRD_PARTY,
})


class Merchant(Enum):
    MARKETPLACE = 'marketplace'
    UNKNOWN = 'unknown'


class LinkKind(Enum):
    PRODUCT_PAGE = 'product_page'
    SHORT_LINK = 'short_link'
    MARKETPLACE_OTHER = 'marketplace_other'
    UNKNOWN_MERCHANT = 'unknown_merchant'


@dataclass
class FetchResult:
    url: str
    final_url: str
    status_code: int
    text: str
    content_type: str = 'text/html'

    @property
    def is_html(self) -> bool:
        content_type = (self.content_type or '').lower()
        return not content_type or 'html' in content_type

    @property
    def redirected(self) -> bool:
        return self.final_url != self.url


@dataclass
class LinkRecord:
    url: str
    product_id: Optional[str]
    merchant: Merchant
    status: LinkStatus
    http_code: Optional[int]
    last_checked_at: datetime
    final_url: Optional[str] = None
    reason: str = ''
    from_cache: bool = False

    def to_dict(self) -> dict:
        return {
            'url': self.url,
            'product_id': self.product_id,
            'merchant': self.merchant.value,
            'status': self.status.value,
            'http_code': self.http_code,
            'last_checked_at': self.last_checked_at.isoformat(),
            'final_url': self.final_url,
            'reason': self.reason,
            'from_cache': self.from_cache,
        }


@dataclass
class CacheEntry:
    key: str
    status: LinkStatus
    http_code: Optional[int]
    cached_at: float
    final_url: Optional[str] = None
    reason: str = ''
    # Normalized link that was fetched to produce this entry
    url: Optional[str] = None


@dataclass
class Candidate:
    title: str
    product_id: str
    price: Optional[str] = None
    image_url: Optional[str] = None
    confidence_score: int = 0

    def to_dict(self) -> dict:
        return {
            'title': self.title,
            'product_id': self.product_id,
            'price': self.price,
            'image_url': self.image_url,
            'confidence_score': self.confidence_score,
        }


@dataclass
class SearchContext:
    video_title: str
    video_description_excerpt: str = ''


@dataclass
class SuggestionRequest:
    original_url: str
    search_context: SearchContext
    affiliate_tag: str
    exclude_product_ids: FrozenSet[str] = field(default_factory=frozenset)

    def excluding(self, *product_ids: str) -> 'SuggestionRequest':
        """Copy of this request with more product ids ruled out (refresh flow)"""
        return SuggestionRequest(
            original_url=self.original_url,
            search_context=self.search_context,
            affiliate_tag=self.affiliate_tag,
            exclude_product_ids=frozenset(self.exclude_product_ids) | frozenset(product_ids),
        )


@dataclass
class SuggestionResult:
    success: bool
    search_query: str
    best_match: Optional[Candidate] = None
    suggested_url: Optional[str] = None
    confidence_level: str = 'none'
    alternatives: List[Candidate] = field(default_factory=list)
    error: Optional[str] = None
    retryable: bool = False

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'search_query': self.search_query,
            'best_match': self.best_match.to_dict() if self.best_match else None,
            'suggested_url': self.suggested_url,
            'confidence_level': self.confidence_level,
            'alternatives': [c.to_dict() for c in self.alternatives],
            'error': self.error,
            'retryable': self.retryable,
        }
