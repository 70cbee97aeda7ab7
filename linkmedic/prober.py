"""
Single-link prober

Fetches one affiliate URL, follows its redirects and reads the landing page
to decide which LinkStatus it is in. Decision order:

    404/410 -> NOT_FOUND
    search-shaped final URL -> SEARCH_REDIRECT
    429, other non-2xx, non-HTML, captcha -> UNKNOWN
    not-found page signature -> NOT_FOUND
    affiliate tag missing -> MISSING_TAG
    stock signals -> OUT_OF_STOCK / OUT_OF_STOCK_THIRD_PARTY
    moved to another product or off-site -> REDIRECT
    purchasable -> OK, otherwise UNKNOWN

Only the tag-independent part of the verdict is cached, keyed by product
id; the tag check runs for every link. UNKNOWN results are never cached
so the next run probes again.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from bs4 import BeautifulSoup

from .cache import CacheStore
from .errors import FetchError, RateLimited
from .models import CacheEntry, FetchResult, LinkKind, LinkRecord, LinkStatus, Merchant
from .signatures import PageSignatures
from .urls import (
    UrlInfo,
    classify_url,
    extract_product_id,
    has_affiliate_tag,
    is_marketplace_url,
    is_search_results_url,
    is_short_link,
    normalize_url,
)


logger = logging.getLogger(__name__)

DEAD_STATUS_CODES = (404, 410)

AVAILABILITY_SELECTORS = ['#availability', '#outOfStock', '#availabilityInsideBuyBox_feature_div']
TITLE_SELECTORS = ['#productTitle', 'span[data-hook="product-title"]', 'h1.a-size-large', 'h1#title']

# Verdicts read off a marketplace product page, where the affiliate tag matters
PRODUCT_PAGE_STATUSES = frozenset({
    LinkStatus.OK,
    LinkStatus.OUT_OF_STOCK,
    LinkStatus.OUT_OF_STOCK_THIRD_PARTY,
    LinkStatus.REDIRECT,
})


@dataclass
class Verdict:
    status: LinkStatus
    reason: str
    on_product_page: bool = False


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _availability_text(soup: BeautifulSoup) -> str:
    for selector in AVAILABILITY_SELECTORS:
        elem = soup.select_one(selector)
        if elem:
            text = elem.get_text(' ', strip=True).lower()
            if text:
                return text
    return ''


def page_title(soup: BeautifulSoup) -> Optional[str]:
    """Product title shown on a marketplace product page, if any"""
    for selector in TITLE_SELECTORS:
        elem = soup.select_one(selector)
        if elem:
            title = elem.get_text(' ', strip=True)
            if title:
                return title
    return None


def _moved(info: UrlInfo, final_url: str) -> Optional[str]:
    """Describe a meaningful redirect, or None for expansions and cosmetic rewrites"""
    final_normalized = normalize_url(final_url)
    if info.kind is LinkKind.SHORT_LINK and is_short_link(final_normalized):
        return 'Short link did not resolve'
    if final_normalized == info.normalized_url:
        return None

    if info.merchant is Merchant.MARKETPLACE:
        final_id = extract_product_id(final_normalized)
        if info.product_id and final_id and final_id != info.product_id:
            return f'Product changed from {info.product_id} to {final_id}'
        return None

    # Third-party shorteners expanding into the marketplace are expected
    if is_marketplace_url(final_normalized):
        return None
    # Unknown merchant: any change of host or path counts
    original = info.normalized_url.split('?')[0].rstrip('/')
    final = final_normalized.split('?')[0].rstrip('/')
    if original != final:
        return f'Redirected to {final_url}'
    return None


def check_tag(info: UrlInfo, final_url: str, expected_tag: Optional[str] = None) -> Optional[Verdict]:
    """MISSING_TAG verdict for one link, or None when its tag is in order

    Either the final URL or the link as published must carry the tag;
    short links keep theirs server-side.
    """
    if expected_tag:
        if not has_affiliate_tag(final_url, expected_tag):
            return Verdict(LinkStatus.MISSING_TAG, f'Expected tag {expected_tag!r} not found in final URL')
    elif not has_affiliate_tag(final_url):
        if info.affiliate_tag:
            return Verdict(LinkStatus.MISSING_TAG, 'Affiliate tag stripped on redirect')
        if info.kind is not LinkKind.SHORT_LINK:
            return Verdict(LinkStatus.MISSING_TAG, 'Link carries no affiliate tag')
    return None


def classify_availability(info: UrlInfo, result: FetchResult, signatures: PageSignatures) -> Verdict:
    """Classify a fetched page without looking at the affiliate tag

    The verdict belongs to the product, so it can be shared between links
    to the same product id. Pure: no I/O, no cache.
    """
    code = result.status_code
    final_url = result.final_url or result.url

    if code in DEAD_STATUS_CODES:
        return Verdict(LinkStatus.NOT_FOUND, f'HTTP {code} - Page not found')

    if is_search_results_url(final_url):
        return Verdict(LinkStatus.SEARCH_REDIRECT, 'Redirected to search results')

    if code == 429:
        return Verdict(LinkStatus.UNKNOWN, 'Rate limited (HTTP 429)')
    if not 200 <= code < 300:
        return Verdict(LinkStatus.UNKNOWN, f'HTTP {code} - cannot classify')
    if not result.is_html:
        return Verdict(LinkStatus.UNKNOWN, f'Non-HTML response ({result.content_type})')

    html = result.text or ''
    lower_html = html.lower()

    if signatures.matches('captcha', lower_html):
        return Verdict(LinkStatus.UNKNOWN, 'Bot detection - CAPTCHA page encountered')

    hit = signatures.matches('not_found', lower_html)
    if hit:
        return Verdict(LinkStatus.NOT_FOUND, f'Page not found signature: {hit!r}')

    final_on_marketplace = is_marketplace_url(final_url)
    if info.merchant is Merchant.MARKETPLACE and not final_on_marketplace:
        return Verdict(LinkStatus.REDIRECT, 'Marketplace link redirected off-site')
    if not final_on_marketplace:
        moved = _moved(info, final_url)
        if moved:
            return Verdict(LinkStatus.REDIRECT, moved)
        return Verdict(LinkStatus.OK, 'Page resolves')

    soup = BeautifulSoup(html, 'html.parser')
    availability = _availability_text(soup)
    has_buy_box = signatures.matches('buy_box', lower_html) is not None

    if (signatures.matches('out_of_stock', lower_html)
            or 'out of stock' in availability or 'currently unavailable' in availability):
        return Verdict(LinkStatus.OUT_OF_STOCK, 'Out of stock - product currently unavailable', True)

    if not has_buy_box and (signatures.matches('third_party', lower_html)
                            or 'available from these sellers' in availability):
        return Verdict(LinkStatus.OUT_OF_STOCK_THIRD_PARTY, 'Only available from third-party sellers', True)

    moved = _moved(info, final_url)
    if moved:
        return Verdict(LinkStatus.REDIRECT, moved, True)

    if has_buy_box:
        return Verdict(LinkStatus.OK, 'Active and buyable - add to cart present', True)
    has_price = signatures.matches('price', lower_html) is not None
    in_stock = any(s in availability for s in signatures.in_stock)
    if has_price and (in_stock or page_title(soup)):
        return Verdict(LinkStatus.OK, 'Active - price displayed', True)

    return Verdict(LinkStatus.UNKNOWN, 'Could not verify availability - manual check recommended', True)


def apply_tag_check(info: UrlInfo, availability: Verdict, final_url: str,
                    expected_tag: Optional[str] = None) -> Verdict:
    """A missing tag outranks whatever the product page said"""
    if availability.on_product_page:
        missing = check_tag(info, final_url, expected_tag)
        if missing is not None:
            return missing
    return availability


def classify_response(info: UrlInfo, result: FetchResult, signatures: PageSignatures,
                      expected_tag: Optional[str] = None) -> Verdict:
    """Classify a fetched page for one link. Pure: no I/O, no cache."""
    availability = classify_availability(info, result, signatures)
    return apply_tag_check(info, availability, result.final_url or result.url, expected_tag)


class Prober:
    """Decide the health of one URL

    The cache holds tag-independent availability keyed by product id. The
    tag check always runs against the link being probed.
    """

    def __init__(self, fetcher, cache: Optional[CacheStore] = None, signatures: Optional[PageSignatures] = None,
                 expected_tag: Optional[str] = None):
        self.fetcher = fetcher
        self.cache = cache
        self.signatures = signatures or PageSignatures()
        self.expected_tag = expected_tag

    def _record(self, info: UrlInfo, status: LinkStatus, reason: str, http_code: Optional[int] = None,
                final_url: Optional[str] = None, from_cache: bool = False,
                checked_at: Optional[datetime] = None) -> LinkRecord:
        return LinkRecord(
            url=info.url,
            product_id=info.product_id,
            merchant=info.merchant,
            status=status,
            http_code=http_code,
            last_checked_at=checked_at or _now(),
            final_url=final_url,
            reason=reason,
            from_cache=from_cache,
        )

    def unknown(self, url: str, reason: str) -> LinkRecord:
        """An UNKNOWN record for a URL that was never probed"""
        return self._record(classify_url(url), LinkStatus.UNKNOWN, reason)

    def _from_cache(self, info: UrlInfo, entry: CacheEntry) -> LinkRecord:
        # Another link to the same product may have written the entry; its
        # final URL says nothing about this link's tag
        if entry.url == info.normalized_url and entry.final_url:
            final_url = entry.final_url
        else:
            final_url = info.normalized_url
        on_product_page = (entry.status in PRODUCT_PAGE_STATUSES
                           and is_marketplace_url(entry.final_url or final_url))
        availability = Verdict(entry.status, entry.reason or 'Cached result', on_product_page)
        verdict = apply_tag_check(info, availability, final_url, self.expected_tag)
        return self._record(
            info, verdict.status, verdict.reason, entry.http_code, final_url, from_cache=True,
            checked_at=datetime.fromtimestamp(entry.cached_at, tz=timezone.utc),
        )

    def _save(self, key: str, info: UrlInfo, availability: Verdict, result: FetchResult) -> None:
        try:
            self.cache.put(key, CacheEntry(
                key=key,
                status=availability.status,
                http_code=result.status_code,
                cached_at=self.cache.clock(),
                final_url=result.final_url,
                reason=availability.reason,
                url=info.normalized_url,
            ))
        except sqlite3.Error as e:
            logger.warning('probe: could not cache %s: %s', key, e)

    def probe(self, url: str) -> LinkRecord:
        """Probe a URL, using the cache when a fresh entry exists"""
        info = classify_url(url)
        key = info.cache_key

        if self.cache is not None:
            entry = self.cache.get(key)
            if entry is not None:
                return self._from_cache(info, entry)

        try:
            result = self.fetcher.get(info.normalized_url)
            availability = classify_availability(info, result, self.signatures)
        except RateLimited as e:
            logger.warning('probe: rate limited %s', url)
            return self._record(info, LinkStatus.UNKNOWN, f'Rate limited: {e.message}')
        except FetchError as e:
            logger.info('probe: fetch failed %s: %s', url, e.message)
            return self._record(info, LinkStatus.UNKNOWN, e.message)
        except Exception as e:
            logger.exception('probe: unexpected error for %s', url)
            return self._record(info, LinkStatus.UNKNOWN, f'Check failed: {e}')

        verdict = apply_tag_check(info, availability, result.final_url or result.url, self.expected_tag)
        record = self._record(info, verdict.status, verdict.reason, result.status_code, result.final_url)
        logger.info('probe: %s -> %s (%s)', url[:60], verdict.status.value, verdict.reason)

        if self.cache is not None and availability.status is not LinkStatus.UNKNOWN:
            self._save(key, info, availability, result)
        return record
