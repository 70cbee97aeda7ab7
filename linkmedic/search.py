"""
Replacement searcher

Runs a marketplace search and pulls organic product listings out of the
results page. Extraction is split into small named strategies held in
ordered lists; when the marketplace changes its markup, fix it by adding
or reordering a strategy here, classification and scoring stay untouched.

Sponsored placements are dropped outright, never ranked below organic
results.
"""

import html as html_lib
import logging
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Pattern, Tuple

from bs4 import BeautifulSoup

from .errors import FetchError, NetworkFailure, ParseFailure, RateLimited
from .models import Candidate
from .signatures import PageSignatures
from .urls import Region, search_url


logger = logging.getLogger(__name__)

WINDOW_SIZE = 3000
MIN_TITLE_LENGTH = 5
PRODUCT_ID_LENGTH = 10
DEFAULT_MAX_RESULTS = 5


class Fragment:
    """Markup for one search result, parsed on first use"""

    def __init__(self, markup: str):
        self.markup = markup
        self._soup = None

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = BeautifulSoup(self.markup, 'html.parser')
        return self._soup


@dataclass(frozen=True)
class SelectorStrategy:
    """Read text (or an attribute) from the first element matching a CSS selector"""

    name: str
    selector: str
    attribute: Optional[str] = None

    def extract(self, fragment: Fragment) -> Optional[str]:
        elem = fragment.soup.select_one(self.selector)
        if elem is None:
            return None
        if self.attribute:
            value = elem.get(self.attribute)
        else:
            value = elem.get_text(' ', strip=True)
        return value.strip() if value else None


@dataclass(frozen=True)
class RegexStrategy:
    """Take the first capture group of a pattern run over the raw markup"""

    name: str
    pattern: Pattern
    template: str = '{0}'

    def extract(self, fragment: Fragment) -> Optional[str]:
        match = self.pattern.search(fragment.markup)
        if not match or not match.group(1):
            return None
        value = match.group(1).strip()
        return self.template.format(value) if value else None


TITLE_STRATEGIES = [
    SelectorStrategy('h2-link-span', 'h2 a span'),
    SelectorStrategy('title-text-normal',
                     '.a-size-medium.a-color-base.a-text-normal, .a-size-base-plus.a-color-base.a-text-normal'),
    RegexStrategy('text-normal-sized', re.compile(
        r'class="[^"]*a-size-(?:medium|base-plus)[^"]*a-text-normal[^"]*"[^>]*>([^<]+)<', re.I)),
    RegexStrategy('text-normal', re.compile(r'class="[^"]*a-text-normal[^"]*"[^>]*>([^<]+)<', re.I)),
    RegexStrategy('aria-label', re.compile(r'aria-label="([^"]+)"', re.I)),
    RegexStrategy('link-title-attr', re.compile(r'<a[^>]*title="([^"]+)"[^>]*href="[^"]*/dp/', re.I)),
    RegexStrategy('h2-mini-span', re.compile(
        r'<h2[^>]*class="[^"]*a-size-mini[^"]*"[^>]*>[\s\S]*?<span[^>]*>([^<]+)<', re.I)),
    RegexStrategy('product-link-text', re.compile(r'href="[^"]*/dp/[A-Z0-9]{10}[^"]*"[^>]*>([^<]+)', re.I)),
]

PRICE_STRATEGIES = [
    SelectorStrategy('offscreen-price', '.a-price .a-offscreen'),
    RegexStrategy('offscreen-price-markup', re.compile(
        r'class="[^"]*a-price[^"]*"[^>]*>[\s\S]*?<span[^>]*class="[^"]*a-offscreen[^"]*"[^>]*>([^<]+)<', re.I)),
    RegexStrategy('dollar-amount', re.compile(r'\$\s*([\d,]+\.?\d{2})'), template='${0}'),
]

IMAGE_STRATEGIES = [
    SelectorStrategy('result-image', 'img.s-image', attribute='src'),
    RegexStrategy('media-src', re.compile(r'src="(https://m\.media-amazon\.com/images/[^"]+)"', re.I)),
]

AD_MARKERS = [
    ('sponsored-component', re.compile(r'data-component-type="sp-sponsored-result"', re.I)),
    ('sponsored-label', re.compile(r's-label-popover-default[\s\S]{0,300}?sponsored', re.I)),
    ('ad-holder', re.compile(r'class="[^"]*\bAdHolder\b')),
    ('impression-ad-id', re.compile(r'data-component-props=(?:"[^"]*&quot;adId&quot;|\'[^\']*"adId")')),
]

RESULT_CONTAINER_SELECTOR = '[data-component-type="s-search-result"][data-asin]'
ASIN_MARKER = re.compile(r'data-asin="([A-Za-z0-9]*)"')
PRODUCT_HREF = re.compile(r'href="[^"]*/dp/([A-Z0-9]{10})[^"]*"', re.I)


def clean_title(title: str) -> str:
    return ' '.join(html_lib.unescape(title).split())


def is_placeholder_id(product_id: Optional[str]) -> bool:
    """Empty, zero and zero-padded ids mark ad slots, not real products"""
    if not product_id or product_id == '0' or product_id.startswith('0000'):
        return True
    return len(product_id) != PRODUCT_ID_LENGTH


def ad_marker(fragment: Fragment) -> Optional[str]:
    for name, pattern in AD_MARKERS:
        if pattern.search(fragment.markup):
            return name
    return None


def extract_first(strategies, fragment: Fragment, min_length: int = 1) -> Tuple[str, str]:
    """Run strategies in order, returning (strategy name, value) for the first hit"""
    for strategy in strategies:
        value = strategy.extract(fragment)
        if value and len(value) >= min_length:
            return strategy.name, value
    raise ParseFailure(f'no strategy matched ({", ".join(s.name for s in strategies)})')


def _optional(strategies, fragment: Fragment) -> Optional[str]:
    try:
        return extract_first(strategies, fragment)[1]
    except ParseFailure:
        return None


def locate_result_containers(html: str) -> Iterator[Tuple[str, Fragment]]:
    """Result containers marked up as search results"""
    soup = BeautifulSoup(html, 'html.parser')
    for elem in soup.select(RESULT_CONTAINER_SELECTOR):
        yield elem.get('data-asin', ''), Fragment(str(elem))


def locate_asin_windows(html: str) -> Iterator[Tuple[str, Fragment]]:
    """A bounded window of markup after each product id attribute

    The window starts at the tag carrying the id and stops at the next id
    attribute for a different product.
    """
    markers = list(ASIN_MARKER.finditer(html))
    for i, match in enumerate(markers):
        product_id = match.group(1)
        start = html.rfind('<', 0, match.start())
        start = match.start() if start < 0 else start
        end = start + WINDOW_SIZE
        for later in markers[i + 1:]:
            if later.group(1) != product_id:
                boundary = html.rfind('<', start + 1, later.start())
                end = min(end, boundary if boundary > start else later.start())
                break
        yield product_id, Fragment(html[start:end])


def locate_product_links(html: str) -> Iterator[Tuple[str, Fragment]]:
    """Last resort: bare product links with their anchor text"""
    for match in PRODUCT_HREF.finditer(html):
        start = html.rfind('<', 0, match.start())
        start = match.start() if start < 0 else start
        yield match.group(1), Fragment(html[start:start + WINDOW_SIZE])


ID_LOCATORS = [
    ('result-container', locate_result_containers),
    ('asin-window', locate_asin_windows),
    ('product-link', locate_product_links),
]


def _candidates_from(locator, html: str, max_results: int) -> List[Candidate]:
    candidates = []
    seen = set()
    for raw_id, fragment in locator(html):
        product_id = (raw_id or '').upper()
        if is_placeholder_id(product_id) or product_id in seen:
            continue
        seen.add(product_id)

        marker = ad_marker(fragment)
        if marker:
            logger.debug('search: skipping sponsored %s (%s)', product_id, marker)
            continue

        try:
            strategy, title = extract_first(TITLE_STRATEGIES, fragment, MIN_TITLE_LENGTH)
        except ParseFailure:
            logger.debug('search: no title for %s, discarded', product_id)
            continue
        title = clean_title(title)
        if len(title) < MIN_TITLE_LENGTH:
            logger.debug('search: title too short for %s, discarded', product_id)
            continue

        candidates.append(Candidate(
            title=title,
            product_id=product_id,
            price=_optional(PRICE_STRATEGIES, fragment),
            image_url=_optional(IMAGE_STRATEGIES, fragment),
        ))
        logger.debug('search: %s titled via %s', product_id, strategy)
        if len(candidates) >= max_results:
            break
    return candidates


def parse_search_results(html: str, max_results: int = DEFAULT_MAX_RESULTS) -> List[Candidate]:
    """Organic candidates from a results page, in page order

    Locators are tried in order and the first one that produces any
    candidate wins.
    """
    if not html:
        return []
    for name, locator in ID_LOCATORS:
        candidates = _candidates_from(locator, html, max_results)
        if candidates:
            logger.debug('search: %d candidates via %s', len(candidates), name)
            return candidates
    return []


class ReplacementSearcher:
    """Search the marketplace for products that could replace a dead link"""

    def __init__(self, fetcher, max_results: int = DEFAULT_MAX_RESULTS,
                 signatures: Optional[PageSignatures] = None):
        if max_results < 1:
            raise ValueError('max_results must be at least 1')
        self.fetcher = fetcher
        self.max_results = max_results
        self.signatures = signatures or PageSignatures()

    def search(self, query: str, region: Optional[Region] = None) -> List[Candidate]:
        """Return organic candidates for a query; fetch failures propagate"""
        if not isinstance(query, str) or not query.strip():
            raise ValueError('Search query must be a non-empty string')

        url = search_url(query.strip(), region)
        result = self.fetcher.get(url)

        if result.status_code == 429:
            raise RateLimited(url, 'Search rate limited (HTTP 429)')
        if result.status_code >= 500:
            raise NetworkFailure(url, f'Search returned HTTP {result.status_code}')
        if not 200 <= result.status_code < 300:
            raise FetchError(url, f'Search returned HTTP {result.status_code}')
        if self.signatures.matches('captcha', (result.text or '').lower()):
            raise RateLimited(url, 'Search blocked by bot check')

        candidates = parse_search_results(result.text, self.max_results)
        logger.info('search: %d candidates for %r', len(candidates), query)
        return candidates
