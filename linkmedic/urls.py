"""
URL classification for affiliate links

Pure functions, no I/O. Works out which marketplace a link belongs to,
pulls out the product id and affiliate tag, and recognises the search
result pages a dead product gets redirected to.
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import parse_qsl, quote_plus, urlencode, urlparse, urlunparse

from .models import LinkKind, Merchant


@dataclass(frozen=True)
class Region:
    code: str
    domain: str
    country_code: str
    currency: str


REGIONS: Dict[str, Region] = {
    'US': Region('US', 'amazon.com', 'us', '$'),
    'UK': Region('UK', 'amazon.co.uk', 'gb', '£'),
    'CA': Region('CA', 'amazon.ca', 'ca', 'CA$'),
    'DE': Region('DE', 'amazon.de', 'de', '€'),
    'FR': Region('FR', 'amazon.fr', 'fr', '€'),
    'ES': Region('ES', 'amazon.es', 'es', '€'),
    'IT': Region('IT', 'amazon.it', 'it', '€'),
    'AU': Region('AU', 'amazon.com.au', 'au', 'A$'),
    'JP': Region('JP', 'amazon.co.jp', 'jp', '¥'),
    'IN': Region('IN', 'amazon.in', 'in', '₹'),
    'MX': Region('MX', 'amazon.com.mx', 'mx', 'MX$'),
    'BR': Region('BR', 'amazon.com.br', 'br', 'R$'),
    'NL': Region('NL', 'amazon.nl', 'nl', '€'),
    'SE': Region('SE', 'amazon.se', 'se', 'kr'),
    'PL': Region('PL', 'amazon.pl', 'pl', 'zł'),
}
DEFAULT_REGION = REGIONS['US']

SHORT_LINK_HOSTS = ('amzn.to', 'amzn.com', 'a.co')

PRODUCT_ID_PATTERNS = [
    re.compile(r'/dp/([A-Z0-9]{10})(?:[/?#]|$)', re.IGNORECASE),
    re.compile(r'/gp/product/([A-Z0-9]{10})(?:[/?#]|$)', re.IGNORECASE),
    re.compile(r'/gp/aw/d/([A-Z0-9]{10})(?:[/?#]|$)', re.IGNORECASE),
    re.compile(r'/exec/obidos/ASIN/([A-Z0-9]{10})(?:[/?#]|$)', re.IGNORECASE),
    re.compile(r'/o/ASIN/([A-Z0-9]{10})(?:[/?#]|$)', re.IGNORECASE),
    re.compile(r'/product/([A-Z0-9]{10})(?:[/?#]|$)', re.IGNORECASE),
    re.compile(r'[?&]asin=([A-Z0-9]{10})(?:[&#]|$)', re.IGNORECASE),
]

TRACKING_PARAMS = {
    'ref', 'ref_', 'linkcode', 'linkid', 'psc', 'smid', 'spla', 'sr', 'th',
    'fbclid', 'gclid', 'dclid', 'qid', 'keywords_ref',
}
TRACKING_PREFIXES = ('utm_', 'pd_rd_', 'pf_rd_')

SEARCH_QUERY_KEYS = ('k', 'keywords', 'i', 'rh', 'field-keywords')


@dataclass(frozen=True)
class UrlInfo:
    url: str
    normalized_url: str
    kind: LinkKind
    merchant: Merchant
    product_id: Optional[str]
    affiliate_tag: Optional[str]
    region: Optional[Region]

    @property
    def cache_key(self) -> str:
        return self.product_id or self.normalized_url


def _hostname(url: str) -> str:
    try:
        return (urlparse(url).hostname or '').lower()
    except ValueError:
        return ''


def is_short_link(url: str) -> bool:
    host = _hostname(url)
    return any(host == h or host.endswith('.' + h) for h in SHORT_LINK_HOSTS)


def detect_region(url: str) -> Optional[Region]:
    """Return the marketplace region a URL points at, or None for other sites"""
    host = _hostname(url)
    if not host:
        return None
    if is_short_link(url):
        return DEFAULT_REGION
    # Longest domains first so amazon.com.au wins over amazon.com
    for region in sorted(REGIONS.values(), key=lambda r: len(r.domain), reverse=True):
        if host == region.domain or host.endswith('.' + region.domain):
            return region
    return None


def is_marketplace_url(url: str) -> bool:
    return detect_region(url) is not None


def extract_product_id(url: str) -> Optional[str]:
    """Extract the 10-character product id from a marketplace URL"""
    if not url:
        return None
    for pattern in PRODUCT_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1).upper()
    return None


def extract_affiliate_tag(url: str) -> Optional[str]:
    try:
        query = urlparse(url).query
    except ValueError:
        return None
    for key, value in parse_qsl(query, keep_blank_values=True):
        if key.lower() == 'tag' and value:
            return value
    return None


def has_affiliate_tag(url: str, expected: Optional[str] = None) -> bool:
    tag = extract_affiliate_tag(url)
    if not tag:
        return False
    if expected:
        return tag.lower() == expected.lower()
    return True


def normalize_url(url: str) -> str:
    """Strip tracking parameters and fragments, lower-case the host, keep the tag"""
    if not isinstance(url, str):
        raise TypeError(f'URL must be a string, got {type(url).__name__}')
    url = url.strip()
    if url.startswith('//'):
        url = 'https:' + url
    elif not url.startswith(('http://', 'https://')):
        url = 'https://' + url
    try:
        parts = urlparse(url)
    except ValueError:
        return url
    query = [
        (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k.lower() not in TRACKING_PARAMS and not k.lower().startswith(TRACKING_PREFIXES)
    ]
    fragment = '' if 'ref=' in parts.fragment else parts.fragment
    netloc = parts.netloc.lower()
    path = parts.path or '/'
    return urlunparse((parts.scheme.lower(), netloc, path, parts.params, urlencode(query), fragment))


def is_search_results_url(url: str) -> bool:
    """True when the URL is a marketplace search or browse page rather than a product"""
    # Search and browse shapes only mean something on the marketplace itself
    if not is_marketplace_url(url):
        return False
    try:
        parts = urlparse(url)
    except ValueError:
        return False
    path = parts.path or '/'
    keys = {k.lower() for k, _ in parse_qsl(parts.query, keep_blank_values=True)}
    if path.rstrip('/') == '/s' and keys & set(SEARCH_QUERY_KEYS):
        return True
    if path.startswith(('/s/ref=', '/stores/')):
        return True
    return path.startswith('/b/') or (path.rstrip('/') == '/b' and 'node' in keys)


def classify_url(url: str) -> UrlInfo:
    """Work out what kind of link a raw URL is"""
    normalized = normalize_url(url)
    region = detect_region(normalized)
    product_id = extract_product_id(normalized) if region else None
    if region is None:
        kind = LinkKind.UNKNOWN_MERCHANT
    elif is_short_link(normalized):
        kind = LinkKind.SHORT_LINK
    elif product_id:
        kind = LinkKind.PRODUCT_PAGE
    else:
        kind = LinkKind.MARKETPLACE_OTHER
    return UrlInfo(
        url=url,
        normalized_url=normalized,
        kind=kind,
        merchant=Merchant.MARKETPLACE if region else Merchant.UNKNOWN,
        product_id=product_id,
        affiliate_tag=extract_affiliate_tag(normalized),
        region=region,
    )


def append_affiliate_tag(url: str, tag: str) -> str:
    """Set (or replace) the affiliate tag on a URL"""
    parts = urlparse(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k.lower() != 'tag']
    if tag:
        query.append(('tag', tag))
    return urlunparse((parts.scheme, parts.netloc, parts.path, parts.params, urlencode(query), parts.fragment))


def product_url(product_id: str, region: Optional[Region] = None, tag: Optional[str] = None) -> str:
    """Canonical product page URL for a parsed product id"""
    region = region or DEFAULT_REGION
    url = f'https://www.{region.domain}/dp/{product_id}'
    return append_affiliate_tag(url, tag) if tag else url


def search_url(query: str, region: Optional[Region] = None) -> str:
    region = region or DEFAULT_REGION
    return f'https://www.{region.domain}/s?k={quote_plus(query)}'
