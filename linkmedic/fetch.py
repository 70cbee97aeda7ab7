"""
HTTP fetchers

Two interchangeable clients with the same ``get(url) -> FetchResult``
interface: a direct ``requests`` fetcher with rotating browser headers, and
a fetcher that goes through the ScrapingBee proxy API to get past the
marketplace's bot defences. Both are passed into the prober and searcher
explicitly so tests can swap in a fake.
"""

import logging
import random
import threading
import time
from typing import Optional, Tuple, Union

import requests
from fake_useragent import UserAgent

from .errors import FetchError, NetworkFailure, RateLimited
from .models import FetchResult
from .urls import DEFAULT_REGION, detect_region


logger = logging.getLogger(__name__)

SCRAPINGBEE_ENDPOINT = 'https://app.scrapingbee.com/api/v1/'

FALLBACK_USER_AGENTS = [
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0',
]

Timeout = Union[float, Tuple[float, float]]


def _retry_after(response: requests.Response) -> Optional[float]:
    value = response.headers.get('Retry-After')
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class HttpFetcher:
    """Direct fetcher with browser-like headers and a rotating user agent"""

    def __init__(self, session: Optional[requests.Session] = None, timeout: Timeout = 10,
                 delay_between_requests: float = 0.0):
        if not timeout:
            raise ValueError('A finite, non-zero timeout is required')
        self.session = session or requests.Session()
        self.timeout = timeout
        self.delay_between_requests = delay_between_requests
        self.ua = UserAgent(fallback=random.choice(FALLBACK_USER_AGENTS))

    def get_headers(self) -> dict:
        """Generate headers with rotating user agent"""
        return {
            'User-Agent': self.ua.random,
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
            'Accept-Language': 'en-US,en;q=0.9',
            'Accept-Encoding': 'gzip, deflate',
            'DNT': '1',
            'Connection': 'keep-alive',
            'Upgrade-Insecure-Requests': '1',
        }

    def get(self, url: str) -> FetchResult:
        """Fetch a URL following redirects"""
        if self.delay_between_requests:
            time.sleep(self.delay_between_requests)
        try:
            response = self.session.get(
                url,
                headers=self.get_headers(),
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.exceptions.Timeout as e:
            raise NetworkFailure(url, f'Request timed out: {e}') from e
        except requests.exceptions.RequestException as e:
            raise NetworkFailure(url, f'Network error: {e}') from e

        if response.status_code == 429:
            raise RateLimited(url, 'HTTP 429 Too Many Requests', retry_after=_retry_after(response))

        return FetchResult(
            url=url,
            final_url=response.url or url,
            status_code=response.status_code,
            text=response.text,
            content_type=response.headers.get('Content-Type', ''),
        )


class ScrapingBeeFetcher:
    """Fetch marketplace pages through the ScrapingBee proxy API"""

    def __init__(self, api_key: str, session: Optional[requests.Session] = None, timeout: Timeout = 10,
                 premium_proxy: bool = True, max_consecutive_failures: int = 5):
        if not api_key:
            raise ValueError('ScrapingBee API key is required')
        if not timeout:
            raise ValueError('A finite, non-zero timeout is required')
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout
        self.premium_proxy = premium_proxy
        self.max_consecutive_failures = max_consecutive_failures
        self._lock = threading.Lock()
        self._consecutive_failures = 0

    @property
    def disabled(self) -> bool:
        with self._lock:
            return self._consecutive_failures >= self.max_consecutive_failures

    def reset(self) -> None:
        with self._lock:
            self._consecutive_failures = 0

    def _record(self, ok: bool) -> None:
        with self._lock:
            if ok:
                self._consecutive_failures = 0
            else:
                self._consecutive_failures += 1
                if self._consecutive_failures == self.max_consecutive_failures:
                    logger.error('scrapingbee: %d consecutive failures, disabling until reset',
                                 self._consecutive_failures)

    def build_params(self, url: str) -> dict:
        region = detect_region(url) or DEFAULT_REGION
        return {
            'api_key': self.api_key,
            'url': url,
            'premium_proxy': 'true' if self.premium_proxy else 'false',
            'country_code': region.country_code,
            'render_js': 'false',
            'transparent_status_code': 'true',
        }

    def get(self, url: str) -> FetchResult:
        """Fetch a URL through the provider, returning the marketplace's own status code"""
        if self.disabled:
            raise NetworkFailure(url, 'Scraping provider disabled after repeated failures')
        try:
            response = self.session.get(
                SCRAPINGBEE_ENDPOINT,
                params=self.build_params(url),
                headers={'Accept': 'text/html'},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            self._record(False)
            raise NetworkFailure(url, f'Provider request timed out: {e}') from e
        except requests.exceptions.RequestException as e:
            self._record(False)
            raise NetworkFailure(url, f'Provider network error: {e}') from e

        if response.status_code == 429:
            self._record(False)
            raise RateLimited(url, 'Scraping provider throttled the request', retry_after=_retry_after(response))
        if response.status_code == 401:
            self._record(False)
            raise FetchError(url, 'Scraping provider rejected the API key')

        resolved = response.headers.get('Spb-Resolved-Url')
        # Without transparent status the provider's own 5xx means it failed, not the page
        if response.status_code >= 500 and not resolved:
            self._record(False)
            raise NetworkFailure(url, f'Scraping provider error HTTP {response.status_code}')

        self._record(True)
        logger.debug('scrapingbee: %s -> %s final=%s', url[:60], response.status_code, (resolved or url)[:60])
        return FetchResult(
            url=url,
            final_url=resolved or url,
            status_code=response.status_code,
            text=response.text,
            content_type=response.headers.get('Content-Type', ''),
        )


def build_fetcher(settings: dict, session: Optional[requests.Session] = None):
    """Pick the provider fetcher when an API key is configured, otherwise fetch directly"""
    timeout = settings['request_timeout']
    if settings.get('scrapingbee_api_key'):
        return ScrapingBeeFetcher(
            settings['scrapingbee_api_key'],
            session=session,
            timeout=timeout,
            max_consecutive_failures=settings['max_consecutive_failures'],
        )
    logger.warning('fetch: no scraping provider key configured, fetching directly (may be blocked)')
    return HttpFetcher(session=session, timeout=timeout,
                       delay_between_requests=settings['delay_between_requests'])
