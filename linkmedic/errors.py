"""
Exceptions raised by LinkMedic

Operational failures (network, throttling, markup drift) are raised by the
low-level pieces and turned into UNKNOWN records or failed suggestion
results by the coordinators. Nothing here should escape a batch.
"""

from typing import Optional


class LinkMedicError(Exception):
    """Base class for all LinkMedic errors"""


class ConfigError(LinkMedicError):
    """Configuration file missing, unreadable or invalid"""


class FetchError(LinkMedicError):
    """A page could not be fetched"""

    def __init__(self, url: str, message: str):
        super().__init__(f'{message} ({url})')
        self.url = url
        self.message = message


class NetworkFailure(FetchError):
    """Timeout, DNS failure, connection reset or provider outage"""


class RateLimited(FetchError):
    """Upstream answered 429 or the scraping provider throttled us"""

    def __init__(self, url: str, message: str = 'Rate limited', retry_after: Optional[float] = None):
        super().__init__(url, message)
        self.retry_after = retry_after


class ParseFailure(LinkMedicError):
    """No extraction strategy matched the markup"""
