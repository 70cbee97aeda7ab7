"""
LinkMedic - affiliate link auditing and replacement suggestions
"""

from .audit import AuditCoordinator
from .cache import MemoryCacheStore, SQLiteCacheStore
from .config import Config
from .errors import ConfigError, FetchError, LinkMedicError, NetworkFailure, ParseFailure, RateLimited
from .fetch import HttpFetcher, ScrapingBeeFetcher
from .models import (
    Candidate,
    LinkRecord,
    LinkStatus,
    SearchContext,
    SuggestionRequest,
    SuggestionResult,
)
from .prober import Prober
from .ratelimit import TokenBucket
from .scoring import score
from .search import ReplacementSearcher
from .suggest import SuggestionCoordinator

__version__ = '1.0.0'
