"""
Batch link auditing with a bounded worker pool
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional

from .models import LinkRecord, LinkStatus
from .prober import Prober


logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5

ProgressCallback = Callable[[int, int], None]


class AuditCoordinator:
    """Run probers over a batch of URLs, at most ``concurrency`` at a time"""

    def __init__(self, prober: Prober, concurrency: int = DEFAULT_CONCURRENCY):
        if not isinstance(concurrency, int) or concurrency < 1:
            raise ValueError(f'concurrency must be a positive integer, got {concurrency!r}')
        self.prober = prober
        self.concurrency = concurrency

    def _probe_slot(self, url: str, cancel: Optional[threading.Event]) -> LinkRecord:
        if cancel is not None and cancel.is_set():
            return self.prober.unknown(url, 'Audit cancelled before this link was checked')
        return self.prober.probe(url)

    def audit_links(self, urls: List[str], cancel: Optional[threading.Event] = None,
                    on_progress: Optional[ProgressCallback] = None) -> List[LinkRecord]:
        """Audit every URL, returning one record per input in input order

        Duplicates are probed independently. A failure in one slot only
        turns that slot UNKNOWN. When ``cancel`` is set, links not yet
        started come back UNKNOWN and in-flight probes finish.
        """
        urls = list(urls)
        for url in urls:
            if not isinstance(url, str):
                raise TypeError(f'URLs must be strings, got {type(url).__name__}')
        if not urls:
            return []

        results: List[Optional[LinkRecord]] = [None] * len(urls)
        total = len(urls)
        completed = 0

        with ThreadPoolExecutor(max_workers=min(self.concurrency, total)) as executor:
            future_to_index = {
                executor.submit(self._probe_slot, url, cancel): index
                for index, url in enumerate(urls)
            }

            for future in as_completed(future_to_index):
                index = future_to_index[future]
                try:
                    results[index] = future.result()
                except Exception as e:
                    logger.exception('audit: worker failed for %s', urls[index])
                    results[index] = self.prober.unknown(urls[index], f'Check failed: {e}')

                completed += 1
                if on_progress is not None:
                    on_progress(completed, total)

        records = [
            record if record is not None else self.prober.unknown(urls[i], 'No result available')
            for i, record in enumerate(results)
        ]
        broken = sum(1 for r in records if r.status.is_broken)
        unknown = sum(1 for r in records if r.status is LinkStatus.UNKNOWN)
        logger.info('audit: %d links, %d broken, %d unknown, %d from cache',
                    total, broken, unknown, sum(1 for r in records if r.from_cache))
        return records
