"""
Probe result cache

Keyed by product id (or the normalized URL when the link carries none), so
two affiliate links to the same product share one entry: availability
belongs to the product, not the tag. Expiry is lazy, an entry older than
the TTL reads as absent and nothing sweeps the store.
"""

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from .models import CacheEntry, LinkStatus


logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60


class CacheStore:
    """Interface shared by the cache backends"""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        if ttl_seconds <= 0:
            raise ValueError('ttl_seconds must be positive')
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def is_expired(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.cached_at > self.ttl_seconds

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._read(key)
        if entry is None:
            logger.debug('cache: MISS %s', key)
            return None
        if self.is_expired(entry):
            logger.debug('cache: EXPIRED %s (age %.0fs)', key, self.clock() - entry.cached_at)
            return None
        logger.debug('cache: HIT %s -> %s', key, entry.status.value)
        return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        if entry.status is LinkStatus.UNKNOWN:
            raise ValueError('UNKNOWN results are never cached')
        self._write(key, entry)
        logger.debug('cache: SAVED %s -> %s', key, entry.status.value)

    def _read(self, key: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    def _write(self, key: str, entry: CacheEntry) -> None:
        raise NotImplementedError


class MemoryCacheStore(CacheStore):
    """In-process cache, safe to share between audit worker threads"""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        super().__init__(ttl_seconds, clock)
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def _read(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def _write(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SQLiteCacheStore(CacheStore):
    """Cache persisted in a SQLite file so results survive between runs"""

    def __init__(self, db_path: Union[str, Path], ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        super().__init__(ttl_seconds, clock)
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self._init_db()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute('PRAGMA journal_mode=WAL')
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS link_cache (
                    key TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    http_code INTEGER,
                    final_url TEXT,
                    reason TEXT,
                    url TEXT,
                    cached_at REAL NOT NULL,
                    hit_count INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            columns = {row['name'] for row in conn.execute('PRAGMA table_info(link_cache)')}
            if 'url' not in columns:
                conn.execute('ALTER TABLE link_cache ADD COLUMN url TEXT')

    def _read(self, key: str) -> Optional[CacheEntry]:
        with self._lock, self._connect() as conn:
            row = conn.execute('SELECT * FROM link_cache WHERE key = ?', (key,)).fetchone()
            if row is None:
                return None
            conn.execute('UPDATE link_cache SET hit_count = hit_count + 1 WHERE key = ?', (key,))
        try:
            status = LinkStatus(row['status'])
        except ValueError:
            logger.warning('cache: dropping entry %s with unknown status %r', key, row['status'])
            return None
        return CacheEntry(
            key=row['key'],
            status=status,
            http_code=row['http_code'],
            cached_at=row['cached_at'],
            final_url=row['final_url'],
            reason=row['reason'] or '',
            url=row['url'],
        )

    def _write(self, key: str, entry: CacheEntry) -> None:
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO link_cache (key, status, http_code, final_url, reason, url, cached_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    status = excluded.status,
                    http_code = excluded.http_code,
                    final_url = excluded.final_url,
                    reason = excluded.reason,
                    url = excluded.url,
                    cached_at = excluded.cached_at
                """,
                (key, entry.status.value, entry.http_code, entry.final_url, entry.reason, entry.url, entry.cached_at),
            )

    def stats(self) -> dict:
        """Entry counts split by freshness, plus total hits"""
        cutoff = self.clock() - self.ttl_seconds
        with self._lock, self._connect() as conn:
            total = conn.execute('SELECT COUNT(*) FROM link_cache').fetchone()[0]
            valid = conn.execute('SELECT COUNT(*) FROM link_cache WHERE cached_at >= ?', (cutoff,)).fetchone()[0]
            hits = conn.execute('SELECT COALESCE(SUM(hit_count), 0) FROM link_cache').fetchone()[0]
        return {'total_entries': total, 'valid_entries': valid, 'expired_entries': total - valid, 'total_hits': hits}


def build_cache(settings: dict) -> CacheStore:
    ttl = settings['cache_ttl_hours'] * 60 * 60
    if settings.get('cache_path'):
        return SQLiteCacheStore(settings['cache_path'], ttl_seconds=ttl)
    return MemoryCacheStore(ttl_seconds=ttl)
