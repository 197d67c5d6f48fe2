"""
In-memory deal tier with stale-while-revalidate reads.

A DealCache sits in front of any DealSource (the server's store-backed
service, or the HTTP client). Entries are keyed by the request filter and
stay fresh for `ttl` seconds; stale entries keep being served when the
upstream cannot be reached. Concurrent refreshes of one key collapse into a
single upstream call whose result every waiting caller shares.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from booking_schemas import MinPriceDeal
from errors import NetworkError, UpstreamFetchError
from utils import now_utc

logger = logging.getLogger(__name__)

CacheKey = Tuple[int, ...]


@dataclass(frozen=True)
class DealFetch:
    """What a source hands back: deals plus an optional partial-error flag."""

    deals: List[MinPriceDeal]
    error: Optional[str] = None
    from_store: bool = False


class DealSource(Protocol):
    def fetch_deals(self, limit: int, force_refresh: bool = False) -> DealFetch:
        ...


@dataclass(frozen=True)
class DealCacheEntry:
    key: CacheKey
    deals: Tuple[MinPriceDeal, ...]
    fetched_at: datetime
    from_store: bool = False
    error: Optional[str] = None

    def is_fresh(self, now: datetime, ttl: float) -> bool:
        return (now - self.fetched_at).total_seconds() < ttl


@dataclass(frozen=True)
class DealsPage:
    deals: List[MinPriceDeal]
    from_cache: bool
    fetched_at: datetime
    from_store: bool = False
    error: Optional[str] = None
    stale: bool = False

    @property
    def total(self) -> int:
        return len(self.deals)


def _page(entry: DealCacheEntry, from_cache: bool, stale: bool = False) -> DealsPage:
    return DealsPage(
        deals=list(entry.deals),
        from_cache=from_cache,
        fetched_at=entry.fetched_at,
        from_store=entry.from_store,
        error=entry.error,
        stale=stale,
    )


class DealCache:
    def __init__(
        self,
        source: DealSource,
        ttl: float,
        clock: Callable[[], datetime] = now_utc,
        background_refresh: bool = False,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.source = source
        self.ttl = ttl
        self.clock = clock
        self.background_refresh = background_refresh
        self._entries: Dict[CacheKey, DealCacheEntry] = {}
        self._inflight: Dict[Tuple[CacheKey, bool], Future] = {}
        self._lock = threading.Lock()
        self._executor = executor
        if background_refresh and executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="deal-refresh")

    @staticmethod
    def key_for(limit: int) -> CacheKey:
        return (limit,)

    def peek(self, limit: int) -> Optional[DealCacheEntry]:
        with self._lock:
            return self._entries.get(self.key_for(limit))

    def get(self, limit: int, force_refresh: bool = False) -> DealsPage:
        """
        Fresh entry and no force: served from memory with from_cache=True.
        Otherwise the source is asked again and the entry replaced
        (from_cache=False). If that fails, a stale entry is served instead;
        with no entry at all the UpstreamFetchError reaches the caller.
        """
        key = self.key_for(limit)
        entry = self.peek(limit)

        if entry is not None and not force_refresh:
            if entry.is_fresh(self.clock(), self.ttl):
                return _page(entry, from_cache=True)
            if self.background_refresh:
                self._schedule_refresh(key, limit)
                return _page(entry, from_cache=True, stale=True)

        try:
            fresh = self._refresh(key, limit, force_refresh)
        except (UpstreamFetchError, NetworkError) as exc:
            if entry is None:
                raise
            logger.warning("Deal refresh for %s failed, serving entry from %s: %s",
                           key, entry.fetched_at.isoformat(), exc.message)
            return _page(entry, from_cache=True, stale=True)
        return _page(fresh, from_cache=False)

    def invalidate(self, limit: Optional[int] = None) -> None:
        with self._lock:
            if limit is None:
                self._entries.clear()
            else:
                self._entries.pop(self.key_for(limit), None)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    def _refresh(self, key: CacheKey, limit: int, force_refresh: bool) -> DealCacheEntry:
        flight = (key, force_refresh)
        with self._lock:
            future = self._inflight.get(flight)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[flight] = future

        if not leader:
            logger.debug("Joining in-flight deal refresh for %s", key)
            return future.result()

        try:
            entry = self._load(key, limit, force_refresh)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(entry)
            return entry
        finally:
            with self._lock:
                self._inflight.pop(flight, None)

    def _load(self, key: CacheKey, limit: int, force_refresh: bool) -> DealCacheEntry:
        result = self.source.fetch_deals(limit, force_refresh=force_refresh)
        if result.error and not result.deals:
            raise UpstreamFetchError(result.error)
        if result.error:
            logger.warning("Deal source reported '%s' with %d deals; serving them", result.error, len(result.deals))

        entry = DealCacheEntry(
            key=key,
            deals=tuple(result.deals),
            fetched_at=self.clock(),
            from_store=result.from_store,
            error=result.error,
        )
        with self._lock:
            self._entries[key] = entry
        logger.info("Cached %d deals for %s", len(entry.deals), key)
        return entry

    def _schedule_refresh(self, key: CacheKey, limit: int) -> None:
        with self._lock:
            if (key, False) in self._inflight:
                return
        self._executor.submit(self._refresh_quietly, key, limit)

    def _refresh_quietly(self, key: CacheKey, limit: int) -> None:
        try:
            self._refresh(key, limit, False)
        except (UpstreamFetchError, NetworkError) as exc:
            logger.warning("Background deal refresh for %s failed: %s", key, exc.message)
