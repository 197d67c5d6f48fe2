import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from deals.cache import DealCache, DealFetch
from errors import NetworkError, UpstreamFetchError
from conftest import FakeClock, FakeDealSource, make_deal


def _fetch(*prices, error=None):
    return DealFetch(deals=[make_deal(price=p, id=f"d{p}") for p in prices], error=error)


def test_fresh_entry_is_served_from_memory():
    source = FakeDealSource(_fetch(100.0, 200.0))
    clock = FakeClock()
    cache = DealCache(source, ttl=600, clock=clock)

    first = cache.get(5)
    clock.advance(599)
    second = cache.get(5)

    assert first.from_cache is False
    assert second.from_cache is True
    assert second.deals == first.deals
    assert second.fetched_at == first.fetched_at
    assert len(source.calls) == 1


def test_stale_entry_is_refetched():
    source = FakeDealSource(_fetch(100.0), _fetch(80.0))
    clock = FakeClock()
    cache = DealCache(source, ttl=600, clock=clock)

    cache.get(5)
    clock.advance(600)
    page = cache.get(5)

    assert page.from_cache is False
    assert [d.price for d in page.deals] == [80.0]
    assert len(source.calls) == 2


def test_force_refresh_always_fetches():
    source = FakeDealSource(_fetch(100.0), _fetch(90.0))
    cache = DealCache(source, ttl=600, clock=FakeClock())

    cache.get(5)
    page = cache.get(5, force_refresh=True)

    assert page.from_cache is False
    assert [d.price for d in page.deals] == [90.0]
    assert source.calls == [(5, False), (5, True)]


def test_keys_are_independent():
    source = FakeDealSource(_fetch(100.0))
    cache = DealCache(source, ttl=600, clock=FakeClock())
    cache.get(5)
    cache.get(10)
    assert source.calls == [(5, False), (10, False)]


def test_failure_without_entry_raises():
    cache = DealCache(FakeDealSource(UpstreamFetchError("upstream down")), ttl=600, clock=FakeClock())
    with pytest.raises(UpstreamFetchError):
        cache.get(5)


def test_failure_with_stale_entry_serves_it():
    source = FakeDealSource(_fetch(100.0), NetworkError("timeout"))
    clock = FakeClock()
    cache = DealCache(source, ttl=600, clock=clock)
    original = cache.get(5)

    clock.advance(900)
    page = cache.get(5)

    assert page.from_cache is True
    assert page.stale is True
    assert page.deals == original.deals


def test_error_flag_with_empty_list_is_a_hard_failure():
    cache = DealCache(FakeDealSource(_fetch(error="No deals available")), ttl=600, clock=FakeClock())
    with pytest.raises(UpstreamFetchError) as excinfo:
        cache.get(5)
    assert excinfo.value.message == "No deals available"
    assert cache.peek(5) is None


def test_error_flag_with_deals_is_best_effort():
    cache = DealCache(FakeDealSource(_fetch(120.0, error="2 routes failed")), ttl=600, clock=FakeClock())
    page = cache.get(5)
    assert [d.price for d in page.deals] == [120.0]
    assert page.error == "2 routes failed"


def test_invalidate_drops_entries():
    source = FakeDealSource(_fetch(100.0))
    cache = DealCache(source, ttl=600, clock=FakeClock())
    cache.get(5)
    cache.invalidate(5)
    assert cache.get(5).from_cache is False
    assert len(source.calls) == 2


class SlowSource:
    def __init__(self):
        self.calls = 0
        self.release = threading.Event()

    def fetch_deals(self, limit, force_refresh=False):
        self.calls += 1
        self.release.wait(timeout=5)
        return _fetch(100.0)


def test_concurrent_misses_share_one_fetch():
    source = SlowSource()
    cache = DealCache(source, ttl=600, clock=FakeClock())

    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = [pool.submit(cache.get, 5) for _ in range(4)]
        time.sleep(0.2)
        source.release.set()
        pages = [f.result(timeout=5) for f in futures]

    assert source.calls == 1
    assert all(p.deals == pages[0].deals for p in pages)


def test_concurrent_failures_reach_every_waiter():
    release = threading.Event()

    class FailingSource:
        calls = 0

        def fetch_deals(self, limit, force_refresh=False):
            FailingSource.calls += 1
            release.wait(timeout=5)
            raise UpstreamFetchError("upstream down")

    cache = DealCache(FailingSource(), ttl=600, clock=FakeClock())
    with ThreadPoolExecutor(max_workers=3) as pool:
        futures = [pool.submit(cache.get, 5) for _ in range(3)]
        time.sleep(0.2)
        release.set()
        errors = [f.exception(timeout=5) for f in futures]

    assert FailingSource.calls == 1
    assert all(isinstance(e, UpstreamFetchError) for e in errors)


def test_background_refresh_serves_stale_immediately():
    source = FakeDealSource(_fetch(100.0), _fetch(75.0))
    clock = FakeClock()
    executor = ThreadPoolExecutor(max_workers=1)
    cache = DealCache(source, ttl=600, clock=clock, background_refresh=True, executor=executor)

    cache.get(5)
    clock.advance(700)
    stale = cache.get(5)
    executor.shutdown(wait=True)

    assert stale.from_cache is True
    assert stale.stale is True
    assert [d.price for d in stale.deals] == [100.0]
    assert [d.price for d in cache.get(5).deals] == [75.0]
