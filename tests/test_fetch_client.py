# tests/test_fetch_client.py
from __future__ import annotations

import asyncio

import httpx
import pytest
import respx
from httpx import Response

from wikimcp.core.fetch import (
    FetchError,
    FetchOptions,
    FetchTimeoutError,
    RateLimiter,
    ResilientFetcher,
    TTLCache,
    TransientFetchError,
    USER_AGENT,
)

URL = "https://example.test/api"


# -------------------------------- test utilities --------------------------------------


@pytest.fixture
def make_fetcher(clock):
    """Fetcher wired to the fake clock for cache, limiter and backoff."""

    def factory(**kwargs) -> ResilientFetcher:
        cache = kwargs.pop("cache", TTLCache(clock=clock))
        limiter = kwargs.pop("limiter", RateLimiter(clock=clock, sleep=clock.sleep))
        return ResilientFetcher(cache, limiter, sleep=clock.sleep, **kwargs)

    return factory


def run(coro):
    return asyncio.run(coro)


async def _fetch_json_and_close(fetcher: ResilientFetcher, url: str = URL, **kwargs):
    async with fetcher:
        return await fetcher.fetch_json(url, **kwargs)


# -------------------------------- success and headers ----------------------------------


@respx.mock
def test_fetch_json_sends_identification_headers(make_fetcher):
    route = respx.get(URL).mock(return_value=Response(200, json={"ok": True}))

    data = run(_fetch_json_and_close(make_fetcher()))

    assert data == {"ok": True}
    request = route.calls.last.request
    assert request.headers["User-Agent"] == USER_AGENT
    assert request.headers["Api-User-Agent"] == USER_AGENT
    assert request.headers["Accept-Encoding"] == "gzip, br"


@respx.mock
def test_fetch_text_returns_raw_body(make_fetcher):
    respx.get(URL).mock(return_value=Response(200, text="<html>hi</html>"))

    async def scenario():
        async with make_fetcher() as fetcher:
            return await fetcher.fetch_text(URL)

    assert run(scenario()) == "<html>hi</html>"


@respx.mock
def test_invalid_json_raises_fetch_error(make_fetcher):
    respx.get(URL).mock(return_value=Response(200, text="not json"))

    with pytest.raises(FetchError) as exc_info:
        run(_fetch_json_and_close(make_fetcher()))

    assert exc_info.value.status_code == 200
    assert "Invalid JSON" in str(exc_info.value)


# -------------------------------- retry and backoff ------------------------------------


@respx.mock
def test_retries_transient_failures_then_succeeds(make_fetcher, clock):
    route = respx.get(URL).mock(side_effect=[
        Response(503, text="busy"),
        Response(503, text="busy"),
        Response(200, json={"page": "Paris"}),
    ])

    data = run(_fetch_json_and_close(make_fetcher(), retries=3, throttle_ms=0))

    assert data == {"page": "Paris"}
    assert route.call_count == 3
    # exponential backoff: 500ms then 1000ms
    assert clock.sleeps == [pytest.approx(0.5), pytest.approx(1.0)]


@respx.mock
def test_exhausted_retries_raise_with_status(make_fetcher, clock):
    route = respx.get(URL).mock(return_value=Response(503, text="down for maintenance"))

    with pytest.raises(FetchError) as exc_info:
        run(_fetch_json_and_close(make_fetcher(), retries=1, throttle_ms=0))

    err = exc_info.value
    assert err.status_code == 503
    assert "503" in str(err)
    assert err.body == "down for maintenance"
    # escalated: no longer marked as retryable
    assert not isinstance(err, TransientFetchError)
    assert isinstance(err.cause, TransientFetchError)
    assert isinstance(err.__cause__, TransientFetchError)
    assert route.call_count == 2
    assert clock.sleeps == [pytest.approx(0.5)]


@respx.mock
def test_exhausted_transport_errors_raise_fetch_error(make_fetcher):
    respx.get(URL).mock(side_effect=httpx.ConnectError("connection refused"))

    with pytest.raises(FetchError) as exc_info:
        run(_fetch_json_and_close(make_fetcher(), retries=1, throttle_ms=0))

    assert not isinstance(exc_info.value, TransientFetchError)
    assert exc_info.value.status_code is None


@respx.mock
def test_non_retryable_status_fails_immediately(make_fetcher, clock):
    route = respx.get(URL).mock(return_value=Response(404, text="missing"))

    with pytest.raises(FetchError) as exc_info:
        run(_fetch_json_and_close(make_fetcher(), retries=3, throttle_ms=0))

    assert not isinstance(exc_info.value, TransientFetchError)
    assert exc_info.value.status_code == 404
    assert str(exc_info.value) == "HTTP 404: missing"
    assert route.call_count == 1
    assert clock.sleeps == []


@respx.mock
def test_zero_retries_makes_a_single_attempt(make_fetcher):
    route = respx.get(URL).mock(return_value=Response(500))

    with pytest.raises(FetchError):
        run(_fetch_json_and_close(make_fetcher(), retries=0, throttle_ms=0))

    assert route.call_count == 1


@respx.mock
def test_retry_after_header_takes_precedence(make_fetcher, clock):
    respx.get(URL).mock(side_effect=[
        Response(429, headers={"retry-after": "2"}),
        Response(200, json=[1, 2, 3]),
    ])

    data = run(_fetch_json_and_close(make_fetcher(), throttle_ms=0))

    assert data == [1, 2, 3]
    assert clock.sleeps == [2.0]


@respx.mock
def test_retry_after_does_not_reset_backoff_escalation(make_fetcher, clock):
    respx.get(URL).mock(side_effect=[
        Response(503),
        Response(429, headers={"retry-after": "5"}),
        Response(503),
        Response(200, json={}),
    ])

    run(_fetch_json_and_close(make_fetcher(), retries=3, throttle_ms=0))

    # 500ms, server says 5s, then the doubled-twice 2000ms
    assert clock.sleeps == [pytest.approx(0.5), 5.0, pytest.approx(2.0)]


@respx.mock
def test_retry_after_cap(make_fetcher, clock):
    respx.get(URL).mock(side_effect=[
        Response(429, headers={"retry-after": "3600"}),
        Response(200, json={}),
    ])

    run(_fetch_json_and_close(make_fetcher(max_retry_after=10), throttle_ms=0))

    assert clock.sleeps == [10]


@respx.mock
def test_throttle_applies_to_every_attempt(make_fetcher, clock):
    respx.get(URL).mock(side_effect=[Response(503), Response(200, json={})])
    start = clock.now

    run(_fetch_json_and_close(make_fetcher(), retries=1, throttle_ms=1_000))

    # 500ms backoff, then the limiter holds the retry until 1s after the first attempt
    assert clock.now - start == pytest.approx(1.0)


@respx.mock
def test_transport_errors_are_retried(make_fetcher):
    route = respx.get(URL).mock(side_effect=[
        httpx.ConnectError("connection refused"),
        Response(200, json={"ok": 1}),
    ])

    data = run(_fetch_json_and_close(make_fetcher(), throttle_ms=0))

    assert data == {"ok": 1}
    assert route.call_count == 2


@respx.mock
def test_transport_errors_without_retry(make_fetcher):
    route = respx.get(URL).mock(side_effect=httpx.ConnectError("connection refused"))

    with pytest.raises(FetchError) as exc_info:
        run(_fetch_json_and_close(make_fetcher(retry_transport_errors=False), throttle_ms=0))

    assert exc_info.value.status_code is None
    assert isinstance(exc_info.value.cause, httpx.ConnectError)
    assert route.call_count == 1


# -------------------------------- caching ----------------------------------------------


@respx.mock
def test_cache_hit_skips_network(make_fetcher):
    route = respx.get(URL).mock(return_value=Response(200, json={"n": 1}))

    async def scenario():
        async with make_fetcher() as fetcher:
            first = await fetcher.fetch_json(URL, cache_ttl_ms=60_000, throttle_ms=0)
            second = await fetcher.fetch_json(URL, cache_ttl_ms=60_000, throttle_ms=0)
            return first, second

    assert run(scenario()) == ({"n": 1}, {"n": 1})
    assert route.call_count == 1


@respx.mock
def test_zero_ttl_never_caches(make_fetcher):
    route = respx.get(URL).mock(return_value=Response(200, json={"n": 1}))

    async def scenario():
        async with make_fetcher() as fetcher:
            await fetcher.fetch_json(URL, throttle_ms=0)
            await fetcher.fetch_json(URL, throttle_ms=0)
            return fetcher.cache

    cache = run(scenario())
    assert route.call_count == 2
    assert len(cache) == 0


@respx.mock
def test_cache_expires_after_ttl(make_fetcher, clock):
    route = respx.get(URL).mock(return_value=Response(200, json={"n": 1}))

    async def scenario():
        async with make_fetcher() as fetcher:
            await fetcher.fetch_json(URL, cache_ttl_ms=1_000, throttle_ms=0)
            clock.advance(1.5)
            await fetcher.fetch_json(URL, cache_ttl_ms=1_000, throttle_ms=0)

    run(scenario())
    assert route.call_count == 2


@respx.mock
def test_cached_null_is_a_hit(make_fetcher):
    route = respx.get(URL).mock(return_value=Response(200, content=b"null"))

    async def scenario():
        async with make_fetcher() as fetcher:
            first = await fetcher.fetch_json(URL, cache_ttl_ms=60_000, throttle_ms=0)
            second = await fetcher.fetch_json(URL, cache_ttl_ms=60_000, throttle_ms=0)
            return first, second

    assert run(scenario()) == (None, None)
    assert route.call_count == 1


@respx.mock
def test_custom_cache_key(make_fetcher):
    respx.get(URL).mock(return_value=Response(200, json={"n": 1}))

    async def scenario():
        async with make_fetcher() as fetcher:
            await fetcher.fetch_json(URL, FetchOptions(cache_ttl_ms=60_000, cache_key="custom", throttle_ms=0))
            return fetcher.cache

    cache = run(scenario())
    assert cache.get("custom") == {"n": 1}
    assert cache.get(URL) is None


@respx.mock
def test_text_and_json_cache_entries_are_isolated(make_fetcher):
    route = respx.get(URL).mock(return_value=Response(200, json={"kind": "json"}))

    async def scenario():
        async with make_fetcher() as fetcher:
            as_json = await fetcher.fetch_json(URL, cache_ttl_ms=60_000, throttle_ms=0)
            as_text = await fetcher.fetch_text(URL, cache_ttl_ms=60_000, throttle_ms=0)
            json_again = await fetcher.fetch_json(URL, cache_ttl_ms=60_000, throttle_ms=0)
            text_again = await fetcher.fetch_text(URL, cache_ttl_ms=60_000, throttle_ms=0)
            return as_json, as_text, json_again, text_again

    as_json, as_text, json_again, text_again = run(scenario())

    assert as_json == {"kind": "json"}
    assert isinstance(as_text, str) and '"kind"' in as_text
    assert json_again == as_json
    assert text_again == as_text
    # one network call per representation
    assert route.call_count == 2


@respx.mock
def test_failures_are_not_cached(make_fetcher):
    route = respx.get(URL).mock(side_effect=[Response(404), Response(200, json={"ok": True})])

    async def scenario():
        async with make_fetcher() as fetcher:
            with pytest.raises(FetchError):
                await fetcher.fetch_json(URL, cache_ttl_ms=60_000, throttle_ms=0)
            return await fetcher.fetch_json(URL, cache_ttl_ms=60_000, throttle_ms=0)

    assert run(scenario()) == {"ok": True}
    assert route.call_count == 2


# -------------------------------- coalescing and deadlines -----------------------------


@respx.mock
def test_concurrent_identical_requests_are_coalesced(make_fetcher):
    route = respx.get(URL).mock(return_value=Response(200, json={"shared": True}))

    async def scenario():
        async with make_fetcher() as fetcher:
            return await asyncio.gather(*(fetcher.fetch_json(URL, throttle_ms=0) for _ in range(4)))

    results = run(scenario())
    assert results == [{"shared": True}] * 4
    assert route.call_count == 1


@respx.mock
def test_requests_with_different_retry_budgets_are_not_shared(make_fetcher):
    route = respx.get(URL).mock(side_effect=[
        Response(503),
        Response(503),
        Response(200, json={"ok": True}),
    ])

    async def scenario():
        async with make_fetcher() as fetcher:
            return await asyncio.gather(
                fetcher.fetch_json(URL, retries=0, throttle_ms=0),
                fetcher.fetch_json(URL, retries=3, throttle_ms=0),
                return_exceptions=True,
            )

    no_retry, with_retry = run(scenario())

    assert isinstance(no_retry, FetchError) and no_retry.status_code == 503
    assert with_retry == {"ok": True}
    assert route.call_count == 3


@respx.mock
def test_different_urls_sharing_a_cache_key_are_not_shared(make_fetcher):
    respx.get(URL + "/1").mock(return_value=Response(200, json={"u": 1}))
    respx.get(URL + "/2").mock(return_value=Response(200, json={"u": 2}))

    async def scenario():
        async with make_fetcher() as fetcher:
            return await asyncio.gather(
                fetcher.fetch_json(URL + "/1", cache_key="k", throttle_ms=0),
                fetcher.fetch_json(URL + "/2", cache_key="k", throttle_ms=0),
            )

    assert run(scenario()) == [{"u": 1}, {"u": 2}]


@respx.mock
def test_coalescing_can_be_disabled(make_fetcher):
    route = respx.get(URL).mock(return_value=Response(200, json={}))

    async def scenario():
        async with make_fetcher(coalesce=False) as fetcher:
            await asyncio.gather(*(fetcher.fetch_json(URL, throttle_ms=0) for _ in range(3)))

    run(scenario())
    assert route.call_count == 3


@respx.mock
def test_coalesced_waiters_share_the_failure(make_fetcher):
    respx.get(URL).mock(return_value=Response(400, text="bad"))

    async def scenario():
        async with make_fetcher() as fetcher:
            return await asyncio.gather(
                *(fetcher.fetch_json(URL, throttle_ms=0) for _ in range(2)),
                return_exceptions=True,
            )

    results = run(scenario())
    assert all(isinstance(r, FetchError) and r.status_code == 400 for r in results)


@respx.mock
def test_deadline_exceeded_raises_timeout():
    respx.get(URL).mock(return_value=Response(503))

    async def scenario():
        # real sleeps: backoff of 0.5s cannot finish inside a 50ms deadline
        fetcher = ResilientFetcher(TTLCache(), RateLimiter())
        async with fetcher:
            await fetcher.fetch_json(URL, retries=3, throttle_ms=0, deadline_s=0.05)

    with pytest.raises(FetchTimeoutError) as exc_info:
        run(scenario())
    assert exc_info.value.url == URL


@respx.mock
def test_injected_client_is_not_closed(make_fetcher):
    respx.get(URL).mock(return_value=Response(200, json={}))

    async def scenario():
        client = httpx.AsyncClient()
        async with make_fetcher(client=client) as fetcher:
            await fetcher.fetch_json(URL, throttle_ms=0)
        closed = client.is_closed
        await client.aclose()
        return closed

    assert run(scenario()) is False
