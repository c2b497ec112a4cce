"""Tests for ProxyPoolManager: weighted selection, usage reports and validation."""

import random
from unittest.mock import patch

import httpx
import pytest

from scrapegate.core.exceptions import ProxyNotFoundError
from scrapegate.schemas.scrape import ScrapeContext
from scrapegate.services.proxy import (
    STATUS_BANNED,
    STATUS_FAILED,
    STATUS_SUCCESS,
    STATUS_TIMEOUT,
    ProxyPoolManager,
    ProxyScore,
    ProxySelection,
    ProxyUsageResult,
    weighted_choice,
)
from tests.fakes import InMemoryProxyStore, make_proxy


def _score(proxy_id: str, value: int) -> ProxyScore:
    return ProxyScore(
        proxy_id=proxy_id,
        score=value,
        success_rate=value,
        ban_rate=0,
        avg_latency_ms=None,
        total_requests=10,
        successful_requests=10,
        failed_requests=0,
        banned_requests=0,
    )


class TestWeightedChoice:
    def test_proportional_draw(self):
        low, high = make_proxy("low"), make_proxy("high")
        rng_state = random.getstate()
        random.seed(1234)
        try:
            picks = [weighted_choice([(high, 90), (low, 10)]).id for _ in range(10000)]
        finally:
            random.setstate(rng_state)

        share = picks.count("high") / len(picks)
        assert 0.87 < share < 0.93

    def test_walks_cumulative_weights(self):
        low, high = make_proxy("low"), make_proxy("high")
        candidates = [(high, 90), (low, 10)]
        with patch("scrapegate.services.proxy.random.random", return_value=0.5):
            assert weighted_choice(candidates) is high
        with patch("scrapegate.services.proxy.random.random", return_value=0.95):
            assert weighted_choice(candidates) is low

    def test_all_zero_weights_pick_uniformly(self):
        a, b = make_proxy("a"), make_proxy("b")
        assert weighted_choice([(a, 0), (b, 0)]) in (a, b)


class TestSelect:
    @pytest.mark.asyncio
    async def test_unscored_proxies_get_default_weight(self):
        store = InMemoryProxyStore([make_proxy("p1")])
        proxy = await ProxyPoolManager(store).select(ProxySelection())
        assert proxy.id == "p1"

    @pytest.mark.asyncio
    async def test_excluded_ids_are_never_selected(self):
        store = InMemoryProxyStore([make_proxy("p1"), make_proxy("p2")])
        pool = ProxyPoolManager(store)
        for _ in range(20):
            proxy = await pool.select(ProxySelection(exclude_ids=["p1"]))
            assert proxy.id == "p2"

    @pytest.mark.asyncio
    async def test_returns_none_when_everything_excluded(self):
        store = InMemoryProxyStore([make_proxy("p1")])
        assert await ProxyPoolManager(store).select(ProxySelection(exclude_ids=["p1"])) is None

    @pytest.mark.asyncio
    async def test_min_score_filter(self):
        store = InMemoryProxyStore([make_proxy("weak"), make_proxy("strong"), make_proxy("new")])
        store.scores["weak"] = _score("weak", 20)
        store.scores["strong"] = _score("strong", 80)
        pool = ProxyPoolManager(store)

        for _ in range(20):
            proxy = await pool.select(ProxySelection(min_score=60))
            assert proxy.id == "strong"

    @pytest.mark.asyncio
    async def test_filters_by_tenant_and_location(self):
        store = InMemoryProxyStore(
            [
                make_proxy("global-us", country="us"),
                make_proxy("tenant-us", country="us", tenant_id="t1"),
                make_proxy("tenant-de", country="de", tenant_id="t1"),
            ]
        )
        pool = ProxyPoolManager(store)

        proxy = await pool.select(ProxySelection(tenant_id="t1", country="us"))
        assert proxy.id == "tenant-us"
        proxy = await pool.select(ProxySelection(country="us"))
        assert proxy.id == "global-us"

    @pytest.mark.asyncio
    async def test_inactive_proxies_skipped(self):
        store = InMemoryProxyStore([make_proxy("p1", is_active=False)])
        assert await ProxyPoolManager(store).select(ProxySelection()) is None


class TestGetById:
    @pytest.mark.asyncio
    async def test_active_proxy(self):
        store = InMemoryProxyStore([make_proxy("p1")])
        assert (await ProxyPoolManager(store).get_by_id("p1")).id == "p1"

    @pytest.mark.asyncio
    async def test_inactive_or_missing(self):
        store = InMemoryProxyStore([make_proxy("p1", is_active=False)])
        pool = ProxyPoolManager(store)
        assert await pool.get_by_id("p1") is None
        assert await pool.get_by_id("nope") is None


class TestReport:
    @pytest.mark.asyncio
    async def test_report_appends_and_rescores(self):
        store = InMemoryProxyStore([make_proxy("p1")])
        pool = ProxyPoolManager(store)
        context = ScrapeContext(tenant_id="t1", workspace_id="w1", user_id="u1")

        await pool.report(
            "p1",
            ProxyUsageResult(url="https://example.com", success=True, status_code=200, latency_ms=300),
            context,
        )

        [event] = store.events_for("p1")
        assert event.status == STATUS_SUCCESS
        assert event.tenant_id == "t1"
        assert event.workspace_id == "w1"
        assert event.user_id == "u1"
        # 100 * 0.7 + 20 latency bonus
        assert store.scores["p1"].score == 90

    @pytest.mark.asyncio
    async def test_ban_lowers_score(self):
        store = InMemoryProxyStore([make_proxy("p1")])
        pool = ProxyPoolManager(store)

        await pool.report("p1", ProxyUsageResult(url="u", success=True, latency_ms=300))
        await pool.report(
            "p1",
            ProxyUsageResult(url="u", success=False, status_code=429, ban_reason="HTTP 429"),
        )

        assert store.events_for("p1")[-1].status == STATUS_BANNED
        score = store.scores["p1"]
        assert score.ban_rate == 50
        assert score.score == 40

    @pytest.mark.asyncio
    async def test_report_never_raises(self):
        store = InMemoryProxyStore([make_proxy("p1")])
        store.fail_writes = True
        pool = ProxyPoolManager(store)

        await pool.report("p1", ProxyUsageResult(url="u", success=True))
        assert store.scores == {}


class TestValidate:
    @pytest.mark.asyncio
    async def test_valid_proxy(self):
        store = InMemoryProxyStore([make_proxy("p1", username="user", password="pw")])
        proxy_urls = []

        def factory(proxy_url):
            proxy_urls.append(proxy_url)
            return httpx.MockTransport(lambda request: httpx.Response(200, json={"origin": "1.2.3.4"}))

        pool = ProxyPoolManager(store, transport_factory=factory)
        assert await pool.validate("p1", "https://httpbin.test/ip") is True
        assert proxy_urls == ["http://user:pw@p1.proxy.test:8080"]
        [event] = store.events_for("p1")
        assert event.status == STATUS_SUCCESS
        assert event.url == "https://httpbin.test/ip"

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        store = InMemoryProxyStore([make_proxy("p1")])

        def handler(request):
            raise httpx.ProxyError("tunnel failed", request=request)

        pool = ProxyPoolManager(store, transport_factory=lambda url: httpx.MockTransport(handler))
        assert await pool.validate("p1") is False
        assert store.events_for("p1")[0].status == STATUS_FAILED

    @pytest.mark.asyncio
    async def test_timeout(self):
        store = InMemoryProxyStore([make_proxy("p1")])

        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        pool = ProxyPoolManager(store, transport_factory=lambda url: httpx.MockTransport(handler))
        assert await pool.validate("p1") is False
        assert store.events_for("p1")[0].status == STATUS_TIMEOUT

    @pytest.mark.asyncio
    async def test_error_status_is_invalid(self):
        store = InMemoryProxyStore([make_proxy("p1")])
        pool = ProxyPoolManager(
            store, transport_factory=lambda url: httpx.MockTransport(lambda r: httpx.Response(407))
        )
        assert await pool.validate("p1") is False
        assert store.events_for("p1")[0].status_code == 407

    @pytest.mark.asyncio
    async def test_unusable_transport_is_invalid(self):
        store = InMemoryProxyStore([make_proxy("s1", protocol="socks5")])

        def factory(url):
            raise ImportError("Using SOCKS proxy, but the 'socksio' package is not installed.")

        pool = ProxyPoolManager(store, transport_factory=factory)
        assert await pool.validate("s1") is False
        [event] = store.events_for("s1")
        assert event.status == STATUS_FAILED
        assert event.error_message.startswith("proxy transport unavailable")

    @pytest.mark.asyncio
    async def test_unknown_proxy(self):
        with pytest.raises(ProxyNotFoundError):
            await ProxyPoolManager(InMemoryProxyStore()).validate("missing")


class TestAdministration:
    @pytest.mark.asyncio
    async def test_add_and_list(self):
        store = InMemoryProxyStore()
        pool = ProxyPoolManager(store)
        created = await pool.add_proxy(make_proxy("", host="10.0.0.1"))
        assert created.id

        rows = await pool.list_proxies(None)
        assert [p.id for p, _ in rows] == [created.id]

    @pytest.mark.asyncio
    async def test_set_active_and_remove(self):
        store = InMemoryProxyStore([make_proxy("p1")])
        pool = ProxyPoolManager(store)

        await pool.set_active("p1", False)
        assert store.proxies["p1"].is_active is False

        await pool.remove_proxy("p1")
        assert "p1" not in store.proxies

    @pytest.mark.asyncio
    async def test_missing_proxy_raises(self):
        pool = ProxyPoolManager(InMemoryProxyStore())
        with pytest.raises(ProxyNotFoundError):
            await pool.set_active("nope", True)
        with pytest.raises(ProxyNotFoundError):
            await pool.remove_proxy("nope")
        with pytest.raises(ProxyNotFoundError):
            await pool.get_stats("nope")

    @pytest.mark.asyncio
    async def test_stats_default_without_history(self):
        pool = ProxyPoolManager(InMemoryProxyStore([make_proxy("p1")]))
        stats = await pool.get_stats("p1")
        assert stats.score == 50
        assert stats.total_requests == 0

    @pytest.mark.asyncio
    async def test_admin_is_scoped_to_owner(self):
        store = InMemoryProxyStore([make_proxy("t1", tenant_id="acme"), make_proxy("g1")])
        pool = ProxyPoolManager(store)

        for proxy_id, wrong_scope in [("t1", "globex"), ("t1", None), ("g1", "acme")]:
            with pytest.raises(ProxyNotFoundError):
                await pool.set_active(proxy_id, False, tenant_id=wrong_scope)
            with pytest.raises(ProxyNotFoundError):
                await pool.remove_proxy(proxy_id, tenant_id=wrong_scope)
            with pytest.raises(ProxyNotFoundError):
                await pool.get_stats(proxy_id, tenant_id=wrong_scope)
            with pytest.raises(ProxyNotFoundError):
                await pool.validate(proxy_id, tenant_id=wrong_scope)

        assert store.proxies["t1"].is_active is True
        assert store.usage == []

        await pool.set_active("t1", False, tenant_id="acme")
        assert store.proxies["t1"].is_active is False
