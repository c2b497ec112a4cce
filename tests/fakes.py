"""In-memory stand-ins for Redis and the proxy store."""

import uuid

import httpx

from scrapegate.services.heuristic_cache import HeuristicCache, RoutingHeuristics
from scrapegate.services.proxy import (
    ProxyRecord,
    ProxyScore,
    ProxySelection,
    ProxyStore,
    ProxyUsageEvent,
)


class FakeRedis:
    """Minimal fake of the ResilientRedis surface used by scrapegate."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._lists: dict[str, list[str]] = {}
        self.ttls: dict[str, int] = {}
        self.available = True

    async def get(self, key: str):
        return self._store.get(key)

    async def setex(self, name: str, time_val: int, value: str):
        self._store[name] = value
        self.ttls[name] = time_val
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += int(self._store.pop(key, None) is not None)
            self._lists.pop(key, None)
        return removed

    async def lpush(self, key: str, *values):
        lst = self._lists.setdefault(key, [])
        for v in values:
            lst.insert(0, v)
        return len(lst)

    async def ltrim(self, key: str, start: int, end: int):
        lst = self._lists.get(key, [])
        self._lists[key] = lst[start:] if end == -1 else lst[start : end + 1]
        return True

    async def ping(self):
        return self.available

    async def close(self):
        pass

    def list(self, key: str) -> list[str]:
        return list(self._lists.get(key, []))


class InMemoryHeuristicCache(HeuristicCache):
    def __init__(self):
        self.entries: dict[str, RoutingHeuristics] = {}

    async def get(self, url: str) -> RoutingHeuristics | None:
        return self.entries.get(url)

    async def set(self, url: str, heuristics: RoutingHeuristics, ttl: int) -> None:
        self.entries[url] = heuristics


class InMemoryProxyStore(ProxyStore):
    def __init__(self, proxies=()):
        self.proxies: dict[str, ProxyRecord] = {p.id: p for p in proxies}
        self.usage: list[ProxyUsageEvent] = []
        self.scores: dict[str, ProxyScore] = {}
        self.fail_writes = False

    async def list_candidates(self, selection: ProxySelection, limit: int):
        candidates = []
        for proxy in self.proxies.values():
            if not proxy.is_active or proxy.tenant_id != selection.tenant_id:
                continue
            if selection.country and proxy.country != selection.country:
                continue
            if selection.city and proxy.city != selection.city:
                continue
            if selection.proxy_type and proxy.proxy_type != selection.proxy_type:
                continue
            if proxy.id in selection.exclude_ids:
                continue
            score = self.scores.get(proxy.id)
            candidates.append((proxy, score.score if score else None))
        return candidates[:limit]

    async def get_proxy(self, proxy_id: str):
        return self.proxies.get(proxy_id)

    async def append_usage(self, event: ProxyUsageEvent) -> None:
        if self.fail_writes:
            raise RuntimeError("store unavailable")
        self.usage.append(event)

    async def recent_usage(self, proxy_id: str, limit: int):
        events = [e for e in self.usage if e.proxy_id == proxy_id]
        return list(reversed(events))[:limit]

    async def get_score(self, proxy_id: str):
        return self.scores.get(proxy_id)

    async def upsert_score(self, score: ProxyScore, tenant_id: str | None) -> None:
        self.scores[score.proxy_id] = score

    async def add_proxy(self, proxy: ProxyRecord, metadata: dict | None = None):
        proxy.id = proxy.id or str(uuid.uuid4())
        self.proxies[proxy.id] = proxy
        return proxy

    async def set_active(self, proxy_id: str, is_active: bool) -> bool:
        proxy = self.proxies.get(proxy_id)
        if proxy is None:
            return False
        proxy.is_active = is_active
        return True

    async def remove_proxy(self, proxy_id: str) -> bool:
        if self.proxies.pop(proxy_id, None) is None:
            return False
        self.scores.pop(proxy_id, None)
        self.usage = [e for e in self.usage if e.proxy_id != proxy_id]
        return True

    async def list_proxies(self, tenant_id: str | None):
        return [
            (p, self.scores.get(p.id))
            for p in self.proxies.values()
            if p.tenant_id == tenant_id
        ]

    def events_for(self, proxy_id: str) -> list[ProxyUsageEvent]:
        return [e for e in self.usage if e.proxy_id == proxy_id]


def make_proxy(proxy_id: str, **kwargs) -> ProxyRecord:
    kwargs.setdefault("host", f"{proxy_id}.proxy.test")
    kwargs.setdefault("port", 8080)
    return ProxyRecord(id=proxy_id, name=proxy_id, **kwargs)


EXAMPLE_HTML = """<!doctype html>
<html>
<head><title>Example Domain</title></head>
<body>
<div>
    <h1>Example</h1>
    <p>This domain is for use in illustrative examples in documents.</p>
    <p><a href="https://www.iana.org/domains/example">More information...</a></p>
</div>
</body>
</html>
"""


def html_response(html: str = EXAMPLE_HTML, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, html=html)
