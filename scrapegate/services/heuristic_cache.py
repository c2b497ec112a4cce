"""Redis-backed memory of per-URL routing heuristics.

Redis key: "scraper:heuristics:{url}" | TTL: HEURISTIC_CACHE_TTL_SECONDS
Value: JSON-serialized RoutingHeuristics
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass

from scrapegate.core.redis import ResilientRedis

logger = logging.getLogger(__name__)

KEY_PREFIX = "scraper:heuristics:"


@dataclass
class RoutingHeuristics:
    complexity: str  # simple, medium, complex
    js_required: bool
    has_script_tags: bool
    has_framework: bool
    requires_interaction: bool
    script_count: int = 0
    div_count: int = 0

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "RoutingHeuristics":
        data = json.loads(raw)
        return cls(
            complexity=data["complexity"],
            js_required=bool(data["js_required"]),
            has_script_tags=bool(data["has_script_tags"]),
            has_framework=bool(data["has_framework"]),
            requires_interaction=bool(data["requires_interaction"]),
            script_count=int(data.get("script_count", 0)),
            div_count=int(data.get("div_count", 0)),
        )


class HeuristicCache(ABC):
    @abstractmethod
    async def get(self, url: str) -> RoutingHeuristics | None:
        pass

    @abstractmethod
    async def set(self, url: str, heuristics: RoutingHeuristics, ttl: int) -> None:
        pass


class RedisHeuristicCache(HeuristicCache):
    def __init__(self, redis: ResilientRedis):
        self._redis = redis

    async def get(self, url: str) -> RoutingHeuristics | None:
        raw = await self._redis.get(f"{KEY_PREFIX}{url}")
        if not raw:
            return None
        try:
            return RoutingHeuristics.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.debug(f"Discarding malformed heuristics for {url}: {e}")
            return None

    async def set(self, url: str, heuristics: RoutingHeuristics, ttl: int) -> None:
        await self._redis.setex(f"{KEY_PREFIX}{url}", ttl, heuristics.to_json())
