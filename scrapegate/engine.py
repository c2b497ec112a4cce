"""Composition root: builds and owns every long-lived component.

    async with ScrapeEngine() as engine:
        result = await engine.scraper.scrape(ScrapeRequest(url="example.com"))
"""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from scrapegate.config import settings
from scrapegate.core.database import create_engine, create_session_factory, init_db
from scrapegate.core.redis import ResilientRedis
from scrapegate.services.browser import BrowserPool
from scrapegate.services.engine_router import EngineRouter
from scrapegate.services.events import EventDispatcher
from scrapegate.services.feedback import RedisSelectorOutcomeSink, ScrapeEventStore
from scrapegate.services.heuristic_cache import RedisHeuristicCache
from scrapegate.services.proxy import ProxyPoolManager, ProxyStore
from scrapegate.services.proxy_store import SqlProxyStore
from scrapegate.services.scraper import Scraper

logger = logging.getLogger(__name__)


class ScrapeEngine:
    def __init__(
        self,
        database_url: str | None = None,
        redis: ResilientRedis | None = None,
        proxy_store: ProxyStore | None = None,
        browser_pool: BrowserPool | None = None,
    ):
        self.db_engine: AsyncEngine = create_engine(database_url)
        self.session_factory = create_session_factory(self.db_engine)
        self.redis = redis or ResilientRedis()
        self.browser_pool = browser_pool or BrowserPool()
        self.dispatcher = EventDispatcher()

        self.router = EngineRouter(cache=RedisHeuristicCache(self.redis))
        self.proxy_pool = ProxyPoolManager(proxy_store or SqlProxyStore(self.session_factory))
        self.event_store = ScrapeEventStore(self.session_factory)
        self.scraper = Scraper(
            router=self.router,
            proxy_pool=self.proxy_pool,
            browser_pool=self.browser_pool,
            dispatcher=self.dispatcher,
            selector_sink=RedisSelectorOutcomeSink(self.redis),
            event_store=self.event_store,
        )

    async def open(self):
        if settings.DB_AUTO_CREATE:
            await init_db(self.db_engine)
        self.dispatcher.start()
        # Chromium is launched lazily on the first browser-engine scrape
        logger.info(f"{settings.APP_NAME} engine started")

    async def close(self):
        await self.dispatcher.close()
        await self.browser_pool.close()
        await self.redis.close()
        await self.db_engine.dispose()
        logger.info(f"{settings.APP_NAME} engine stopped")

    async def __aenter__(self) -> "ScrapeEngine":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
