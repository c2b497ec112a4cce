from scrapegate.models.proxy import ProxyPoolEntry, ProxyScoreEntry, ProxyUsageLog
from scrapegate.models.scraper_event import ScraperEvent

__all__ = [
    "ProxyPoolEntry",
    "ProxyScoreEntry",
    "ProxyUsageLog",
    "ScraperEvent",
]
