"""Error taxonomy for the fetch path.

Every failure that can end a scrape carries a stable ``code`` that is
copied onto the result, and a ``retryable`` flag the fetch loop consults.
"""


class ScrapeError(Exception):
    code = "SCRAPE_ERROR"
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class FetchTimeoutError(ScrapeError):
    code = "TIMEOUT"
    retryable = True


class FetchNetworkError(ScrapeError):
    code = "NETWORK_ERROR"
    retryable = True


class UpstreamStatusError(ScrapeError):
    """Non-2xx response from the target site."""

    code = "HTTP_ERROR"

    BAN_STATUSES = (403, 429)

    def __init__(self, status_code: int, message: str = ""):
        super().__init__(message or f"HTTP {status_code}")
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500

    @property
    def is_ban_signal(self) -> bool:
        return self.status_code in self.BAN_STATUSES


class BlockedError(ScrapeError):
    """Ban signals persisted until the retry budget ran out."""

    code = "BLOCKED"


class ContentTypeMismatchError(ScrapeError):
    code = "CONTENT_TYPE_MISMATCH"

    def __init__(self, content_type: str):
        super().__init__(f"Expected HTML content, got {content_type or 'unknown'}")
        self.content_type = content_type


class BrowserFetchError(ScrapeError):
    code = "BROWSER_ERROR"
    retryable = True


class BrowserPoolExhaustedError(BrowserFetchError):
    code = "BROWSER_POOL_EXHAUSTED"


class ProxyNotFoundError(Exception):
    def __init__(self, proxy_id: str):
        super().__init__(f"Proxy {proxy_id} not found")
        self.proxy_id = proxy_id
