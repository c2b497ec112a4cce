import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from scrapegate.engine import ScrapeEngine
from scrapegate.main import create_app
from scrapegate.services.events import EventDispatcher
from tests.fakes import FakeRedis, InMemoryProxyStore


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def proxy_store():
    return InMemoryProxyStore()


@pytest_asyncio.fixture
async def dispatcher():
    d = EventDispatcher(max_queue=100, workers=1, job_timeout=5.0)
    d.start()
    yield d
    await d.close(timeout=1.0)


@pytest_asyncio.fixture
async def engine(fake_redis):
    eng = ScrapeEngine(database_url="sqlite+aiosqlite:///:memory:", redis=fake_redis)
    await eng.open()
    yield eng
    await eng.close()


@pytest_asyncio.fixture
async def client(engine):
    # ASGITransport does not run the lifespan; the engine fixture owns open/close
    app = create_app(engine)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
