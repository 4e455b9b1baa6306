import httpx
import pytest

from regbridge.api.deps import get_directory, get_http
from regbridge.core.config import Settings, get_settings
from regbridge.main import app
from regbridge.services.http_client import StoreHttpClient
from regbridge.services.reconcile import ReconciliationEngine
from regbridge.services.site_directory import DirectoryCache
from regbridge.services.site_ids import SiteIdValidator
from regbridge.services.store import CustomerStore

from fake_store import FakeStore


TEST_SHOP = "test-shop.myshopify.com"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        shop=TEST_SHOP,
        admin_token="shpat_test",
        shopify_api_version="2025-07",
        sheet_csv_url=None,
        store_retry_base_delay_seconds=0,
        request_deadline_seconds=5,
        otlp_endpoint=None,
    )


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
async def store_http(fake_store: FakeStore):
    async with httpx.AsyncClient(transport=fake_store.transport()) as c:
        yield c


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def store_client(store_http: httpx.AsyncClient, sleeps: list[float]) -> StoreHttpClient:
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return StoreHttpClient(
        shop=TEST_SHOP,
        access_token="shpat_test",
        api_version="2025-07",
        client=store_http,
        sleep=_sleep,
    )


@pytest.fixture
def directory(store_http: httpx.AsyncClient) -> DirectoryCache:
    # no sheet URL: the packaged directory (910001..910005) is served
    return DirectoryCache(http=store_http, csv_url=None)


@pytest.fixture
def engine(store_client: StoreHttpClient, directory: DirectoryCache) -> ReconciliationEngine:
    return ReconciliationEngine(store=CustomerStore(store_client), validator=SiteIdValidator(directory))


@pytest.fixture
async def client(settings: Settings, store_http: httpx.AsyncClient, directory: DirectoryCache):
    """
    HTTP client for the app with the store and directory swapped for fakes.
    """
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_http] = lambda: store_http
    app.dependency_overrides[get_directory] = lambda: directory

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
