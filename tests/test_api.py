"""Tests for the HTTP API."""
import pytest
from fastapi.testclient import TestClient

from catalog_crawler.api.main import app, get_registry, get_runner, get_store
from catalog_crawler.config import config
from catalog_crawler.jobs.runner import CrawlRunner
from catalog_crawler.jobs.sites import SiteRegistry, WebsiteConfig
from catalog_crawler.store.memory import MemoryStore

from conftest import BASE, FakeFetcher, card, catalog_page, forbidden, structured_page

SHOP_CONFIG = {
    "selectors": {"listContainer": ".products", "cardSelector": ".product", "title": ".title", "price": ".price"},
    "pagination": {"maxPages": 1},
}
SITE_URL = "https://a.example/list"


@pytest.fixture
def pages():
    return {
        BASE: catalog_page([card("Alpha", "$10"), card("Beta", "$20", extra_class="sold-out")]),
        SITE_URL: structured_page([("Plush", "1500")]),
    }


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def registry():
    return SiteRegistry([WebsiteConfig(key="shop", name="Shop A", url=SITE_URL, preset="generic")])


@pytest.fixture
def client(store, pages, registry, monkeypatch):
    monkeypatch.setattr(config, "API_KEY", None)
    monkeypatch.setattr(config, "CRON_SECRET", "s3cret")
    runner = CrawlRunner(store, fetcher=FakeFetcher(pages), page_delay=0, site_delay=0)
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_runner] = lambda: runner
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_configs(client):
    body = client.get("/scrape/configs").json()

    assert "amnibus" in body["configs"]
    assert body["sampleConfig"]["target_url"] == "https://example.com"


def test_scrape_success(client, store):
    response = client.post("/scrape", json={"url": BASE, "customConfig": SHOP_CONFIG, "siteName": "Example"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["count"] == 2
    assert body["productsAdded"] == 2
    assert body["records"][1]["labels"] == ["Sold"]
    assert store.jobs[body["jobId"]].status == "completed"


def test_scrape_job_and_products_listing(client):
    job_id = client.post("/scrape", json={"url": BASE, "customConfig": SHOP_CONFIG}).json()["jobId"]

    job = client.get(f"/jobs/{job_id}").json()
    assert job["status"] == "completed"
    assert [j["id"] for j in client.get("/jobs").json()["jobs"]] == [job_id]

    products = client.get("/products", params={"availability": "out"}).json()
    assert [p["title"] for p in products["products"]] == ["Beta"]
    assert client.get("/products/stats").json()["total"] == 2


def test_unknown_job(client):
    assert client.get("/jobs/missing").status_code == 404


@pytest.mark.parametrize(
    "payload",
    [
        {"url": "not-a-url"},
        {"url": BASE, "configType": "bogus"},
        {"url": BASE, "startPage": 1, "endPage": 99},
    ],
)
def test_scrape_rejects_bad_input(client, store, payload):
    response = client.post("/scrape", json=payload)

    assert response.status_code == 400
    assert response.json()["kind"] == "config"
    assert store.jobs == {}


def test_scrape_forbidden_first_page(client, store, pages):
    pages[BASE] = forbidden(BASE)

    response = client.post("/scrape", json={"url": BASE, "customConfig": SHOP_CONFIG})

    assert response.status_code == 502
    body = response.json()
    assert body["kind"] == "forbidden"
    assert store.jobs[body["job_id"]].status == "failed"


def test_api_key_enforced_when_configured(client, monkeypatch):
    monkeypatch.setattr(config, "API_KEY", "k")

    assert client.get("/jobs").status_code == 403
    assert client.get("/jobs", headers={"X-API-KEY": "k"}).status_code == 200


def test_cron_requires_secret(client):
    assert client.post("/cron/scrape", json={"sites": ["shop"]}).status_code == 401
    response = client.post(
        "/cron/scrape", json={"sites": ["shop"]}, headers={"Authorization": "Bearer wrong"}
    )
    assert response.status_code == 401


def test_cron_scrape(client, registry):
    response = client.post(
        "/cron/scrape",
        json={"sites": ["shop", "ghost"], "pagesPerSite": 1},
        headers={"Authorization": "Bearer s3cret"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["websitesUpdated"] == 1
    assert body["websitesFailed"] == 1
    assert body["totalProducts"] == 1
    results = {r["site"]: r for r in body["results"]}
    assert results["ghost"]["error"] == "Unknown site: ghost"
    assert registry.get("shop").last_run is not None


def test_scheduled_scrape(client, registry):
    first = client.post("/scrape/scheduled").json()
    assert first["websitesUpdated"] == 1

    second = client.get("/scrape/scheduled").json()
    assert second["websitesChecked"] == 0

    forced = client.get("/scrape/scheduled", params={"force": "true"}).json()
    assert forced["websitesUpdated"] == 1


def test_store_is_created_once_per_app(monkeypatch):
    monkeypatch.setattr(config, "API_KEY", None)
    monkeypatch.setattr(app.state, "store", None)
    created = []

    def fake_create_store():
        store = MemoryStore()
        created.append(store)
        return store

    monkeypatch.setattr("catalog_crawler.api.main.create_store", fake_create_store)
    client = TestClient(app)

    assert client.get("/products/stats").status_code == 200
    assert client.get("/jobs").json() == {"jobs": []}
    assert len(created) == 1
    assert app.state.store is created[0]
