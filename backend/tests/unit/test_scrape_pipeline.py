"""
Unit tests for the Scrape Pipeline
Crawl polling, batched scraping, per-page failure isolation and progress
"""
from unittest.mock import AsyncMock

import pytest

from atlas.core.exceptions import CrawlFailedError, CrawlTimeoutError
from atlas.domain.interfaces.crawl_provider import CrawlProvider
from atlas.domain.models.crawl import CrawledPage, CrawlStatus, ScrapeResult
from atlas.domain.services.scrape_pipeline import ScrapePipeline, map_progress
from atlas.infrastructure.storage.blob_storage import InMemoryBlobStorage
from atlas.infrastructure.storage.memory_store import InMemoryStore

URLS = [f"https://harbordental.example/page-{i}" for i in range(1, 7)]


class FakeCrawler(CrawlProvider):
    """Crawl provider with scripted statuses and per-URL failures"""

    def __init__(self, statuses=None, failing=(), empty=()):
        self.statuses = list(statuses or [])
        self.failing = set(failing)
        self.empty = set(empty)
        self.scraped = []
        self.status_calls = []

    async def start_crawl(self, url, options):
        return "crawl-1"

    async def get_crawl_status(self, job_id, auto_paginate=True):
        self.status_calls.append(auto_paginate)
        return self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]

    async def scrape(self, url, options=None):
        self.scraped.append(url)
        if url in self.failing:
            raise RuntimeError("connection reset")
        markdown = None if url in self.empty else f"# Content of {url}"
        return ScrapeResult(url=url, title=url.rsplit("/", 1)[-1], markdown=markdown, status_code=200)


@pytest.fixture
def blobs():
    return InMemoryBlobStorage()


@pytest.fixture
def sleep():
    return AsyncMock()


def make_pipeline(crawler, store, blobs, sleep):
    return ScrapePipeline(crawler, store, blobs, sleep=sleep)


class TestScrapePages:
    """Tests for the persisted scrape path"""

    @pytest.mark.asyncio
    async def test_failing_page_does_not_abort_batch(self, blobs, sleep):
        store = InMemoryStore()
        crawler = FakeCrawler(failing={URLS[2]})
        pipeline = make_pipeline(crawler, store, blobs, sleep)

        summary = await pipeline.scrape_pages("audit-1", URLS)

        assert summary.attempted == 6
        assert summary.scraped == 5
        assert summary.failed == 1
        assert sorted(crawler.scraped) == sorted(URLS)

        pages = {p.url: p for p in await store.list_scraped_pages("audit-1")}
        assert pages[URLS[2]].status == "failed"
        assert pages[URLS[2]].error == "connection reset"
        assert all(pages[url].status == "scraped" for url in URLS if url != URLS[2])
        assert len(blobs) == 5

    @pytest.mark.asyncio
    async def test_batches_are_separated_by_delay(self, blobs, sleep):
        pipeline = make_pipeline(FakeCrawler(), InMemoryStore(), blobs, sleep)

        await pipeline.scrape_pages("audit-1", URLS)

        # 6 URLs in batches of 4: one pause between the two batches
        sleep.assert_awaited_once_with(0.2)

    @pytest.mark.asyncio
    async def test_progress_reported_per_page(self, blobs, sleep):
        pipeline = make_pipeline(FakeCrawler(failing={URLS[0]}), InMemoryStore(), blobs, sleep)
        fractions = []

        async def on_progress(fraction):
            fractions.append(fraction)

        await pipeline.scrape_pages("audit-1", URLS, on_progress=on_progress)

        assert len(fractions) == 6
        assert fractions[-1] == 1.0

    @pytest.mark.asyncio
    async def test_page_without_content_stays_queued(self, blobs, sleep):
        store = InMemoryStore()
        pipeline = make_pipeline(FakeCrawler(empty={URLS[0]}), store, blobs, sleep)

        summary = await pipeline.scrape_pages("audit-1", URLS[:1])

        assert summary.scraped == 0
        pages = await store.list_scraped_pages("audit-1")
        assert pages[0].status == "queued"

    @pytest.mark.asyncio
    async def test_rescrape_updates_existing_row(self, blobs, sleep):
        store = InMemoryStore()
        pipeline = make_pipeline(FakeCrawler(), store, blobs, sleep)

        await pipeline.scrape_pages("audit-1", URLS[:2])
        await pipeline.scrape_pages("audit-1", URLS[:2])

        assert len(await store.list_scraped_pages("audit-1")) == 2

    @pytest.mark.asyncio
    async def test_load_scraped_content_truncates(self, blobs, sleep):
        store = InMemoryStore()
        pipeline = make_pipeline(FakeCrawler(), store, blobs, sleep)
        pipeline.char_budget = 10

        await pipeline.scrape_pages("audit-1", URLS[:2])
        contents = await pipeline.load_scraped_content("audit-1")

        assert len(contents) == 2
        assert all(len(c.content) == 10 for c in contents)


class TestCrawl:
    """Tests for crawl start and polling"""

    @pytest.mark.asyncio
    async def test_discover_pages_dedupes_urls(self, blobs, sleep):
        pages = [
            CrawledPage(url="https://a.example/pricing", title="Pricing"),
            CrawledPage(url="https://a.example/pricing", title="Pricing"),
            CrawledPage(url="https://a.example/about", title="About"),
        ]
        crawler = FakeCrawler(statuses=[
            CrawlStatus(status="scraping", total=3, completed=1),
            CrawlStatus(status="completed", total=3, completed=3, pages=pages),
        ])
        pipeline = make_pipeline(crawler, InMemoryStore(), blobs, sleep)

        discovered = await pipeline.discover_pages("https://a.example", max_minutes=1)

        assert [p.url for p in discovered] == ["https://a.example/pricing", "https://a.example/about"]
        # First poll paginates, later polls do not, the final check always does
        assert crawler.status_calls[0] is True
        assert crawler.status_calls[-1] is True

    @pytest.mark.asyncio
    async def test_failed_crawl_raises(self, blobs, sleep):
        crawler = FakeCrawler(statuses=[CrawlStatus(status="failed")])
        pipeline = make_pipeline(crawler, InMemoryStore(), blobs, sleep)

        with pytest.raises(CrawlFailedError):
            await pipeline.wait_for_crawl("crawl-1", max_minutes=1)

    @pytest.mark.asyncio
    async def test_slow_crawl_times_out(self, blobs, sleep):
        crawler = FakeCrawler(statuses=[CrawlStatus(status="scraping", total=10, completed=2)])
        pipeline = make_pipeline(crawler, InMemoryStore(), blobs, sleep)

        with pytest.raises(CrawlTimeoutError) as exc:
            await pipeline.wait_for_crawl("crawl-1", max_minutes=0.1)

        assert "Crawl timed out after 0.1 minutes" in exc.value.message

    def test_map_progress(self):
        assert map_progress(0.0) == 0.2
        assert map_progress(0.5) == 0.5
        assert map_progress(2.0) == 0.8
