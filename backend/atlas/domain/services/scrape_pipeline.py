"""
Scrape Pipeline
Drives crawl jobs to completion and scrapes selected pages in bounded batches

Two scrape paths share the batching logic:
- scrape_pages persists content as blobs and tracks per-page state
- scrape_audit_urls returns truncated content in memory
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pytz

from atlas.core.config import ConfigManager
from atlas.core.exceptions import CrawlFailedError, CrawlTimeoutError
from atlas.core.retry import retry_with_backoff
from atlas.domain.interfaces.blob_storage import BlobStorage
from atlas.domain.interfaces.crawl_provider import CrawlProvider
from atlas.domain.interfaces.store import Store
from atlas.domain.models.audit import DiscoveredPage, PageStatus, ScrapedContent, page_status_for
from atlas.domain.models.crawl import CrawlStatus

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Awaitable[None]]

INCLUDE_PATHS = [
    "^/(product|products|platform|features|solutions|services)(/|$)",
    "^/(pricing|plans)(/|$)",
    "^/(about|company|team)(/|$)",
    "^/(docs|documentation)(/|$)",
    "^/(case-studies|customers|testimonials)(/|$)",
    "^/(security|trust)(/|$)",
]

EXCLUDE_PATHS = [
    "^/(privacy|legal|terms|tos|cookies|gdpr|dpa)(/|$)",
    "^/(careers|jobs)(/|$)",
    "^/(press|media|newsroom)(/|$)",
    "^/blog/.*$",
    "^/wp-.*",
    "^/tag/.*",
    "^/category/.*",
]


@dataclass
class ScrapeSummary:
    attempted: int = 0
    scraped: int = 0
    failed: int = 0


def map_progress(fraction: float, start: float = 0.2, end: float = 0.8) -> float:
    """Map a 0-1 fraction into the [start, end] sub-range of a phase."""
    fraction = max(0.0, min(1.0, fraction))
    return round(start + (end - start) * fraction, 4)


class ScrapePipeline:
    """
    Crawl-and-scrape driver.

    Args:
        crawler: Crawl provider (start/status/scrape)
        store: Persistence for page rows
        blobs: Storage for raw page content
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        crawler: CrawlProvider,
        store: Store,
        blobs: BlobStorage,
        config: Optional[ConfigManager] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.crawler = crawler
        self.store = store
        self.blobs = blobs
        self._config = config or ConfigManager()
        self._sleep = sleep

        self.batch_size = int(self._config.get("scraping.batch_size", 4))
        self.batch_delay = float(self._config.get("scraping.batch_delay_ms", 200)) / 1000.0
        self.char_budget = int(self._config.get("scraping.content_char_budget", 8000))
        self.poll_interval = float(self._config.get("crawl.poll_interval_seconds", 2))
        self.default_limit = int(self._config.get("crawl.default_limit", 60))
        self.max_depth = int(self._config.get("crawl.max_discovery_depth", 3))

    # ========================================
    # Crawl
    # ========================================

    def crawl_options(self, limit: Optional[int] = None) -> Dict[str, Any]:
        return {
            "limit": limit or self.default_limit,
            "maxDiscoveryDepth": self.max_depth,
            "allowSubdomains": False,
            "crawlEntireDomain": False,
            "includePaths": INCLUDE_PATHS,
            "excludePaths": EXCLUDE_PATHS,
            "scrapeOptions": {"formats": ["markdown", "links"], "onlyMainContent": True},
        }

    async def start_crawl(self, url: str, limit: Optional[int] = None) -> str:
        job_id = await retry_with_backoff(
            self.crawler.start_crawl,
            url,
            self.crawl_options(limit),
            label="crawl start",
            **self._config.get_retry_policy("firecrawl"),
        )
        logger.info(f"Started crawl {job_id} for {url}")
        return job_id

    async def wait_for_crawl(self, job_id: str, max_minutes: float) -> CrawlStatus:
        """
        Poll until the crawl completes.

        Only the first poll auto-paginates; the final check always does so
        the returned snapshot carries every discovered page.

        Raises:
            CrawlFailedError: Provider reported failure
            CrawlTimeoutError: Still not complete after ``max_minutes``
        """
        iterations = max(1, int(max_minutes * 60 / self.poll_interval))

        for i in range(iterations):
            snapshot = await self.crawler.get_crawl_status(job_id, auto_paginate=(i == 0))
            if snapshot.is_completed:
                break
            if snapshot.is_failed:
                raise CrawlFailedError()
            logger.debug(f"Crawl {job_id}: {snapshot.completed}/{snapshot.total} ({snapshot.status})")
            await self._sleep(self.poll_interval)

        final = await self.crawler.get_crawl_status(job_id, auto_paginate=True)
        if final.is_failed:
            raise CrawlFailedError()
        if not final.is_completed:
            raise CrawlTimeoutError(
                f"Crawl timed out after {max_minutes:g} minutes. Status: {final.status}"
            )
        return final

    async def discover_pages(self, url: str, limit: Optional[int] = None, max_minutes: float = 3) -> List[DiscoveredPage]:
        """Discovery-only crawl: URL/title pairs, nothing persisted."""
        job_id = await self.start_crawl(url, limit)
        snapshot = await self.wait_for_crawl(job_id, max_minutes)

        seen = set()
        pages: List[DiscoveredPage] = []
        for page in snapshot.pages:
            if not page.url or page.url in seen:
                continue
            seen.add(page.url)
            pages.append(DiscoveredPage(url=page.url, title=page.title))

        logger.info(f"Crawl {job_id} discovered {len(pages)} pages for {url}")
        return pages

    # ========================================
    # Persisted scrape
    # ========================================

    async def scrape_pages(
        self,
        audit_job_id: str,
        urls: List[str],
        on_progress: Optional[ProgressCallback] = None
    ) -> ScrapeSummary:
        """
        Scrape URLs in batches, persisting content and page state.

        A failing page is marked failed and never aborts the batch.
        ``on_progress`` receives the completed fraction after every page.
        """
        summary = ScrapeSummary(attempted=len(urls))
        if not urls:
            if on_progress:
                await on_progress(1.0)
            return summary

        done = 0

        async def run_one(url: str) -> bool:
            nonlocal done
            try:
                return await self._scrape_and_persist(audit_job_id, url)
            finally:
                done += 1
                if on_progress:
                    try:
                        await on_progress(done / len(urls))
                    except Exception as e:
                        logger.warning(f"Progress update failed: {e}")

        for start in range(0, len(urls), self.batch_size):
            batch = urls[start:start + self.batch_size]
            results = await asyncio.gather(*(run_one(url) for url in batch), return_exceptions=True)

            for url, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.error(f"Scrape bookkeeping failed for {url}: {result}")
                    summary.failed += 1
                elif result:
                    summary.scraped += 1
                else:
                    summary.failed += 1

            if start + self.batch_size < len(urls):
                await self._sleep(self.batch_delay)

        logger.info(
            f"Audit {audit_job_id}: scraped {summary.scraped}/{summary.attempted} pages "
            f"({summary.failed} failed)"
        )
        return summary

    async def _scrape_and_persist(self, audit_job_id: str, url: str) -> bool:
        await self.store.upsert_scraped_page(audit_job_id, url, {
            "status": PageStatus.FETCHING,
            "updated_at": datetime.now(pytz.UTC),
        })

        try:
            result = await self.crawler.scrape(url, {"formats": ["markdown"], "onlyMainContent": False, "maxAge": 0})
        except Exception as e:
            logger.warning(f"Scrape failed for {url}: {e}")
            await self.store.upsert_scraped_page(audit_job_id, url, {
                "status": PageStatus.FAILED,
                "error": str(e),
                "updated_at": datetime.now(pytz.UTC),
            })
            return False

        status = page_status_for(result.markdown, result.status_code)
        fields: Dict[str, Any] = {
            "status": status,
            "title": result.title,
            "status_code": result.status_code,
            "updated_at": datetime.now(pytz.UTC),
        }
        if status == PageStatus.SCRAPED:
            fields["content_ref"] = await self.blobs.store(result.markdown.encode("utf-8"))

        await self.store.upsert_scraped_page(audit_job_id, url, fields)
        return status == PageStatus.SCRAPED

    async def load_scraped_content(self, audit_job_id: str) -> List[ScrapedContent]:
        """Stored content for every scraped page of an audit, truncated."""
        contents = []
        for page in await self.store.list_scraped_pages(audit_job_id):
            if page.status != PageStatus.SCRAPED.value or not page.content_ref:
                continue
            try:
                data = await self.blobs.load(page.content_ref)
            except Exception as e:
                logger.warning(f"Could not load content for {page.url}: {e}")
                continue
            contents.append(ScrapedContent(
                url=page.url,
                title=page.title,
                content=data.decode("utf-8", errors="replace")[:self.char_budget],
            ))
        return contents

    # ========================================
    # In-memory scrape
    # ========================================

    async def scrape_audit_urls(self, urls: List[str]) -> List[ScrapedContent]:
        """Scrape URLs in batches and return truncated content; failures are skipped."""
        contents: List[ScrapedContent] = []

        for start in range(0, len(urls), self.batch_size):
            batch = urls[start:start + self.batch_size]
            results = await asyncio.gather(
                *(self.crawler.scrape(url, {"formats": ["markdown"], "onlyMainContent": True}) for url in batch),
                return_exceptions=True,
            )

            for url, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.warning(f"Audit scrape failed for {url}: {result}")
                    continue
                if not result.markdown:
                    logger.info(f"Audit scrape returned no content for {url}")
                    continue
                contents.append(ScrapedContent(
                    url=url,
                    title=result.title,
                    content=result.markdown[:self.char_budget],
                ))

            if start + self.batch_size < len(urls):
                await self._sleep(self.batch_delay)

        return contents
