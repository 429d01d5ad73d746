"""
Firecrawl Provider
Crawl jobs and single-page scrapes over the Firecrawl v1 REST API
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from atlas.core.exceptions import ProviderError
from atlas.domain.interfaces.crawl_provider import CrawlProvider
from atlas.domain.models.crawl import CrawledPage, CrawlStatus, ScrapeResult

logger = logging.getLogger(__name__)


def parse_document(doc: Dict[str, Any], fallback_url: str = "") -> CrawledPage:
    metadata = doc.get("metadata") or {}
    return CrawledPage(
        url=metadata.get("sourceURL") or metadata.get("url") or doc.get("url") or fallback_url,
        title=metadata.get("title"),
        markdown=doc.get("markdown"),
        status_code=metadata.get("statusCode"),
    )


class FirecrawlProvider(CrawlProvider):
    """
    Firecrawl client.

    Crawl status pages are linked through ``next``; with ``auto_paginate``
    every page is followed and merged into one snapshot.
    """

    BASE_URL = "https://api.firecrawl.dev/v1"
    MAX_PAGINATION_REQUESTS = 20

    def __init__(self, api_key: str, timeout: float = 60.0, base_url: Optional[str] = None):
        if not api_key:
            raise ValueError("Firecrawl API key not configured")
        self._api_key = api_key
        self._timeout = timeout
        self._base_url = (base_url or self.BASE_URL).rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, url: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.request(method, url, json=body, headers=self._headers())

        if response.status_code >= 400:
            logger.error(f"Firecrawl {method} {url} failed ({response.status_code}): {response.text}")
            raise ProviderError("firecrawl", response.text, response.status_code)
        return response.json()

    async def start_crawl(self, url: str, options: Dict[str, Any]) -> str:
        data = await self._request("POST", f"{self._base_url}/crawl", {"url": url, **options})
        job_id = data.get("id")
        if not job_id:
            raise ProviderError("firecrawl", f"crawl start returned no job id: {data}")
        logger.info(f"Started crawl {job_id} for {url}")
        return job_id

    async def get_crawl_status(self, job_id: str, auto_paginate: bool = True) -> CrawlStatus:
        data = await self._request("GET", f"{self._base_url}/crawl/{job_id}")
        documents: List[Dict[str, Any]] = list(data.get("data") or [])
        next_url = data.get("next")

        requests = 0
        while auto_paginate and next_url and requests < self.MAX_PAGINATION_REQUESTS:
            page = await self._request("GET", next_url)
            documents.extend(page.get("data") or [])
            next_url = page.get("next")
            requests += 1

        return CrawlStatus(
            status=data.get("status") or "unknown",
            total=data.get("total"),
            completed=data.get("completed"),
            next=next_url,
            pages=[parse_document(doc) for doc in documents if isinstance(doc, dict)],
        )

    async def scrape(self, url: str, options: Optional[Dict[str, Any]] = None) -> ScrapeResult:
        data = await self._request("POST", f"{self._base_url}/scrape", {"url": url, **(options or {})})
        page = parse_document(data.get("data") or {}, fallback_url=url)
        return ScrapeResult(
            url=page.url,
            title=page.title,
            markdown=page.markdown,
            status_code=page.status_code,
        )
