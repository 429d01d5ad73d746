"""
Crawl Provider Interface
Abstract base class for website crawl/scrape providers
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from atlas.domain.models.crawl import CrawlStatus, ScrapeResult


class CrawlProvider(ABC):
    """Abstract base class for crawl providers"""

    @abstractmethod
    async def start_crawl(self, url: str, options: Dict[str, Any]) -> str:
        """
        Start a crawl job.

        Returns:
            Provider job id
        """
        pass

    @abstractmethod
    async def get_crawl_status(self, job_id: str, auto_paginate: bool = True) -> CrawlStatus:
        """
        Get the current status of a crawl job.

        Args:
            job_id: Provider job id
            auto_paginate: Follow pagination to collect every discovered page
        """
        pass

    @abstractmethod
    async def scrape(self, url: str, options: Optional[Dict[str, Any]] = None) -> ScrapeResult:
        """Scrape full content for a single URL"""
        pass
