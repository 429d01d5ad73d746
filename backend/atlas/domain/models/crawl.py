"""
Crawl Provider Models
Status snapshots and scrape results returned by the crawl provider
"""
from typing import List, Optional

from pydantic import BaseModel, Field


class CrawledPage(BaseModel):
    url: str
    title: Optional[str] = None
    markdown: Optional[str] = None
    status_code: Optional[int] = None


class CrawlStatus(BaseModel):
    """Snapshot of a crawl job"""
    status: str
    total: Optional[int] = None
    completed: Optional[int] = None
    next: Optional[str] = None
    pages: List[CrawledPage] = Field(default_factory=list)

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def is_failed(self) -> bool:
        return self.status == "failed"


class ScrapeResult(BaseModel):
    """Full content for one URL"""
    url: str
    title: Optional[str] = None
    markdown: Optional[str] = None
    status_code: Optional[int] = None
