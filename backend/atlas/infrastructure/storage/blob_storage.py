"""
Blob Storage Implementations
Scraped page content stored in Supabase Storage (or memory for tests)
"""
import logging
import uuid
from typing import Dict

from supabase import Client

from atlas.domain.interfaces.blob_storage import BlobStorage

logger = logging.getLogger(__name__)


class SupabaseBlobStorage(BlobStorage):
    """Stores blobs as objects in a Supabase Storage bucket"""

    def __init__(self, supabase: Client, bucket: str = "scraped-content"):
        self.supabase = supabase
        self.bucket = bucket

    async def store(self, data: bytes, content_type: str = "text/markdown") -> str:
        path = f"{uuid.uuid4()}.md"
        self.supabase.storage.from_(self.bucket).upload(
            path,
            data,
            {"content-type": content_type}
        )
        logger.debug(f"Stored {len(data)} bytes at {self.bucket}/{path}")
        return f"{self.bucket}/{path}"

    async def load(self, ref: str) -> bytes:
        bucket, _, path = ref.partition("/")
        return self.supabase.storage.from_(bucket).download(path)


class InMemoryBlobStorage(BlobStorage):
    """Dict-backed blob storage"""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    async def store(self, data: bytes, content_type: str = "text/markdown") -> str:
        ref = f"memory/{uuid.uuid4()}"
        self._blobs[ref] = data
        return ref

    async def load(self, ref: str) -> bytes:
        return self._blobs[ref]

    def __len__(self) -> int:
        return len(self._blobs)
