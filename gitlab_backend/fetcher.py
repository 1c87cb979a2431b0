"""Concurrency-limited file downloads."""

import asyncio
import logging
from typing import TYPE_CHECKING

import sentry_sdk

from .models import FetchedFile, FileRef

if TYPE_CHECKING:
    from .api import GitLabAPI

logger = logging.getLogger(__name__)

MAX_CONCURRENT_DOWNLOADS = 10


class FileFetcher:
    """Reads many files at once with at most `limit` requests in flight.

    The semaphore belongs to this instance; every download that goes through
    the same fetcher shares the cap.
    """

    def __init__(self, api: "GitLabAPI", limit: int = MAX_CONCURRENT_DOWNLOADS):
        self.api = api
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)

    async def _fetch_one(self, file: FileRef) -> FetchedFile | None:
        async with self._semaphore:
            try:
                data = await self.api.read_file(file.path)
            except Exception as e:
                logger.error(f"Failed to load file from GitLab: {file.path}: {e}")
                sentry_sdk.capture_exception(e)
                return None
        return FetchedFile(file=file, data=data)

    async def fetch_files(self, files: list[FileRef]) -> list[FetchedFile]:
        """Fetch every file; failures are logged and left out of the result."""
        results = await asyncio.gather(*[self._fetch_one(file) for file in files])
        fetched = [result for result in results if result is not None]
        if len(fetched) < len(files):
            logger.warning(f"Loaded {len(fetched)} of {len(files)} files")
        return fetched

    async def fetch_media(self, path: str) -> bytes:
        """Download one binary file under the shared cap; errors propagate."""
        async with self._semaphore:
            return await self.api.read_file(path, parse_text=False)
