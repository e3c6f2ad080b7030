"""
Resolve a feed source (file path, URL or raw bytes) to raw XML bytes
"""

from pathlib import Path
from typing import Optional, Union

import httpx

from core.exceptions import FeedFetchError
import logging

logger = logging.getLogger(__name__)


FeedSource = Union[str, Path, bytes]


def is_url(source: FeedSource) -> bool:
    return isinstance(source, str) and source.lower().startswith(("http://", "https://"))


def describe_source(source: FeedSource) -> str:
    """Label stored in the health record"""
    if isinstance(source, (bytes, bytearray)):
        return f"<{len(source)} bytes>"
    return str(source)


class FeedReader:
    """
    Read supplier feeds from disk or over HTTP(S).

    Features:
    - Local files read whole (the parser needs the complete document)
    - URL downloads with a generous timeout and redirect following
    - Failures surface as FeedFetchError with source and status context
    """

    def __init__(self, timeout: float = 300.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def read(self, source: FeedSource) -> bytes:
        if isinstance(source, (bytes, bytearray)):
            return bytes(source)
        if is_url(source):
            return await self._download(source)
        return self._read_file(Path(source))

    def _read_file(self, path: Path) -> bytes:
        try:
            data = path.read_bytes()
        except OSError as e:
            raise FeedFetchError(
                f"Could not read feed file {path}",
                context={"source": str(path)},
                original_exception=e,
            )
        logger.info(f"Read {len(data) / (1024 * 1024):.2f} MB from {path}")
        return data

    async def _download(self, url: str) -> bytes:
        logger.info(f"Downloading feed from {url}")
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FeedFetchError(
                f"Feed download failed with HTTP {e.response.status_code}",
                context={"source": url, "status_code": e.response.status_code},
                original_exception=e,
            )
        except httpx.HTTPError as e:
            raise FeedFetchError(
                f"Feed download failed: {type(e).__name__}",
                context={"source": url},
                original_exception=e,
            )

        data = response.content
        logger.info(f"Downloaded {len(data) / (1024 * 1024):.2f} MB from {url}")
        return data
