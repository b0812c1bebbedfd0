"""Content-addressed asset cache shared across jobs.

Each source URL maps to ``<root>/_cache/<md5(url)[:12]><ext>``. Jobs get their
own copy under ``<root>/<job_id>/img-NNN-<address>`` which is what the
generated code references. Cache writes go through a temp file and
``os.replace``, so two jobs downloading the same URL at once both end up with
the same bytes at the same address.
"""

import hashlib
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import urljoin, urlparse

import httpx

from .models import AssetDescriptor

logger = logging.getLogger(__name__)

CACHE_DIRNAME = "_cache"
DEFAULT_EXTENSION = ".png"

_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    ),
}


def content_address(url: str) -> str:
    """Deterministic cache filename for a source URL."""
    digest = hashlib.md5(url.encode("utf-8")).hexdigest()[:12]
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    if not (2 <= len(suffix) <= 6 and suffix[1:].isalnum()):
        suffix = DEFAULT_EXTENSION
    return f"{digest}{suffix}"


def atomic_write(path: Path, data: bytes) -> None:
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    failures: int = 0


class AssetCache:
    """
    Downloads page images once and hands each job its own copy.

    Args:
        root_dir: Directory holding the shared cache and per-job folders
        public_prefix: Web path the root directory is served under
        max_assets: Maximum assets materialized per page
        timeout: Download timeout in seconds
        transport: Optional httpx transport (used by tests)
    """

    def __init__(
        self,
        root_dir: Path,
        public_prefix: str = "/temp/assets",
        max_assets: int = 20,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.root_dir = Path(root_dir)
        self.cache_dir = self.root_dir / CACHE_DIRNAME
        self.public_prefix = public_prefix.rstrip("/")
        self.max_assets = max_assets
        self.timeout = timeout
        self.transport = transport
        self.stats = CacheStats()

    def cache_path(self, url: str) -> Path:
        return self.cache_dir / content_address(url)

    async def fetch(self, url: str, client: httpx.AsyncClient) -> Path:
        """Return the cached file for ``url``, downloading it on a miss."""
        path = self.cache_path(url)
        if path.exists():
            self.stats.hits += 1
            logger.debug("[SCOUT] Cache hit: %s", url)
            return path

        resp = await client.get(url)
        resp.raise_for_status()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        atomic_write(path, resp.content)
        self.stats.misses += 1
        logger.debug("[SCOUT] Downloaded: %s", url)
        return path

    async def materialize(self, job_id: str, sources: list[str], page_url: str) -> list[AssetDescriptor]:
        """Resolve, cache and copy up to ``max_assets`` image sources for one job.

        Inline ``data:`` URIs and non-http(s) sources are skipped. A failed
        download is logged and skipped.
        """
        job_dir = self.root_dir / job_id
        job_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        assets: list[AssetDescriptor] = []
        seen: set[str] = set()
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.timeout,
            headers=_HEADERS,
            transport=self.transport,
        ) as client:
            for src in sources:
                if len(assets) >= self.max_assets:
                    break
                if not src or src.startswith("data:"):
                    continue
                absolute = urljoin(page_url, src.strip())
                if urlparse(absolute).scheme not in ("http", "https") or absolute in seen:
                    continue
                seen.add(absolute)

                try:
                    cached = await self.fetch(absolute, client)
                except httpx.HTTPError as e:
                    self.stats.failures += 1
                    logger.warning("[SCOUT] Failed to download image %s: %s", absolute, e)
                    continue

                name = f"img-{len(assets):03d}-{cached.name}"
                atomic_write(job_dir / name, cached.read_bytes())
                assets.append(
                    AssetDescriptor(
                        original_url=absolute,
                        local_path=f"{self.public_prefix}/{job_id}/{name}",
                        type="image",
                    )
                )

        logger.info(
            "[SCOUT] %d assets ready (%d cache hits, %d downloads, %d failures)",
            len(assets), self.stats.hits, self.stats.misses, self.stats.failures,
        )
        return assets
