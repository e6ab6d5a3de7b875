"""Markdown site crawler with conditional (ETag / Last-Modified) fetching."""
import logging
from collections import deque
from dataclasses import dataclass
from typing import List, Optional, Set
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from config import DOCS_BASE_URL, MAX_CRAWL_PAGES, FETCH_TIMEOUT

logger = logging.getLogger(__name__)


class CrawlError(RuntimeError):
    """No markdown documents could be discovered on the site."""


@dataclass
class FetchResult:
    """Result of a conditional fetch of one markdown URL."""
    url: str
    status_code: int
    text: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    @property
    def not_modified(self) -> bool:
        return self.status_code == 304

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class UrlListing:
    """
    Markdown URLs discovered on the site.

    `complete` is False when the crawl lost pages to fetch errors or stopped
    at the page cap, so absent URLs may still be published.
    """
    urls: List[str]
    complete: bool = True


# Answers that mean the page is really gone rather than temporarily unreachable
GONE_STATUSES = (404, 410)


def is_markdown_url(url: str) -> bool:
    return urlparse(url).path.endswith(".md")


class MarkdownCrawler:
    """Discovers and fetches markdown documents published on one website."""

    def __init__(
        self,
        base_url: Optional[str] = DOCS_BASE_URL,
        max_pages: int = MAX_CRAWL_PAGES,
        timeout: float = FETCH_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize the crawler.

        Args:
            base_url: Site root; relative manifest entries and links resolve against it
            max_pages: Upper bound on pages visited during link traversal
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        if not base_url:
            raise ValueError("DOCS_BASE_URL must be set to crawl a markdown site")

        self.base_url = base_url
        self.max_pages = max_pages
        self.timeout = timeout
        self.transport = transport
        self._origin = self._origin_of(base_url)
        self._client: Optional[httpx.Client] = None

    def __enter__(self):
        self._get_client()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self.transport
            )
        return self._client

    @staticmethod
    def _origin_of(url: str) -> tuple:
        parsed = urlparse(url)
        return parsed.scheme, parsed.netloc

    def _absolute(self, url: str) -> Optional[str]:
        try:
            resolved = urljoin(self.base_url, url.strip())
        except ValueError:
            return None
        return resolved if urlparse(resolved).scheme in ("http", "https") else None

    def _same_origin(self, url: str) -> bool:
        return self._origin_of(url) == self._origin

    def list_markdown_urls(self) -> List[str]:
        """
        Discover the markdown documents published on the site.

        Returns:
            Absolute markdown URLs in discovery order

        Raises:
            CrawlError: If no markdown URL could be found
        """
        return self.discover().urls

    def discover(self) -> UrlListing:
        """
        Discover the markdown documents and whether the listing is exhaustive.

        A manifest at `<base>/index.json` (a list of URLs or `{"urls": [...]}`)
        is preferred and always complete; otherwise same-origin pages are
        crawled breadth-first.

        Raises:
            CrawlError: If no markdown URL could be found
        """
        urls = self._read_manifest()
        if urls:
            logger.info(f"Found {len(urls)} markdown URLs in manifest")
            return UrlListing(urls=urls)

        listing = self._crawl()
        if not listing.urls:
            raise CrawlError("No .md URLs found. Consider providing index.json manifest.")
        logger.info(f"Discovered {len(listing.urls)} markdown URLs by crawling")
        if not listing.complete:
            logger.warning("Crawl was incomplete; some pages could not be visited")
        return listing

    def _read_manifest(self) -> List[str]:
        manifest_url = urljoin(self.base_url, "index.json")
        try:
            response = self._get_client().get(manifest_url)
        except httpx.RequestError as e:
            logger.debug(f"Manifest request failed: {e}")
            return []

        if not response.is_success:
            return []

        try:
            payload = response.json()
        except ValueError:
            logger.warning(f"Manifest at {manifest_url} is not valid JSON")
            return []

        if isinstance(payload, list):
            entries = payload
        elif isinstance(payload, dict) and isinstance(payload.get("urls"), list):
            entries = payload["urls"]
        else:
            entries = []

        urls: List[str] = []
        for entry in entries:
            if not isinstance(entry, str):
                continue
            url = self._absolute(entry)
            if url and is_markdown_url(url) and url not in urls:
                urls.append(url)
        return urls

    def _crawl(self) -> UrlListing:
        seen: Set[str] = set()
        found: List[str] = []
        queue = deque([self.base_url])
        client = self._get_client()
        complete = True

        while queue and len(seen) < self.max_pages:
            url = queue.popleft()
            if url in seen:
                continue
            seen.add(url)

            try:
                response = client.get(url)
            except httpx.RequestError as e:
                logger.warning(f"Could not crawl {url}: {e}")
                complete = False
                continue
            if not response.is_success:
                if response.status_code not in GONE_STATUSES:
                    logger.warning(f"Could not crawl {url}: HTTP {response.status_code}")
                    complete = False
                continue

            content_type = response.headers.get("content-type", "")
            if "text/markdown" in content_type or is_markdown_url(url):
                if url not in found:
                    found.append(url)
                continue
            if "text/html" not in content_type:
                continue

            soup = BeautifulSoup(response.text, "html.parser")
            for anchor in soup.find_all("a", href=True):
                link = self._absolute(anchor["href"])
                if not link or not self._same_origin(link):
                    continue
                if is_markdown_url(link):
                    if link not in found:
                        found.append(link)
                elif "#" not in link and link not in seen:
                    queue.append(link)

        if any(url not in seen for url in queue):
            logger.warning(f"Crawl stopped at the {self.max_pages} page limit")
            complete = False

        return UrlListing(urls=found, complete=complete)

    def fetch(
        self,
        url: str,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None
    ) -> FetchResult:
        """
        Fetch a markdown document, conditionally when a change token is known.

        Args:
            url: Document URL
            etag: Last seen ETag, sent as If-None-Match
            last_modified: Last seen Last-Modified, sent as If-Modified-Since

        Returns:
            FetchResult; status 304 means the document is unchanged

        Raises:
            httpx.RequestError: On network failure or timeout
        """
        headers = {}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        response = self._get_client().get(url, headers=headers)

        if response.status_code == 304 or not response.is_success:
            return FetchResult(url=url, status_code=response.status_code)

        return FetchResult(
            url=url,
            status_code=response.status_code,
            text=response.text,
            etag=response.headers.get("etag"),
            last_modified=response.headers.get("last-modified"),
        )
