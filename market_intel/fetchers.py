"""
Fetch collaborators: get one page's HTML/markdown/metadata.

The scraper only depends on the ``Fetcher`` protocol. Two implementations
ship:
- HttpxFetcher: plain HTTP GET, HTML only, metadata read from <head>.
- Crawl4AIFetcher: headless browser via crawl4ai, HTML plus markdown.

Fetchers do not retry; retry and timeouts are the scraper's job.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel

from .errors import FetchFailedError
from .schemas import PageMetadata

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; MarketIntel/1.0)"


@dataclass
class FetchParams:
    """Options for one fetch, merged from the request and the source profile."""
    formats: List[str] = field(default_factory=lambda: ["markdown", "html"])
    headers: Dict[str, str] = field(default_factory=dict)
    timeout_ms: int = 30000
    wait_for_ms: Optional[int] = None
    include_tags: List[str] = field(default_factory=list)
    exclude_tags: List[str] = field(default_factory=list)
    only_main_content: bool = True


class FetchResult(BaseModel):
    html: Optional[str] = None
    markdown: Optional[str] = None
    metadata: Optional[PageMetadata] = None


class Fetcher(Protocol):
    async def fetch(self, url: str, params: FetchParams) -> FetchResult:
        ...


def page_metadata_from_html(html: str, status_code: Optional[int] = None) -> PageMetadata:
    """Read title, description, og:image and language from a page's markup."""
    soup = BeautifulSoup(html or "", "lxml")

    title = soup.title.get_text(strip=True) if soup.title else None
    description = (soup.find("meta", {"name": "description"}) or {}).get("content")
    og_image = (soup.find("meta", {"property": "og:image"}) or {}).get("content")
    language = soup.html.get("lang") if soup.html else None

    return PageMetadata(
        title=title or None,
        description=description or None,
        language=language or None,
        og_image=og_image or None,
        status_code=status_code,
    )


def _select_formats(result: FetchResult, formats: List[str]) -> FetchResult:
    if "html" not in formats:
        result.html = None
    if "markdown" not in formats:
        result.markdown = None
    return result


class HttpxFetcher:
    """
    Plain HTTP fetcher.

    Usage:
        async with HttpxFetcher() as fetcher:
            page = await fetcher.fetch(url, FetchParams())
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, user_agent: str = DEFAULT_USER_AGENT):
        """
        Args:
            client: Optional pre-built client (e.g., with a MockTransport)
            user_agent: Default User-Agent when the source sets none
        """
        self._client = client
        self._owns_client = client is None
        self.user_agent = user_agent

    async def __aenter__(self) -> "HttpxFetcher":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0, follow_redirects=True)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str, params: FetchParams) -> FetchResult:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use async context manager.")

        headers = {"User-Agent": self.user_agent}
        headers.update(params.headers)

        try:
            response = await self._client.get(
                url,
                headers=headers,
                timeout=params.timeout_ms / 1000,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchFailedError(
                f"HTTP {e.response.status_code} for {url}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise FetchFailedError(f"Timed out fetching {url}", timed_out=True) from e
        except httpx.RequestError as e:
            raise FetchFailedError(f"Request failed for {url}: {e}") from e

        html = response.text
        result = FetchResult(
            html=html,
            markdown=None,
            metadata=page_metadata_from_html(html, response.status_code),
        )
        return _select_formats(result, params.formats)


class Crawl4AIFetcher:
    """
    Browser-backed fetcher using crawl4ai.

    A crawler is started per fetch so each source's headers apply. The
    crawl4ai import is deferred to the first fetch.
    """

    def __init__(self, headless: bool = True, wait_until: str = "domcontentloaded"):
        self.headless = headless
        self.wait_until = wait_until

    async def fetch(self, url: str, params: FetchParams) -> FetchResult:
        from crawl4ai import AsyncWebCrawler, BrowserConfig, CacheMode, CrawlerRunConfig

        browser_config = BrowserConfig(
            headless=self.headless,
            headers=params.headers or None,
            verbose=False,
        )
        run_config = CrawlerRunConfig(
            cache_mode=CacheMode.BYPASS,
            wait_until=self.wait_until,
            page_timeout=params.timeout_ms,
            delay_before_return_html=(params.wait_for_ms or 0) / 1000,
            excluded_tags=params.exclude_tags or None,
            css_selector=", ".join(params.include_tags) if params.include_tags else None,
        )

        async with AsyncWebCrawler(config=browser_config) as crawler:
            result = await crawler.arun(url=url, config=run_config)

        if not result.success:
            error_msg = result.error_message or "Crawl failed"
            raise FetchFailedError(
                f"Crawl failed for {url}: {error_msg}",
                status_code=getattr(result, "status_code", None),
            )

        page = FetchResult(
            html=result.html or "",
            markdown=_markdown_text(result.markdown),
            metadata=_crawl_metadata(result.metadata or {}, getattr(result, "status_code", None)),
        )
        return _select_formats(page, params.formats)


def _markdown_text(markdown: Any) -> str:
    if markdown is None:
        return ""
    # Newer crawl4ai returns a result object; raw_markdown is the full page
    raw = getattr(markdown, "raw_markdown", None)
    return raw if raw is not None else str(markdown)


def _crawl_metadata(metadata: Dict[str, Any], status_code: Optional[int]) -> PageMetadata:
    return PageMetadata(
        title=metadata.get("title") or metadata.get("og:title"),
        description=metadata.get("description") or metadata.get("og:description"),
        language=metadata.get("language") or metadata.get("lang"),
        og_image=metadata.get("og:image") or metadata.get("ogImage"),
        status_code=status_code,
    )
