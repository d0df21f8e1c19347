"""Website enrichment: crawl a few pages and extract contact and brand data.

Extraction helpers are plain functions over HTML/text so they can be tested
without a network.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from .base import EnrichmentFetcher, EnrichmentResult


logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; OutreachBot/0.1; +https://example.com/bot)"
DEFAULT_TIMEOUT_SECONDS = 7.0
CRAWL_PATHS = ("/services", "/contact")
MAX_SERVICE_KEYWORDS = 8
MAX_KEYWORD_WORDS = 5
MAX_BRAND_COLORS = 3
MAX_SUMMARY_LENGTH = 380
NO_HTML_ERROR = "crawl yielded no html pages"

PHONE_PATTERN = re.compile(r"(?:\+?1[\s.-]?)?(?:\(?\d{3}\)?[\s.-]?)\d{3}[\s.-]?\d{4}")
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
HEX_COLOR_PATTERN = re.compile(r"#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})\b")
SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")

KEYWORD_STOP_WORDS = frozenset({
    "home",
    "about",
    "contact",
    "services",
    "service",
    "blog",
    "gallery",
    "testimonials",
    "reviews",
    "quote",
    "free quote",
})


@dataclass
class PageResult:
    url: str
    html: str
    text: str


def with_http_scheme(url: str) -> str:
    if re.match(r"^https?://", url, re.IGNORECASE):
        return url
    return f"https://{url}"


def crawl_urls(website_url: str) -> list[str]:
    """The fixed page set crawled for a site: root, /services, /contact."""
    base = with_http_scheme(website_url)
    parsed = urlparse(base)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    return [base] + [urljoin(origin, path) for path in CRAWL_PATHS]


def is_mock_website(website_url: str) -> bool:
    """True for the fake ``example.com`` hosts produced by the mock listings."""
    host = (urlparse(with_http_scheme(website_url)).hostname or "").lower()
    return host == "example.com" or host.endswith(".example.com")


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    return re.sub(r"\s+", " ", soup.get_text(" ")).strip()


def best_guess_phone(text: str) -> Optional[str]:
    match = PHONE_PATTERN.search(text)
    return match.group(0).strip() if match else None


def best_guess_email(text: str) -> Optional[str]:
    match = EMAIL_PATTERN.search(text)
    return match.group(0).strip().lower() if match else None


def extract_service_keywords(html_pages: Iterable[str]) -> list[str]:
    """Collect short heading and navigation labels as service keywords.

    Labels are lowercased and stripped of punctuation; labels longer than
    five words, shorter than three characters, or generic navigation words
    are dropped. At most eight keywords are returned, in document order.
    """
    keywords: list[str] = []
    for html in html_pages:
        soup = BeautifulSoup(html, "html.parser")
        for element in soup.select("h1, h2, h3, nav a"):
            raw = re.sub(r"\s+", " ", element.get_text(" ")).strip().lower()
            cleaned = re.sub(r"[^a-z0-9\s&/-]", "", raw).strip()
            if not cleaned:
                continue
            if len(cleaned.split()) > MAX_KEYWORD_WORDS:
                continue
            if cleaned in KEYWORD_STOP_WORDS or len(cleaned) < 3:
                continue
            if cleaned not in keywords:
                keywords.append(cleaned)
    return keywords[:MAX_SERVICE_KEYWORDS]


def extract_claims(text: str) -> list[str]:
    lowered = text.lower()
    claims = []
    if "licensed" in lowered:
        claims.append("licensed")
    if "insured" in lowered:
        claims.append("insured")
    if "free estimate" in lowered:
        claims.append("free estimates")
    return claims


def normalize_hex_color(color: str) -> str:
    """Lowercase a hex colour and expand ``#abc`` to ``#aabbcc``."""
    cleaned = color.lower()
    if re.fullmatch(r"#[0-9a-f]{3}", cleaned):
        return "#" + "".join(ch * 2 for ch in cleaned[1:])
    return cleaned


def is_usable_brand_color(hex_color: str) -> bool:
    """Reject near-white, near-black and near-grey colours."""
    normalized = normalize_hex_color(hex_color)
    if not re.fullmatch(r"#[0-9a-f]{6}", normalized):
        return False
    r, g, b = (int(normalized[i:i + 2], 16) for i in (1, 3, 5))
    brightness = (r * 299 + g * 587 + b * 114) / 1000
    max_diff = max(abs(r - g), abs(g - b), abs(r - b))
    if brightness < 30 or brightness > 235:
        return False
    return max_diff >= 12


def extract_brand_colors(html_pages: Iterable[str]) -> list[str]:
    """Most frequent hex colours in the raw HTML, preferring usable ones."""
    counts: Counter = Counter()
    for html in html_pages:
        for raw in HEX_COLOR_PATTERN.findall(html):
            counts[normalize_hex_color(raw)] += 1

    ranked = [color for color, _ in counts.most_common()]
    usable = [color for color in ranked if is_usable_brand_color(color)]
    return (usable or ranked)[:MAX_BRAND_COLORS]


def extract_summary(text: str) -> str:
    """First two medium-length sentences of the page text."""
    cleaned = re.sub(r"\s+", " ", text).strip()
    if not cleaned:
        return ""
    sentences = [s.strip() for s in SENTENCE_SPLIT.split(cleaned)]
    picked = [s for s in sentences if 30 < len(s) < 220][:2]
    return " ".join(picked)[:MAX_SUMMARY_LENGTH]


def summarize_pages(pages: list[PageResult], crawled_from_url: Optional[str] = None) -> EnrichmentResult:
    """Run every extractor over the fetched pages."""
    combined_text = " ".join(page.text for page in pages)
    html_pages = [page.html for page in pages]
    return EnrichmentResult(
        phone=best_guess_phone(combined_text),
        email=best_guess_email(combined_text),
        service_keywords=extract_service_keywords(html_pages),
        claims=extract_claims(combined_text),
        brand_colors=extract_brand_colors(html_pages),
        summary=extract_summary(combined_text),
        pages_visited=[page.url for page in pages],
        crawled_from_url=crawled_from_url,
        error=None if pages else NO_HTML_ERROR,
    )


class WebsiteEnrichmentFetcher(EnrichmentFetcher):
    """Crawls a site's root, /services and /contact pages over HTTP.

    Non-HTML responses, HTTP errors and timeouts are skipped page by page;
    the fetcher never raises.
    """

    name = "website"

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def fetch_and_extract(self, website_url: str) -> EnrichmentResult:
        try:
            urls = crawl_urls(website_url)
        except ValueError as e:
            logger.warning("Cannot crawl malformed url %r: %s", website_url, e)
            return EnrichmentResult(crawled_from_url=website_url, error=f"invalid url: {e}")

        pages: list[PageResult] = []
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            headers={"User-Agent": self.user_agent},
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            for url in urls:
                page = await self._fetch_html(client, url)
                if page is not None:
                    pages.append(page)

        logger.debug("Crawled %s: %d/%d html pages", website_url, len(pages), len(urls))
        return summarize_pages(pages, crawled_from_url=website_url)

    async def _fetch_html(self, client: httpx.AsyncClient, url: str) -> Optional[PageResult]:
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            logger.debug("Fetch failed for %s: %s", url, e)
            return None

        if not response.is_success:
            return None
        if "text/html" not in response.headers.get("content-type", ""):
            return None

        html = response.text
        return PageResult(url=url, html=html, text=html_to_text(html))


class SimulatedEnrichmentFetcher(EnrichmentFetcher):
    """Offline fetcher returning deterministic data derived from the host name."""

    name = "simulated"

    async def fetch_and_extract(self, website_url: str) -> EnrichmentResult:
        host = (urlparse(with_http_scheme(website_url)).hostname or "local").lower()
        label = re.sub(r"^www\.", "", host).split(".")[0]
        trade = label.split("-")[0] or "local"
        return EnrichmentResult(
            service_keywords=[
                f"{trade} repair",
                f"{trade} installation",
                f"{trade} inspection",
            ],
            claims=["licensed", "insured"],
            brand_colors=["#0f766e"],
            summary=f"Trusted {trade} specialists serving the local area.",
            pages_visited=[with_http_scheme(website_url)],
            crawled_from_url=website_url,
        )
