"""Listings providers: where campaign leads come from.

Providers register themselves by source name so ``SCRAPER_PROVIDER`` can
select one without the stages knowing which.
"""

import asyncio
import logging
import re
from typing import Callable, Optional
from urllib.parse import parse_qs, quote, urljoin, urlparse

import googlemaps
import httpx
from bs4 import BeautifulSoup
from googlemaps.exceptions import ApiError, Timeout, TransportError

from ..exceptions import ProviderError
from .base import Listing, ListingsProvider


logger = logging.getLogger(__name__)

MOCK_MAX_LISTINGS = 25
SEARCH_MAX_LISTINGS = 100
SEARCH_URL = "https://duckduckgo.com/html/"
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; OutreachScraper/0.1; +https://example.com/bot)"

BLOCKED_HOSTS = frozenset({
    "duckduckgo.com",
    "www.duckduckgo.com",
    "google.com",
    "www.google.com",
    "maps.google.com",
    "facebook.com",
    "www.facebook.com",
    "instagram.com",
    "www.instagram.com",
    "linkedin.com",
    "www.linkedin.com",
    "yelp.com",
    "www.yelp.com",
    "youtube.com",
    "www.youtube.com",
    "x.com",
    "twitter.com",
})

# Registry of listings providers by source name
LISTINGS_PROVIDERS: dict[str, type[ListingsProvider]] = {}


def register_listings_provider(source_name: str) -> Callable:
    """Decorator to register a listings provider class.

    Example:
        @register_listings_provider("mock")
        class MockListingsProvider(ListingsProvider):
            ...
    """
    def decorator(cls: type[ListingsProvider]) -> type[ListingsProvider]:
        LISTINGS_PROVIDERS[source_name.lower()] = cls
        return cls
    return decorator


def get_listings_provider_class(source_name: str) -> Optional[type[ListingsProvider]]:
    return LISTINGS_PROVIDERS.get(source_name.lower())


def _slug(value: str) -> str:
    return re.sub(r"\s+", "-", value.lower())


def clean_business_name(raw: str) -> str:
    """Strip the tagline part (after ``-`` or ``|``) off a search result title."""
    collapsed = re.sub(r"\s+", " ", raw)
    return re.sub(r"[-|].*$", "", collapsed).strip()[:120]


def business_name_from_host(host: str) -> str:
    """Guess a display name from a hostname: ``acme-roofing.com`` -> ``Acme Roofing``."""
    label = re.sub(r"^www\.", "", host).split(".")[0]
    label = re.sub(r"[-_]", " ", label)
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), label)[:120]


def decode_result_url(raw_href: str) -> Optional[str]:
    """Resolve a search result link, unwrapping the ``uddg`` redirect parameter."""
    href = raw_href if raw_href.startswith("http") else urljoin("https://duckduckgo.com", raw_href)
    try:
        parsed = urlparse(href)
    except ValueError:
        return None
    target = parse_qs(parsed.query).get("uddg")
    if target:
        return target[0]
    return href


@register_listings_provider("mock")
class MockListingsProvider(ListingsProvider):
    """Deterministic fake listings on ``*.example.com`` hosts."""

    name = "mock"

    async def scrape_listings(self, niche: str, city: str, limit: int) -> list[Listing]:
        total = max(1, min(limit, MOCK_MAX_LISTINGS))
        city_slug = _slug(city)
        niche_slug = _slug(niche)

        listings = []
        for n in range(1, total + 1):
            host = f"{niche_slug}-{city_slug}-{n}.example.com"
            listings.append(
                Listing(
                    business_name=f"{city} {niche} Co {n}",
                    website_url=f"https://{host}",
                    phone=f"+1-555-010{(n % 10) + 1}",
                    email=f"hello{n}@{host}",
                    address=f"{100 + n} Main St, {city}",
                    source_url=f"https://example.com/search/{niche_slug}/{city_slug}?result={n}",
                )
            )
        return listings


@register_listings_provider("duckduckgo")
class WebSearchListingsProvider(ListingsProvider):
    """Finds business websites through DuckDuckGo's HTML results page.

    Social and directory hosts are skipped and each host is kept once. When
    the search yields nothing the mock listings are returned instead, so a
    campaign always has leads to work on.
    """

    name = "duckduckgo"

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_seconds: float = 10.0,
        fallback: Optional[ListingsProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds
        self.fallback = fallback or MockListingsProvider()
        self._transport = transport

    async def scrape_listings(self, niche: str, city: str, limit: int) -> list[Listing]:
        capped = max(1, min(limit, SEARCH_MAX_LISTINGS))
        listings = await self.search(niche, city, capped)
        if listings:
            return listings
        logger.info("No search results for %s in %s, using mock listings", niche, city)
        return await self.fallback.scrape_listings(niche, city, capped)

    async def search(self, niche: str, city: str, limit: int) -> list[Listing]:
        query = f"{niche} {city} official website"
        url = f"{SEARCH_URL}?q={quote(query)}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning("Search request failed for %r: %s", query, e)
            return []

        if response.status_code >= 400:
            logger.warning("Search returned HTTP %d for %r", response.status_code, query)
            return []

        return self.parse_results(response.text, city, limit)

    def parse_results(self, html: str, city: str, limit: int) -> list[Listing]:
        """Turn a results page into listings, one per host."""
        soup = BeautifulSoup(html, "html.parser")
        listings: list[Listing] = []
        seen_hosts: set[str] = set()

        for result in soup.select(".result"):
            if len(listings) >= limit:
                break

            anchor = result.select_one(".result__a")
            if anchor is None or not anchor.get("href"):
                continue

            target = decode_result_url(anchor["href"])
            if not target:
                continue

            parsed = urlparse(target)
            host = (parsed.hostname or "").lower()
            if not host or host in BLOCKED_HOSTS or host in seen_hosts:
                continue
            seen_hosts.add(host)

            title = anchor.get_text(" ", strip=True)
            listings.append(
                Listing(
                    business_name=clean_business_name(title) or business_name_from_host(host),
                    website_url=f"{parsed.scheme}://{host}",
                    address=city,
                    source_url=target,
                )
            )

        return listings


@register_listings_provider("google_maps")
class GoogleMapsListingsProvider(ListingsProvider):
    """Listings from the Google Maps Places text search plus place details."""

    name = "google_maps"

    def __init__(self, api_key: Optional[str] = None, client: Optional[googlemaps.Client] = None):
        """Initialize the Google Maps provider.

        Args:
            api_key: Google Maps API key.
            client: Pre-built ``googlemaps.Client`` (tests).

        Raises:
            ValueError: If neither an API key nor a client is provided.
        """
        if client is None:
            if not api_key:
                raise ValueError(
                    "Google Maps API key required. Set GOOGLE_MAPS_API_KEY environment "
                    "variable or pass api_key parameter."
                )
            client = googlemaps.Client(key=api_key)
        self._client = client

    async def scrape_listings(self, niche: str, city: str, limit: int) -> list[Listing]:
        capped = max(1, min(limit, 60))
        loop = asyncio.get_event_loop()
        query = f"{niche} in {city}"

        try:
            response = await loop.run_in_executor(
                None,
                lambda: self._client.places(query=query),
            )
        except (ApiError, TransportError, Timeout) as e:
            raise ProviderError(self.name, f"Places search failed for {query!r}: {e}") from e

        listings = []
        for place in response.get("results", [])[:capped]:
            details = await self._place_details(place.get("place_id"))
            listings.append(
                Listing(
                    business_name=place.get("name", ""),
                    website_url=details.get("website"),
                    phone=details.get("formatted_phone_number"),
                    address=place.get("formatted_address"),
                    source_url=details.get("url"),
                )
            )

        logger.info("Google Maps returned %d listings for %r", len(listings), query)
        return listings

    async def _place_details(self, place_id: Optional[str]) -> dict:
        if not place_id:
            return {}
        loop = asyncio.get_event_loop()
        try:
            result = await loop.run_in_executor(
                None,
                lambda: self._client.place(
                    place_id, fields=["formatted_phone_number", "website", "url"]
                ),
            )
            return result.get("result", {})
        except (ApiError, TransportError, Timeout) as e:
            logger.warning("Failed to fetch details for place %s: %s", place_id, e)
            return {}
