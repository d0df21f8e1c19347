"""Capability interfaces the pipeline stages call into.

Every capability has a simulated variant (safe outside production) and a
production variant. Stage handlers only see these interfaces.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal, Optional


AspectRatio = Literal["16:9", "4:3", "1:1"]


@dataclass
class Listing:
    """A business discovered by a listings provider.

    Attributes:
        business_name: Display name of the business.
        website_url: Website root URL, if known.
        phone: Phone number, if listed.
        email: Email address, if listed.
        address: Street address, if listed.
        source_url: Page the listing was found on.
    """

    business_name: str
    website_url: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    source_url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "businessName": self.business_name,
            "websiteUrl": self.website_url,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "sourceUrl": self.source_url,
        }


@dataclass
class EnrichmentResult:
    """Best-effort data extracted from a business website.

    Attributes:
        phone: First phone number found.
        email: First email address found.
        service_keywords: Service names from headings and navigation.
        claims: Trust claims such as "licensed" or "insured".
        brand_colors: Most used usable hex colours.
        summary: Short description built from page text.
        pages_visited: URLs that returned HTML.
        crawled_from_url: Root URL the crawl started from.
        error: Why extraction came back empty, if it did.
    """

    phone: Optional[str] = None
    email: Optional[str] = None
    service_keywords: list[str] = field(default_factory=list)
    claims: list[str] = field(default_factory=list)
    brand_colors: list[str] = field(default_factory=list)
    summary: str = ""
    pages_visited: list[str] = field(default_factory=list)
    crawled_from_url: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SiteContext:
    """Everything a site builder needs to render a lead's demo site."""

    lead_id: str
    business_name: str
    city: str
    niche: str
    services: list[str] = field(default_factory=list)
    phone: Optional[str] = None
    email: Optional[str] = None
    summary: str = ""
    brand_colors: list[str] = field(default_factory=list)


@dataclass
class SiteBundle:
    """Result of site generation.

    Attributes:
        artifact_location: Path of the zipped site bundle.
        summary: Human readable description of what was generated.
    """

    artifact_location: str
    summary: str


@dataclass
class DeployResult:
    url: str


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class EmailReceipt:
    message_id: str


@dataclass
class CallRequest:
    to: str
    script: str
    callback_url: str


@dataclass
class CallReceipt:
    call_id: str


class ListingsProvider(ABC):
    """Finds candidate businesses for a niche in a city."""

    name: str = "listings"

    @abstractmethod
    async def scrape_listings(self, niche: str, city: str, limit: int) -> list[Listing]:
        """Return up to ``limit`` listings."""


class EnrichmentFetcher(ABC):
    """Extracts public data from a business website. Never raises."""

    name: str = "enrichment"

    @abstractmethod
    async def fetch_and_extract(self, website_url: str) -> EnrichmentResult:
        """Crawl ``website_url`` and return whatever could be extracted."""


class SiteBuilder(ABC):
    """Renders a demo site bundle for a lead."""

    name: str = "site"

    @abstractmethod
    async def generate_site(self, context: SiteContext) -> SiteBundle:
        """Write the bundle and return where it lives."""


class ImageProvider(ABC):
    """Produces an image URL for a prompt."""

    name: str = "image"

    @abstractmethod
    async def generate(self, prompt: str, aspect_ratio: AspectRatio) -> str:
        """Return a public URL of an image matching ``prompt``."""


class DeployProvider(ABC):
    """Publishes a site bundle."""

    name: str = "deploy"

    @abstractmethod
    async def deploy(self, artifact_location: str, project_name: str) -> DeployResult:
        """Deploy the bundle at ``artifact_location`` and return its public URL."""


class EmailProvider(ABC):
    """Delivers outreach email."""

    name: str = "email"

    @abstractmethod
    async def send_email(self, message: EmailMessage) -> EmailReceipt:
        """Send ``message``.

        Raises:
            ProviderError: If the provider rejects or fails the send.
        """


class CallProvider(ABC):
    """Places outreach calls."""

    name: str = "call"

    @abstractmethod
    async def place_call(self, request: CallRequest) -> CallReceipt:
        """Start a call.

        Raises:
            ProviderError: If the provider fails to start the call.
        """


@dataclass
class ProviderSet:
    """The seven capabilities, constructed once at process start."""

    listings: ListingsProvider
    enrichment: EnrichmentFetcher
    site_builder: SiteBuilder
    images: ImageProvider
    deploy: DeployProvider
    email: EmailProvider
    calls: CallProvider

    def describe(self) -> dict[str, str]:
        """Map each capability to the implementation in use."""
        return {
            "listings": self.listings.name,
            "enrichment": self.enrichment.name,
            "site_builder": self.site_builder.name,
            "images": self.images.name,
            "deploy": self.deploy.name,
            "email": self.email.name,
            "calls": self.calls.name,
        }
