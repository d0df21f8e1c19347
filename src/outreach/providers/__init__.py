"""Provider capabilities and their selection.

``resolve_providers`` is the only place that decides which implementation
backs each capability. It is a pure function of configuration, called once
per process; the resulting ``ProviderSet`` is passed to the stage handlers.
"""

import logging

from ..config import Config, ConfigError
from .base import (
    AspectRatio,
    CallProvider,
    CallReceipt,
    CallRequest,
    DeployProvider,
    DeployResult,
    EmailMessage,
    EmailProvider,
    EmailReceipt,
    EnrichmentFetcher,
    EnrichmentResult,
    ImageProvider,
    Listing,
    ListingsProvider,
    ProviderSet,
    SiteBuilder,
    SiteBundle,
    SiteContext,
)
from .deploy import LocalDeployProvider, VercelDeployProvider, inject_image_urls
from .email import SendGridEmailProvider, SimulatedEmailProvider
from .enrichment import SimulatedEnrichmentFetcher, WebsiteEnrichmentFetcher
from .images import (
    ImagePoolCache,
    OpenAIImageProvider,
    PlaceholderImageProvider,
    pick_lead_images,
)
from .listings import (
    GoogleMapsListingsProvider,
    MockListingsProvider,
    WebSearchListingsProvider,
    get_listings_provider_class,
)
from .site_builder import CopywritingSiteBuilder, TemplateSiteBuilder
from .voice import SimulatedCallProvider, TwilioCallProvider


logger = logging.getLogger(__name__)


def _production_listings(config: Config) -> ListingsProvider:
    provider_class = get_listings_provider_class(config.SCRAPER_PROVIDER)
    if provider_class is None:
        raise ConfigError(f"Unknown SCRAPER_PROVIDER: {config.SCRAPER_PROVIDER!r}")
    if provider_class is GoogleMapsListingsProvider:
        return GoogleMapsListingsProvider(api_key=config.GOOGLE_MAPS_API_KEY)
    if provider_class is WebSearchListingsProvider:
        return WebSearchListingsProvider(user_agent=config.SCRAPER_USER_AGENT)
    return provider_class()


def _production_deploy(config: Config) -> DeployProvider:
    if config.DEPLOY_PROVIDER == "vercel":
        return VercelDeployProvider(
            token=config.VERCEL_TOKEN,
            team_id=config.VERCEL_TEAM_ID or None,
            scope=config.VERCEL_SCOPE or None,
        )
    if config.DEPLOY_PROVIDER == "local":
        return LocalDeployProvider(config.DEMO_ROOT, config.PUBLIC_BASE_URL)
    raise ConfigError(f"Unknown DEPLOY_PROVIDER: {config.DEPLOY_PROVIDER!r}")


def resolve_providers(config: Config) -> ProviderSet:
    """Build the provider set for the configured environment.

    Production (``APP_ENV`` or ``ENV`` set to production) gets the real
    integrations; every other environment gets simulated providers that
    never reach an external service.

    Args:
        config: Application configuration.

    Returns:
        ProviderSet with one implementation per capability.

    Raises:
        ConfigError: If a production provider is unknown or lacks credentials.
    """
    if not config.is_production():
        providers = ProviderSet(
            listings=MockListingsProvider(),
            enrichment=SimulatedEnrichmentFetcher(),
            site_builder=TemplateSiteBuilder(config.SITE_OUTPUT_DIR),
            images=PlaceholderImageProvider(),
            deploy=LocalDeployProvider(config.DEMO_ROOT, config.PUBLIC_BASE_URL),
            email=SimulatedEmailProvider(),
            calls=SimulatedCallProvider(),
        )
        logger.info("Resolved simulated providers: %s", providers.describe())
        return providers

    config.validate_for_production()
    try:
        providers = ProviderSet(
            listings=_production_listings(config),
            enrichment=WebsiteEnrichmentFetcher(
                user_agent=config.ENRICHER_USER_AGENT,
                timeout_seconds=config.ENRICHER_FETCH_TIMEOUT_SECONDS,
            ),
            site_builder=CopywritingSiteBuilder(
                config.SITE_OUTPUT_DIR,
                api_key=config.OPENAI_API_KEY,
                model=config.OPENAI_MODEL,
            ),
            images=OpenAIImageProvider(
                api_key=config.OPENAI_API_KEY,
                model=config.OPENAI_IMAGE_MODEL,
            ),
            deploy=_production_deploy(config),
            email=SendGridEmailProvider(
                api_key=config.SENDGRID_API_KEY,
                from_email=config.SENDGRID_FROM_EMAIL,
                from_name=config.SENDGRID_FROM_NAME or None,
            ),
            calls=TwilioCallProvider(
                account_sid=config.TWILIO_ACCOUNT_SID,
                auth_token=config.TWILIO_AUTH_TOKEN,
                from_number=config.TWILIO_PHONE_NUMBER,
            ),
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e

    logger.info("Resolved production providers: %s", providers.describe())
    return providers


__all__ = [
    "AspectRatio",
    "CallProvider",
    "CallReceipt",
    "CallRequest",
    "CopywritingSiteBuilder",
    "DeployProvider",
    "DeployResult",
    "EmailMessage",
    "EmailProvider",
    "EmailReceipt",
    "EnrichmentFetcher",
    "EnrichmentResult",
    "GoogleMapsListingsProvider",
    "ImagePoolCache",
    "ImageProvider",
    "Listing",
    "ListingsProvider",
    "LocalDeployProvider",
    "MockListingsProvider",
    "OpenAIImageProvider",
    "PlaceholderImageProvider",
    "ProviderSet",
    "SendGridEmailProvider",
    "SimulatedCallProvider",
    "SimulatedEmailProvider",
    "SimulatedEnrichmentFetcher",
    "SiteBuilder",
    "SiteBundle",
    "SiteContext",
    "TemplateSiteBuilder",
    "TwilioCallProvider",
    "VercelDeployProvider",
    "WebSearchListingsProvider",
    "WebsiteEnrichmentFetcher",
    "inject_image_urls",
    "pick_lead_images",
    "resolve_providers",
]
