"""Typed event payloads.

Every ``EventType`` has exactly one payload model. Payloads are validated
when an event is written and parsed back into the same model when a later
stage reads the event, so readers never poke at untyped JSON.

Stored metadata uses camelCase keys (``serviceKeywords``, ``callId``...).
"""

from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import EventType


class EventPayload(BaseModel):
    """Base class for event payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    def to_metadata(self) -> Dict[str, Any]:
        """Serialize to the JSON stored in ``events.metadata``."""
        return self.model_dump(by_alias=True, mode="json")


class CampaignCreatedPayload(EventPayload):
    niche: str
    city: str
    limit: int
    mode: str = "batch"
    sheet_data_url: Optional[str] = None


class LeadScrapedPayload(EventPayload):
    website_url: Optional[str] = None
    source_url: Optional[str] = None
    mode: Optional[str] = None


class ScrapeCompletedPayload(EventPayload):
    listings: int
    succeeded: int
    failed: int


class LeadEnrichedPayload(EventPayload):
    phone: Optional[str] = None
    email: Optional[str] = None
    service_keywords: list[str] = Field(default_factory=list)
    claims: list[str] = Field(default_factory=list)
    brand_colors: list[str] = Field(default_factory=list)
    summary: str = ""
    placeholder_used: bool = False
    crawled_from_url: Optional[str] = None
    pages_visited: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class SiteGeneratedPayload(EventPayload):
    artifact_location: str
    summary: str


class ImagesReadyPayload(EventPayload):
    style: str
    hero_image_url: str
    service_image_urls_count: int


class DeployedPayload(EventPayload):
    url: str


class EmailSentPayload(EventPayload):
    step: int
    provider_message_id: str
    subject: str


class CallPlacedPayload(EventPayload):
    attempt: int
    call_id: str
    callback_url: str


class CallResultPayload(EventPayload):
    provider: str
    call_id: Optional[str] = None
    status: str
    transcript: Optional[str] = None
    opt_out: bool = False


class LeadOutcomePayload(EventPayload):
    source: Optional[str] = None
    note: Optional[str] = None


class ErrorPayload(EventPayload):
    stage: str
    job_id: Optional[str] = None
    attempts: int = 0
    error: str


EVENT_PAYLOADS: Dict[EventType, Type[EventPayload]] = {
    EventType.CAMPAIGN_CREATED: CampaignCreatedPayload,
    EventType.LEAD_SCRAPED: LeadScrapedPayload,
    EventType.SCRAPE_COMPLETED: ScrapeCompletedPayload,
    EventType.LEAD_ENRICHED: LeadEnrichedPayload,
    EventType.SITE_GENERATED: SiteGeneratedPayload,
    EventType.IMAGES_READY: ImagesReadyPayload,
    EventType.DEPLOYED: DeployedPayload,
    EventType.EMAIL_SENT: EmailSentPayload,
    EventType.CALL_PLACED: CallPlacedPayload,
    EventType.CALL_RESULT: CallResultPayload,
    EventType.LEAD_REPLIED: LeadOutcomePayload,
    EventType.LEAD_BOOKED: LeadOutcomePayload,
    EventType.ERROR: ErrorPayload,
}


def payload_type_for(event_type: EventType) -> Type[EventPayload]:
    """Return the payload model registered for ``event_type``."""
    return EVENT_PAYLOADS[EventType(event_type)]


def check_payload(event_type: EventType, payload: EventPayload) -> EventPayload:
    """Ensure ``payload`` is the variant that belongs to ``event_type``.

    Raises:
        TypeError: If the payload model does not match the event type.
    """
    expected = payload_type_for(event_type)
    if not isinstance(payload, expected):
        raise TypeError(
            f"{event_type.value} events take {expected.__name__}, "
            f"got {type(payload).__name__}"
        )
    return payload


def parse_event_payload(event_type: EventType, metadata: Optional[Dict[str, Any]]) -> EventPayload:
    """Parse stored metadata back into the payload model for ``event_type``.

    Raises:
        pydantic.ValidationError: If the stored metadata does not fit the model.
    """
    return payload_type_for(event_type).model_validate(metadata or {})


def build_event_payload(event_type: EventType, **fields: Any) -> EventPayload:
    """Validate ``fields`` into the payload model for ``event_type``.

    Raises:
        pydantic.ValidationError: If the fields do not fit the model.
    """
    return payload_type_for(event_type).model_validate(fields)
