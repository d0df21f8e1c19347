"""Exception hierarchy for the outreach pipeline.

Integrity errors (missing rows, precondition mismatches) and provider errors
propagate out of stage handlers so the queue retries and eventually parks the
job. Policy skips are not exceptions.
"""

from typing import Any, Iterable, Optional


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    pass


class NotFoundError(PipelineError):
    """Raised when a referenced campaign, lead or listing does not exist."""

    pass


class CampaignNotFoundError(NotFoundError):
    """Raised when a job references a campaign that does not exist."""

    def __init__(self, campaign_id: str):
        super().__init__(f"Campaign not found: {campaign_id}")
        self.campaign_id = campaign_id


class LeadNotFoundError(NotFoundError):
    """Raised when a job references a lead that does not exist."""

    def __init__(self, lead_id: str):
        super().__init__(f"Lead not found: {lead_id}")
        self.lead_id = lead_id


class StatusPreconditionError(PipelineError):
    """Raised when a lead is not in a status the stage accepts."""

    def __init__(self, lead_id: str, stage: str, expected: Iterable, actual):
        self.lead_id = lead_id
        self.stage = stage
        self.expected = [getattr(s, "value", s) for s in expected]
        self.actual = getattr(actual, "value", actual)
        super().__init__(
            f"Lead {lead_id} must be {' or '.join(self.expected)} before {stage} "
            f"(current={self.actual})"
        )


class MissingArtifactError(PipelineError):
    """Raised when a stage needs output of a prior stage that was never recorded."""

    pass


class ProviderError(PipelineError):
    """Raised when an external provider call fails.

    Attributes:
        provider: Short provider name (e.g. "sendgrid", "twilio").
    """

    def __init__(self, provider: str, message: str, retry_after: Optional[float] = None):
        super().__init__(f"[{provider}] {message}")
        self.provider = provider
        self.retry_after = retry_after


class NoListingFoundError(NotFoundError):
    """Raised when a one-lead search finds no usable business."""

    def __init__(self, niche: str, city: str):
        super().__init__(f"No lead found for {niche} in {city}")
        self.niche = niche
        self.city = city


class InvalidRequestError(PipelineError):
    """Raised when a command or callback is missing required input.

    Attributes:
        details: Optional structured description of what was wrong.
    """

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.details = details


class ConflictError(PipelineError):
    """Raised when a command does not apply to the entity's current state."""

    pass
