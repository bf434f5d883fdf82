"""Funnel engine error taxonomy.

Every error carries the HTTP status and stable error code the API layer
returns, so routers never need to translate them one by one.
"""


class FunnelError(Exception):
    """Base class for all funnel engine failures."""

    status_code = 400
    code = "funnel_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class CampaignNotFound(FunnelError):
    """Unknown or inactive campaign slug/id."""

    status_code = 404
    code = "campaign_not_found"


class NoActiveVariants(FunnelError):
    """Campaign has no active variation set to assign."""

    status_code = 404
    code = "no_active_variants"


class UnknownVisitor(FunnelError):
    """Token was never assigned within the campaign."""

    status_code = 404
    code = "unknown_visitor"


class InvalidEventType(FunnelError):
    """Event type outside the closed enumeration."""

    status_code = 422
    code = "invalid_event_type"


class InvalidPayload(FunnelError):
    """Payload does not match the shape required by its event type."""

    status_code = 422
    code = "invalid_payload"


class AssignmentConflict(FunnelError):
    """
    Another request inserted the same (campaign, token) visitor first.

    Raised by the event store and resolved by the assignment resolver with a
    single re-read.
    """

    status_code = 409
    code = "assignment_conflict"
