# pipeline/errors.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - PIPELINE ERROR TAXONOMY
# ============================================================================
# Each class carries the HTTP status the webhook route answers with when the
# error ends request processing.
# ============================================================================

from typing import Optional


class PipelineError(Exception):
    """Base class for webhook pipeline errors"""

    status_code: int = 500

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class MalformedPayload(PipelineError):
    """Empty body, invalid JSON, or a JSON value that is not an object"""
    status_code = 400


class UnrecognizedEventType(PipelineError):
    """Event type outside the accepted set; acknowledged and dropped"""
    status_code = 200


class MissingOrderReference(PipelineError):
    """No order reference anywhere in the payload"""
    status_code = 200


class OrderNotFound(PipelineError):
    """Order reference does not resolve; acknowledged so the gateway stops retrying"""
    status_code = 200


class PriceDivergence(PipelineError):
    """Root and metadata totals disagree beyond tolerance. Never fatal."""
    status_code = 200


class MappingUnresolved(PipelineError):
    """No product mapping for (program, tier, platform). Never fatal."""
    status_code = 200


class IntegrationError(PipelineError):
    """A downstream call failed; contained at the step boundary"""

    def __init__(
        self,
        message: str,
        integration: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
        **context,
    ):
        super().__init__(message, integration=integration, status=status, **context)
        self.integration = integration
        self.status = status
        self.body = (body or "")[:500]


class InternalError(PipelineError):
    """Unexpected failure; the gateway is expected to retry"""
    status_code = 500
