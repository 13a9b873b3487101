"""
Error taxonomy for the ingestion and review pipeline.

Transport errors abort a sync run. Conversion and extraction errors abort only
the message being processed. Validation and not-found errors are raised by
direct calls (approve/reject) and surface verbatim to the caller.
"""


class SubscriptError(Exception):
    """Base exception for all pipeline errors."""

    pass


class TransportError(SubscriptError):
    """Mail server connection, authentication or mailbox selection failed."""

    pass


class ConversionError(SubscriptError):
    """Document-to-text conversion failed."""

    pass


class ExtractionError(SubscriptError):
    """Inference request failed or its response did not contain the expected JSON."""

    def __init__(self, message: str, raw_response: str | None = None):
        self.raw_response = raw_response
        super().__init__(message)


class ValidationError(SubscriptError):
    """Input rejected before any mutation took place."""

    pass


class NotFoundError(SubscriptError):
    """Referenced record does not exist."""

    def __init__(self, entity: str, entity_id: int):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")
