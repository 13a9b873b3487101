"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas are the ONLY models passed between stages.
"""

from .extraction import (
    DOMAIN_FIELDS,
    SUBSCRIPTION_FIELDS,
    BillingCycle,
    Classification,
    DomainExtraction,
    Extraction,
    JunkExtraction,
    SubscriptionExtraction,
    parse_extraction,
)
from .message import Attachment, DecomposedMessage

__all__ = [
    # Mail
    "Attachment",
    "DecomposedMessage",
    # Extraction
    "BillingCycle",
    "Classification",
    "DOMAIN_FIELDS",
    "DomainExtraction",
    "Extraction",
    "JunkExtraction",
    "SUBSCRIPTION_FIELDS",
    "SubscriptionExtraction",
    "parse_extraction",
]
