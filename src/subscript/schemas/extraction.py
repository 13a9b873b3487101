"""
Structured extraction schemas (SSOT).

A review item's payload is one of three variants, tagged by classification:
SubscriptionExtraction, DomainExtraction or JunkExtraction. Approval code
dispatches on the variant type, never on the raw classification string.
"""

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from ..errors import ValidationError


class Classification(str, Enum):
    """Three-way category assigned to a processed message."""

    SUBSCRIPTION = "subscription"
    DOMAIN = "domain"
    JUNK = "junk"


class BillingCycle(str, Enum):
    """Billing periodicity of a subscription."""

    MONTHLY = "monthly"
    YEARLY = "yearly"
    ONE_TIME = "one-time"


# Accepted key spellings per field. The first name is the one requested in the
# prompt; the others are the camelCase names used by the review UI when it
# submits edited data.
SUBSCRIPTION_FIELDS: dict[str, tuple[str, ...]] = {
    "vendor": ("vendor", "name"),
    "amount": ("amount", "cost"),
    "currency": ("currency",),
    "cycle": ("cycle", "billingCycle", "periodicity"),
    "next_billing": ("next_billing", "nextBillingDate", "next_date"),
    "category": ("category",),
}

DOMAIN_FIELDS: dict[str, tuple[str, ...]] = {
    "domain_name": ("domain_name", "domainName", "name"),
    "registrar": ("registrar",),
    "cost": ("cost", "amount"),
    "currency": ("currency",),
    "expiry_date": ("expiry_date", "expiryDate"),
    "registration_date": ("registration_date", "registrationDate"),
    "auto_renew": ("auto_renew", "autoRenew"),
}


def _lookup(data: dict[str, Any], names: tuple[str, ...]) -> Any:
    """Return the first non-null value among the accepted key spellings."""
    for name in names:
        value = data.get(name)
        if value is not None:
            return value
    return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _required_str(data: dict[str, Any], names: tuple[str, ...], kind: str) -> str:
    value = _optional_str(_lookup(data, names))
    if value is None:
        raise ValidationError(f"{kind} extraction is missing required field '{names[0]}'")
    return value


def _optional_amount(value: Any, field_name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"'{field_name}' must be a number, got {value!r}")
    try:
        amount = float(str(value).replace(",", ".")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"'{field_name}' must be a number, got {value!r}") from e
    if math.isnan(amount) or math.isinf(amount):
        raise ValidationError(f"'{field_name}' must be a finite number")
    return amount


def _optional_bool(value: Any, field_name: str) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValidationError(f"'{field_name}' must be a boolean, got {value!r}")


@dataclass
class SubscriptionExtraction:
    """Fields extracted from a recurring-payment receipt."""

    vendor: str
    amount: float
    currency: str
    cycle: BillingCycle
    next_billing: str | None = None
    category: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SubscriptionExtraction":
        """Build from an extracted-data mapping.

        Raises:
            ValidationError: If a required field is missing or malformed.
        """
        vendor = _required_str(data, SUBSCRIPTION_FIELDS["vendor"], "subscription")
        amount = _optional_amount(_lookup(data, SUBSCRIPTION_FIELDS["amount"]), "amount")
        if amount is None:
            raise ValidationError("subscription extraction is missing required field 'amount'")
        currency = _required_str(data, SUBSCRIPTION_FIELDS["currency"], "subscription").upper()

        raw_cycle = _required_str(data, SUBSCRIPTION_FIELDS["cycle"], "subscription")
        normalized = raw_cycle.lower().replace("_", "-").replace(" ", "-")
        if normalized == "onetime":
            normalized = BillingCycle.ONE_TIME.value
        try:
            cycle = BillingCycle(normalized)
        except ValueError as e:
            allowed = ", ".join(c.value for c in BillingCycle)
            raise ValidationError(f"cycle must be one of {allowed}, got {raw_cycle!r}") from e

        return cls(
            vendor=vendor,
            amount=amount,
            currency=currency,
            cycle=cycle,
            next_billing=_optional_str(_lookup(data, SUBSCRIPTION_FIELDS["next_billing"])),
            category=_optional_str(_lookup(data, SUBSCRIPTION_FIELDS["category"])),
        )


@dataclass
class DomainExtraction:
    """Fields extracted from a domain registration or renewal receipt.

    Every field except domain_name and expiry_date is optional; on approval a
    null optional field never overwrites a stored value.
    """

    domain_name: str
    expiry_date: str
    registrar: str | None = None
    cost: float | None = None
    currency: str | None = None
    registration_date: str | None = None
    auto_renew: bool | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DomainExtraction":
        """Build from an extracted-data mapping.

        Raises:
            ValidationError: If a required field is missing or malformed.
        """
        currency = _optional_str(_lookup(data, DOMAIN_FIELDS["currency"]))
        return cls(
            domain_name=_required_str(data, DOMAIN_FIELDS["domain_name"], "domain"),
            expiry_date=_required_str(data, DOMAIN_FIELDS["expiry_date"], "domain"),
            registrar=_optional_str(_lookup(data, DOMAIN_FIELDS["registrar"])),
            cost=_optional_amount(_lookup(data, DOMAIN_FIELDS["cost"]), "cost"),
            currency=currency.upper() if currency else None,
            registration_date=_optional_str(_lookup(data, DOMAIN_FIELDS["registration_date"])),
            auto_renew=_optional_bool(_lookup(data, DOMAIN_FIELDS["auto_renew"]), "auto_renew"),
        )


@dataclass
class JunkExtraction:
    """Spam, promotional or irrelevant mail. Never committed to the ledger."""

    data: dict[str, Any] = field(default_factory=dict)


Extraction = Union[SubscriptionExtraction, DomainExtraction, JunkExtraction]


def parse_extraction(classification: str | None, payload: str) -> Extraction:
    """
    Deserialize a review item's payload into its tagged variant.

    Args:
        classification: Stored classification string (may be None)
        payload: Serialized extracted data (JSON object)

    Returns:
        SubscriptionExtraction, DomainExtraction or JunkExtraction

    Raises:
        ValidationError: Unknown/missing classification, invalid JSON, or
            a payload that does not match the variant's required fields.
    """
    if classification is None:
        raise ValidationError("Review item has no classification")
    try:
        kind = Classification(classification)
    except ValueError as e:
        raise ValidationError(f"Unknown classification {classification!r}") from e

    try:
        data = json.loads(payload) if payload else {}
    except json.JSONDecodeError as e:
        raise ValidationError(f"Extracted data is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("Extracted data must be a JSON object")

    if kind is Classification.SUBSCRIPTION:
        return SubscriptionExtraction.from_dict(data)
    if kind is Classification.DOMAIN:
        return DomainExtraction.from_dict(data)
    return JunkExtraction(data=data)
