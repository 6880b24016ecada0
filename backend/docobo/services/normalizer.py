"""Maps Polar and SePay payloads onto one internal EntitlementEvent"""
import json
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError

from docobo.core.config import settings
from docobo.models.enums import PaymentProvider, WebhookEventType
from docobo.schemas.webhooks import PolarWebhookEvent, SepayTransaction
from docobo.services.verification import verify_polar_signature, verify_sepay_auth

logger = logging.getLogger(__name__)

POLAR_EVENT_TYPES = {
    "subscription.created": WebhookEventType.SUBSCRIPTION_CREATED,
    "subscription.updated": WebhookEventType.SUBSCRIPTION_UPDATED,
    "subscription.active": WebhookEventType.SUBSCRIPTION_ACTIVE,
    "subscription.canceled": WebhookEventType.SUBSCRIPTION_CANCELED,
    "subscription.uncanceled": WebhookEventType.SUBSCRIPTION_UNCANCELED,
    "subscription.revoked": WebhookEventType.SUBSCRIPTION_REVOKED,
    "order.created": WebhookEventType.ORDER_CREATED,
    "order.updated": WebhookEventType.ORDER_UPDATED,
    "order.paid": WebhookEventType.ORDER_PAID,
    "order.refunded": WebhookEventType.ORDER_REFUNDED,
}

# Discord snowflakes are always 17-19 digits
SNOWFLAKE_PATTERN = re.compile(r"(?<![0-9])[0-9]{17,19}(?![0-9])")

# SePay fields that may carry the buyer's transfer note, in priority order
REFERENCE_FIELDS = ("referenceCode", "code", "content", "description")


class InvalidPayloadError(ValueError):
    """Authenticated body that is not a well-formed provider event"""


@dataclass(frozen=True)
class ReferenceCode:
    guild_id: str
    role_id: str
    user_id: str


@dataclass(frozen=True)
class EntitlementEvent:
    provider: PaymentProvider
    event_type: WebhookEventType
    external_event_id: str
    raw_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    external_subscription_id: Optional[str] = None
    reference: Optional[ReferenceCode] = None
    amount: Optional[Decimal] = None


def map_polar_event_type(raw_type: str) -> WebhookEventType:
    """Unknown but authenticated types are recorded as generic updates rather than dropped"""
    return POLAR_EVENT_TYPES.get(raw_type, WebhookEventType.SUBSCRIPTION_UPDATED)


def parse_reference_code(text: Optional[str], prefix: Optional[str] = None) -> Optional[ReferenceCode]:
    """Recover (guild, role, user) from a bank-transfer note.

    Tries ``<PREFIX>-<guildId>-<roleId>-<userId>`` first, then falls back to
    the first three 17-19 digit runs found anywhere in the text.
    """
    if not text:
        return None

    prefix = prefix or settings.REFERENCE_PREFIX
    match = re.fullmatch(rf"{re.escape(prefix)}-([0-9]+)-([0-9]+)-([0-9]+)", text.strip())
    if match:
        return ReferenceCode(*match.groups())

    snowflakes = SNOWFLAKE_PATTERN.findall(text)
    if len(snowflakes) >= 3:
        return ReferenceCode(*snowflakes[:3])

    return None


def normalize_polar_event(payload: Dict[str, Any]) -> EntitlementEvent:
    try:
        event = PolarWebhookEvent.model_validate(payload)
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid Polar event: {e.error_count()} validation error(s)") from e

    event_type = map_polar_event_type(event.type)
    external_subscription_id = event.data.id
    if event.type.startswith("order.") and event.data.subscription_id:
        external_subscription_id = event.data.subscription_id

    return EntitlementEvent(
        provider=PaymentProvider.POLAR,
        event_type=event_type,
        external_event_id=event.id,
        raw_type=event.type,
        payload=payload,
        external_subscription_id=external_subscription_id,
    )


def normalize_sepay_transaction(payload: Dict[str, Any]) -> Optional[EntitlementEvent]:
    """Normalize an incoming transfer to PAYMENT_IN. Outgoing transfers return None."""
    try:
        transaction = SepayTransaction.model_validate(payload)
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid SePay transaction: {e.error_count()} validation error(s)") from e

    if transaction.transferType != "in":
        return None

    reference = None
    for field_name in REFERENCE_FIELDS:
        reference = parse_reference_code(getattr(transaction, field_name))
        if reference:
            break

    return EntitlementEvent(
        provider=PaymentProvider.SEPAY,
        event_type=WebhookEventType.PAYMENT_IN,
        external_event_id=str(transaction.id),
        raw_type="transfer.in",
        payload=payload,
        reference=reference,
        amount=transaction.transferAmount,
    )


def _parse_json(body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(body.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidPayloadError(f"Body is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Body must be a JSON object")
    return payload


def verify_and_normalize(
    provider: PaymentProvider,
    body: Union[bytes, str],
    headers: Mapping[str, str],
) -> Optional[EntitlementEvent]:
    """Authenticate a raw delivery and normalize it in one step.

    Returns None for authenticated deliveries that are not entitlement events
    (SePay outgoing transfers).

    Raises:
        WebhookVerificationError: Authentication failed.
        InvalidPayloadError: Authenticated but malformed body.
    """
    if isinstance(body, str):
        body = body.encode()

    if provider is PaymentProvider.POLAR:
        verify_polar_signature(
            body, headers, settings.POLAR_WEBHOOK_SECRET,
            tolerance=settings.WEBHOOK_TIMESTAMP_TOLERANCE,
        )
        return normalize_polar_event(_parse_json(body))
    elif provider is PaymentProvider.SEPAY:
        verify_sepay_auth(headers.get("authorization"), settings.SEPAY_WEBHOOK_SECRET)
        return normalize_sepay_transaction(_parse_json(body))
    raise ValueError(f"Unsupported provider: {provider}")
