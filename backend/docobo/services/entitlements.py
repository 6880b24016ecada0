"""Entitlement state machine.

Applies one normalized event to the subscriptions table and reports which
Discord side effect, if any, the caller must run:

    PENDING -> ACTIVE -> CANCELLED -> REVOKED
               ACTIVE -> REFUNDED

REVOKED and REFUNDED are terminal. Events for untracked or terminal
subscriptions are logged no-ops, never errors, so re-delivered and
out-of-order events are safe.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from docobo.core.metrics import untracked_subscription_events_counter
from docobo.db.helpers import create_subscription, get_or_create_member, get_subscription_for_update
from docobo.models.enums import SubscriptionStatus, WebhookEventType
from docobo.models.subscription import Subscription
from docobo.services.normalizer import EntitlementEvent
from docobo.services.reference_resolver import ResolvedPayment

logger = logging.getLogger("webhooks")

# Events that are recorded for audit but never mutate a subscription
LOG_ONLY_EVENTS = frozenset({
    WebhookEventType.SUBSCRIPTION_CREATED,
    WebhookEventType.SUBSCRIPTION_UPDATED,
    WebhookEventType.ORDER_CREATED,
    WebhookEventType.ORDER_UPDATED,
    WebhookEventType.ORDER_PAID,
})


class SideEffect(str, enum.Enum):
    NONE = "none"
    GRANT = "grant"
    REVOKE = "revoke"


@dataclass(frozen=True)
class EffectTarget:
    guild_id: str  # Discord snowflakes
    user_id: str
    role_id: str
    role_name: str


@dataclass(frozen=True)
class Transition:
    event_type: WebhookEventType
    effect: SideEffect = SideEffect.NONE
    subscription_id: Optional[int] = None
    previous_status: Optional[SubscriptionStatus] = None
    new_status: Optional[SubscriptionStatus] = None
    target: Optional[EffectTarget] = None
    noop_reason: Optional[str] = None

    @property
    def is_noop(self) -> bool:
        return self.noop_reason is not None


def _target(subscription: Subscription) -> EffectTarget:
    paid_role = subscription.paid_role
    return EffectTarget(
        guild_id=paid_role.guild.guild_id,
        user_id=subscription.member.user_id,
        role_id=paid_role.role_id,
        role_name=paid_role.role_name,
    )


def _noop(event: EntitlementEvent, reason: str, subscription: Optional[Subscription] = None) -> Transition:
    return Transition(
        event_type=event.event_type,
        subscription_id=subscription.id if subscription else None,
        previous_status=subscription.status if subscription else None,
        new_status=subscription.status if subscription else None,
        noop_reason=reason,
    )


def apply_event(event: EntitlementEvent, db: Session, payment: Optional[ResolvedPayment] = None) -> Transition:
    """Apply an event and commit the resulting subscription state.

    Args:
        event: Normalized provider event.
        db: Database session; committed (or rolled back for no-ops) before return.
        payment: Required for PAYMENT_IN; the resolved and amount-checked transfer.

    Returns:
        The transition, including the side effect the caller must execute.
    """
    if event.event_type is WebhookEventType.PAYMENT_IN:
        if payment is None:
            raise ValueError("PAYMENT_IN requires a resolved payment")
        return _activate_payment(event, payment, db)

    if event.event_type in LOG_ONLY_EVENTS:
        logger.info(f"{event.provider.value} {event.raw_type} for {event.external_subscription_id}: recorded, no transition")
        return _noop(event, "log_only")

    subscription = get_subscription_for_update(event.provider, event.external_subscription_id, db)

    if not subscription:
        logger.warning(f"Subscription not found for {event.raw_type} event: {event.external_subscription_id}")
        untracked_subscription_events_counter.labels(event_type=event.event_type.value, reason="not_found").inc()
        db.rollback()
        return _noop(event, "not_found")

    if subscription.status.is_terminal:
        logger.info(
            f"Subscription {subscription.id} already {subscription.status.value}; ignoring {event.raw_type}"
        )
        untracked_subscription_events_counter.labels(event_type=event.event_type.value, reason="terminal").inc()
        db.rollback()
        return _noop(event, "terminal", subscription)

    previous = subscription.status
    effect = SideEffect.NONE

    if event.event_type is WebhookEventType.SUBSCRIPTION_ACTIVE:
        subscription.status = SubscriptionStatus.ACTIVE
        effect = SideEffect.GRANT
    elif event.event_type is WebhookEventType.SUBSCRIPTION_CANCELED:
        # Access persists until the period ends; Polar sends subscription.revoked then
        subscription.status = SubscriptionStatus.CANCELLED
        subscription.cancel_at_period_end = True
    elif event.event_type is WebhookEventType.SUBSCRIPTION_UNCANCELED:
        if previous is not SubscriptionStatus.CANCELLED:
            db.rollback()
            return _noop(event, "not_cancelled", subscription)
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.cancel_at_period_end = False
    elif event.event_type is WebhookEventType.SUBSCRIPTION_REVOKED:
        subscription.status = SubscriptionStatus.REVOKED
        effect = SideEffect.REVOKE
    elif event.event_type is WebhookEventType.ORDER_REFUNDED:
        subscription.status = SubscriptionStatus.REFUNDED
        effect = SideEffect.REVOKE
    else:
        db.rollback()
        return _noop(event, "unhandled", subscription)

    target = _target(subscription)
    transition = Transition(
        event_type=event.event_type,
        effect=effect,
        subscription_id=subscription.id,
        previous_status=previous,
        new_status=subscription.status,
        target=target,
    )
    db.commit()

    logger.info(
        f"Subscription {transition.subscription_id}: {previous.value} -> {transition.new_status.value} "
        f"({event.raw_type}, effect={effect.value})"
    )
    return transition


def _activate_payment(event: EntitlementEvent, payment: ResolvedPayment, db: Session) -> Transition:
    """Create an ACTIVE subscription for a resolved bank transfer"""
    paid_role = payment.paid_role
    member = get_or_create_member(payment.user_id, paid_role.guild, db)

    subscription = create_subscription(
        member=member,
        paid_role=paid_role,
        provider=event.provider,
        external_subscription_id=event.external_event_id,
        status=SubscriptionStatus.ACTIVE,
        db=db,
        provider_metadata={
            "gateway": event.payload.get("gateway"),
            "transactionDate": event.payload.get("transactionDate"),
            "transferAmount": str(payment.amount),
            "referenceCode": event.payload.get("referenceCode"),
        },
    )
    target = _target(subscription)
    transition = Transition(
        event_type=event.event_type,
        effect=SideEffect.GRANT,
        subscription_id=subscription.id,
        new_status=SubscriptionStatus.ACTIVE,
        target=target,
    )
    db.commit()

    logger.info(
        f"✅ Payment {event.external_event_id} activated subscription {transition.subscription_id} "
        f"for user {target.user_id} ({target.role_name})"
    )
    return transition
