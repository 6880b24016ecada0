"""Resolves a SePay bank transfer to the guild, role and user it pays for"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from docobo.db.helpers import get_active_paid_role
from docobo.models.guild import PaidRole
from docobo.services.normalizer import EntitlementEvent

logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """A payment that cannot be admitted into the state machine"""


class UnresolvedReferenceError(ResolutionError):
    pass


class PaidRoleNotFoundError(ResolutionError):
    pass


class InsufficientPaymentError(ResolutionError):
    def __init__(self, received: Decimal, expected: Decimal):
        self.received = received
        self.expected = expected
        super().__init__(f"Insufficient payment: {received} < {expected}")


@dataclass(frozen=True)
class ResolvedPayment:
    paid_role: PaidRole
    user_id: str
    amount: Decimal


def resolve_payment(event: EntitlementEvent, db: Session) -> ResolvedPayment:
    """Find the active paid role a transfer refers to and check the amount covers its price.

    Raises:
        UnresolvedReferenceError: No reference grammar matched the transfer note.
        PaidRoleNotFoundError: The referenced guild/role is unknown or inactive.
        InsufficientPaymentError: Transferred amount is below the role price.
    """
    reference = event.reference
    if reference is None:
        raise UnresolvedReferenceError(f"Could not parse reference for transaction {event.external_event_id}")

    paid_role = get_active_paid_role(reference.guild_id, reference.role_id, db)
    if not paid_role:
        raise PaidRoleNotFoundError(
            f"Paid role not found for guild {reference.guild_id}, role {reference.role_id}"
        )

    amount = Decimal(event.amount or 0)
    expected = Decimal(paid_role.price_usd)
    if amount < expected:
        raise InsufficientPaymentError(amount, expected)

    return ResolvedPayment(paid_role=paid_role, user_id=reference.user_id, amount=amount)
