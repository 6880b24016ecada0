"""Repository helpers for guilds, members, paid roles and subscriptions"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from docobo.models.enums import PaymentProvider, SubscriptionStatus
from docobo.models.guild import Guild, Member, PaidRole
from docobo.models.subscription import Subscription

logger = logging.getLogger(__name__)


def get_subscription_for_update(
    provider: PaymentProvider,
    external_subscription_id: str,
    db: Session
) -> Optional[Subscription]:
    """Load a subscription by provider id and lock its row for read-modify-write.

    The member, paid role and guild are loaded too, since a transition may
    need all three for its side effect. The lock is released on commit.
    """
    return (
        db.query(Subscription)
        .options(
            joinedload(Subscription.member, innerjoin=True),
            joinedload(Subscription.paid_role, innerjoin=True).joinedload(PaidRole.guild, innerjoin=True)
        )
        .filter(
            Subscription.provider == provider,
            Subscription.external_subscription_id == external_subscription_id
        )
        .with_for_update(of=Subscription)
        .first()
    )


def get_active_paid_role(discord_guild_id: str, discord_role_id: str, db: Session) -> Optional[PaidRole]:
    """Find an active paid role by Discord guild and role snowflakes"""
    return (
        db.query(PaidRole)
        .join(Guild, PaidRole.guild_id == Guild.id)
        .options(joinedload(PaidRole.guild))
        .filter(
            Guild.guild_id == discord_guild_id,
            PaidRole.role_id == discord_role_id,
            PaidRole.is_active.is_(True)
        )
        .first()
    )


def get_or_create_member(user_id: str, guild: Guild, db: Session) -> Member:
    """Return the member for (user, guild), creating a placeholder if needed.

    A bank transfer can arrive before the user ever talked to the bot, so the
    username is a placeholder until the bot sees them. Concurrent creation is
    resolved by the (user_id, guild_id) unique constraint.
    """
    member = db.query(Member).filter(Member.user_id == user_id, Member.guild_id == guild.id).first()
    if member:
        return member

    savepoint = db.begin_nested()
    try:
        member = Member(user_id=user_id, guild_id=guild.id, username=f"User-{user_id}")
        db.add(member)
        savepoint.commit()
        logger.info(f"Created member {user_id} in guild {guild.guild_id}")
        return member
    except IntegrityError:
        savepoint.rollback()
        return db.query(Member).filter(Member.user_id == user_id, Member.guild_id == guild.id).one()


def create_subscription(
    member: Member,
    paid_role: PaidRole,
    provider: PaymentProvider,
    external_subscription_id: str,
    status: SubscriptionStatus,
    db: Session,
    provider_metadata: Optional[Dict[str, Any]] = None
) -> Subscription:
    subscription = Subscription(
        member=member,
        paid_role=paid_role,
        provider=provider,
        external_subscription_id=external_subscription_id,
        status=status,
        cancel_at_period_end=False,
        provider_metadata=provider_metadata
    )
    db.add(subscription)
    db.flush()
    return subscription
