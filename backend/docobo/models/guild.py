"""Guild, Member and PaidRole models"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from docobo.models.base import Base


class Guild(Base):
    """A Discord server that sells roles"""
    __tablename__ = "guilds"

    id = Column(Integer, primary_key=True, index=True)
    guild_id = Column(String(32), unique=True, nullable=False, index=True)  # Discord snowflake
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    paid_roles = relationship("PaidRole", back_populates="guild")
    members = relationship("Member", back_populates="guild")


class Member(Base):
    """A Discord user within one guild"""
    __tablename__ = "members"
    __table_args__ = (UniqueConstraint("user_id", "guild_id", name="uq_members_user_guild"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(32), nullable=False, index=True)  # Discord snowflake
    guild_id = Column(Integer, ForeignKey("guilds.id", ondelete="CASCADE"), nullable=False, index=True)
    username = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    guild = relationship("Guild", back_populates="members")
    subscriptions = relationship("Subscription", back_populates="member")


class PaidRole(Base):
    """A purchasable Discord role. Written by the setup flow, read-only here."""
    __tablename__ = "paid_roles"
    __table_args__ = (UniqueConstraint("guild_id", "role_id", name="uq_paid_roles_guild_role"),)

    id = Column(Integer, primary_key=True, index=True)
    guild_id = Column(Integer, ForeignKey("guilds.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(String(32), nullable=False, index=True)  # Discord role snowflake
    role_name = Column(String(255), nullable=False)
    price_usd = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(8), default="USD", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    guild = relationship("Guild", back_populates="paid_roles")
    subscriptions = relationship("Subscription", back_populates="paid_role")
