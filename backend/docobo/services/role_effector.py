"""Idempotent Discord role grant/revoke.

Both operations converge on the desired state: granting a role the member
already holds, or revoking one they lack, is a successful no-op. Failures
are returned as EffectResult values and never raised, so the caller can
always complete its ledger entry.
"""
import enum
import threading
from typing import Optional

import httpx

from docobo.core.logging import discord_logger
from docobo.core.metrics import role_effects_counter
from docobo.services.discord_client import (
    DiscordClient, DiscordForbiddenError, DiscordNotFoundError, create_discord_client
)
from docobo.services.entitlements import SideEffect, Transition

AUDIT_REASON = "Docobo subscription sync"


class EffectResult(str, enum.Enum):
    GRANTED = "granted"
    REVOKED = "revoked"
    ALREADY_PRESENT = "already_present"
    ALREADY_ABSENT = "already_absent"
    GUILD_NOT_FOUND = "guild_not_found"
    MEMBER_NOT_FOUND = "member_not_found"
    ROLE_NOT_FOUND = "role_not_found"
    FORBIDDEN = "forbidden"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self in (
            EffectResult.GRANTED, EffectResult.REVOKED,
            EffectResult.ALREADY_PRESENT, EffectResult.ALREADY_ABSENT
        )


class RoleEffector:
    def __init__(self, client: DiscordClient):
        self.client = client

    def _role_exists(self, guild_id: str, role_id: str) -> bool:
        return any(str(role.get("id")) == role_id for role in self.client.get_guild_roles(guild_id))

    def grant(self, guild_id: str, user_id: str, role_id: str) -> EffectResult:
        result = self._run("grant", guild_id, user_id, role_id)
        role_effects_counter.labels(action="grant", result=result.value).inc()
        return result

    def revoke(self, guild_id: str, user_id: str, role_id: str) -> EffectResult:
        result = self._run("revoke", guild_id, user_id, role_id)
        role_effects_counter.labels(action="revoke", result=result.value).inc()
        return result

    def _run(self, action: str, guild_id: str, user_id: str, role_id: str) -> EffectResult:
        try:
            try:
                self.client.get_guild(guild_id)
            except DiscordNotFoundError:
                discord_logger.error(f"Guild not found: {guild_id}")
                return EffectResult.GUILD_NOT_FOUND

            if not self._role_exists(guild_id, role_id):
                if action == "revoke":
                    # A deleted role cannot be held
                    discord_logger.warning(f"Role {role_id} no longer exists in guild {guild_id}")
                    return EffectResult.ALREADY_ABSENT
                discord_logger.error(f"Role not found: {role_id} in guild {guild_id}")
                return EffectResult.ROLE_NOT_FOUND

            try:
                member = self.client.get_member(guild_id, user_id)
            except DiscordNotFoundError:
                if action == "revoke":
                    discord_logger.info(f"User {user_id} is not in guild {guild_id}; nothing to revoke")
                    return EffectResult.ALREADY_ABSENT
                discord_logger.error(f"Member {user_id} not found in guild {guild_id}")
                return EffectResult.MEMBER_NOT_FOUND

            has_role = role_id in {str(r) for r in member.get("roles", [])}

            if action == "grant":
                if has_role:
                    discord_logger.info(f"Member {user_id} already has role {role_id}")
                    return EffectResult.ALREADY_PRESENT
                self.client.add_member_role(guild_id, user_id, role_id, reason=AUDIT_REASON)
                discord_logger.info(f"✅ Granted role {role_id} to {user_id} in guild {guild_id}")
                return EffectResult.GRANTED

            if not has_role:
                discord_logger.info(f"Member {user_id} doesn't have role {role_id}")
                return EffectResult.ALREADY_ABSENT
            self.client.remove_member_role(guild_id, user_id, role_id, reason=AUDIT_REASON)
            discord_logger.info(f"✅ Revoked role {role_id} from {user_id} in guild {guild_id}")
            return EffectResult.REVOKED

        except DiscordForbiddenError as e:
            discord_logger.error(f"Missing permission to {action} role {role_id} in guild {guild_id}: {e}")
            return EffectResult.FORBIDDEN
        except httpx.TimeoutException:
            discord_logger.error(f"Timed out trying to {action} role {role_id} for {user_id}")
            return EffectResult.FAILED
        except Exception as e:
            discord_logger.error(f"❌ Failed to {action} role {role_id} for {user_id}: {e}", exc_info=True)
            return EffectResult.FAILED


def apply_side_effect(transition: Transition, effector: RoleEffector) -> Optional[EffectResult]:
    """Execute the side effect a transition asks for. Returns None when there is none."""
    target = transition.target
    if transition.effect is SideEffect.NONE or target is None:
        return None
    if transition.effect is SideEffect.GRANT:
        return effector.grant(target.guild_id, target.user_id, target.role_id)
    return effector.revoke(target.guild_id, target.user_id, target.role_id)


_effector = None
_effector_lock = threading.Lock()


def get_role_effector() -> RoleEffector:
    """Get or create the shared effector (lazy, so tests can patch first)"""
    global _effector
    with _effector_lock:
        if _effector is None:
            _effector = RoleEffector(create_discord_client())
    return _effector


def close_role_effector():
    """Close the shared Discord client, if one was created"""
    global _effector
    with _effector_lock:
        if _effector is not None:
            _effector.client.close()
            _effector = None
