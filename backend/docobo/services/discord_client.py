"""Minimal Discord REST client for guild role management"""
from typing import Any, Dict, List, Optional

import httpx

from docobo.core.config import settings
from docobo.core.logging import discord_logger


class DiscordAPIError(Exception):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Discord API {status_code}: {message}")


class DiscordNotFoundError(DiscordAPIError):
    pass


class DiscordForbiddenError(DiscordAPIError):
    """Missing Manage Roles, or the target role sits above the bot's highest role"""


class DiscordClient:
    """Synchronous client; every call carries the configured timeout."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://discord.com/api/v10",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bot {token}",
                "User-Agent": "DocoboBot (https://github.com/docobo, 0.1.0)",
            }
        )

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        response = self._client.request(method, path, **kwargs)
        if response.status_code == 404:
            raise DiscordNotFoundError(404, response.text)
        if response.status_code == 403:
            raise DiscordForbiddenError(403, response.text)
        if response.is_error:
            raise DiscordAPIError(response.status_code, response.text)
        return response

    def get_guild(self, guild_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/guilds/{guild_id}").json()

    def get_guild_roles(self, guild_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/guilds/{guild_id}/roles").json()

    def get_member(self, guild_id: str, user_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/guilds/{guild_id}/members/{user_id}").json()

    def add_member_role(self, guild_id: str, user_id: str, role_id: str, reason: Optional[str] = None) -> None:
        headers = {"X-Audit-Log-Reason": reason} if reason else None
        self._request("PUT", f"/guilds/{guild_id}/members/{user_id}/roles/{role_id}", headers=headers)

    def remove_member_role(self, guild_id: str, user_id: str, role_id: str, reason: Optional[str] = None) -> None:
        headers = {"X-Audit-Log-Reason": reason} if reason else None
        self._request("DELETE", f"/guilds/{guild_id}/members/{user_id}/roles/{role_id}", headers=headers)

    def close(self) -> None:
        self._client.close()


def create_discord_client() -> DiscordClient:
    if not settings.DISCORD_BOT_TOKEN:
        discord_logger.error("DISCORD_BOT_TOKEN is not set; role changes will fail")
    return DiscordClient(
        token=settings.DISCORD_BOT_TOKEN,
        base_url=settings.DISCORD_API_BASE,
        timeout=settings.DISCORD_HTTP_TIMEOUT
    )
