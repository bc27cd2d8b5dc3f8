"""
Discord Authorization Backend

Implements AuthorizationBackend against the Discord REST API v10.

- Grant:    shared slot role on the guild member
- Resource: member permission overwrite on the slot channel
            (VIEW_CHANNEL | SEND_MESSAGES)
- Label:    channel name

Required Environment Variables:
- DISCORD_BOT_TOKEN (or DISCORD_TOKEN)
- GUILD_ID
"""

import logging
from typing import Any, Dict, Optional

import httpx

from .config import DISCORD_CONFIG
from .errors import AuthorizationBackendError, AuthorizationNotFoundError
from .reconciler import AuthorizationBackend

logger = logging.getLogger(__name__)

MEMBER_OVERWRITE = 1


class DiscordAuthorizationBackend(AuthorizationBackend):

    def __init__(
        self,
        token: str,
        guild_id: str,
        client: Optional[httpx.AsyncClient] = None,
        api_base: str = DISCORD_CONFIG["api_base"],
    ):
        self.guild_id = guild_id
        self._client = client or httpx.AsyncClient(base_url=api_base)
        self._headers = {
            "Authorization": f"Bot {token}",
            "User-Agent": DISCORD_CONFIG["user_agent"],
        }

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            response = await self._client.request(method, path, headers=self._headers, json=json)
        except httpx.HTTPError as e:
            raise AuthorizationBackendError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise AuthorizationNotFoundError(f"{method} {path}: not found", 404)
        if response.status_code >= 400:
            logger.error(f"Discord {method} {path} returned {response.status_code}: {response.text}")
            raise AuthorizationBackendError(
                f"{method} {path} returned {response.status_code}", response.status_code
            )
        return response

    async def get_resource_label(self, resource_ref: str) -> str:
        response = await self._request("GET", f"/channels/{resource_ref}")
        try:
            return response.json()["name"]
        except (ValueError, KeyError, TypeError) as e:
            raise AuthorizationBackendError(f"GET /channels/{resource_ref}: unexpected body ({e!r})") from e

    async def set_resource_label(self, resource_ref: str, label: str) -> None:
        await self._request("PATCH", f"/channels/{resource_ref}", json={"name": label})

    async def add_grant(self, holder_id: str, grant_ref: str) -> None:
        await self._request("PUT", f"/guilds/{self.guild_id}/members/{holder_id}/roles/{grant_ref}")

    async def remove_grant(self, holder_id: str, grant_ref: str) -> None:
        # The role is shared by all slot holders, so only the membership goes
        await self._request("DELETE", f"/guilds/{self.guild_id}/members/{holder_id}/roles/{grant_ref}")

    async def allow_resource(self, resource_ref: str, holder_id: str) -> None:
        await self._request(
            "PUT",
            f"/channels/{resource_ref}/permissions/{holder_id}",
            json={
                "type": MEMBER_OVERWRITE,
                "allow": str(DISCORD_CONFIG["slot_channel_allow"]),
                "deny": "0",
            },
        )

    async def deny_resource(self, resource_ref: str, holder_id: str) -> None:
        await self._request("DELETE", f"/channels/{resource_ref}/permissions/{holder_id}")
