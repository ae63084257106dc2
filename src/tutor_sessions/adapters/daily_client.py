"""Daily.co meeting room client."""

import time
from dataclasses import dataclass

import httpx

from tutor_sessions.services.meetings import MeetingProvider

ROOM_LIFETIME_SECONDS = 4 * 60 * 60


def room_name(session_id: str) -> str:
    return f"session-{session_id}"


@dataclass
class HttpxDailyClient(MeetingProvider):
    """HTTPX-backed Daily.co client."""

    api_key: str
    base_url: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, api_key: str, base_url: str) -> "HttpxDailyClient":
        """Create a Daily.co client with a managed httpx session."""
        return cls(api_key=api_key, base_url=base_url, http_client=httpx.AsyncClient())

    async def create_room(self, session_id: str) -> str:
        """Create a private two-person room and return its URL."""
        response = await self.http_client.post(
            f"{self.base_url}/rooms",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "name": room_name(session_id),
                "privacy": "private",
                "properties": {
                    "max_participants": 2,
                    "enable_chat": True,
                    "enable_screenshare": True,
                    "enable_knocking": True,
                    "enable_prejoin_ui": True,
                    "exp": int(time.time()) + ROOM_LIFETIME_SECONDS,
                },
            },
            timeout=15,
        )
        response.raise_for_status()
        return str(response.json()["url"])

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


@dataclass
class StaticMeetingProvider(MeetingProvider):
    """Deterministic room URLs on a fixed domain, used without an API key."""

    domain: str

    async def create_room(self, session_id: str) -> str:
        return f"https://{self.domain}/{room_name(session_id)}"
