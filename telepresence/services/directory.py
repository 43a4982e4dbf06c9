import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import quote

from tornado.httpclient import AsyncHTTPClient, HTTPClientError, HTTPRequest

logger = logging.getLogger(__name__)

DEFAULT_DIRECTORY_URL = "https://graph.microsoft.com/v1.0"
PRESENCE_ICON_ROOT = "/ar/assets/presence"


@dataclass(frozen=True)
class PresenceStatus:
    label: str
    color: str
    color_hex: str
    icon: str


AVAILABLE = PresenceStatus("Available", "green", "#93c353", f"{PRESENCE_ICON_ROOT}/ms-available.png")
AWAY = PresenceStatus("Away", "yellow", "#fcd116", f"{PRESENCE_ICON_ROOT}/ms-away.png")
BUSY = PresenceStatus("Busy", "red", "#c4314b", f"{PRESENCE_ICON_ROOT}/ms-busy.png")
DO_NOT_DISTURB = PresenceStatus("Do not disturb", "red", "#c4314b", f"{PRESENCE_ICON_ROOT}/ms-dnd.png")
OFFLINE = PresenceStatus("Offline", "gray", "#9c9c9c", f"{PRESENCE_ICON_ROOT}/ms-offline.png")
ERROR = PresenceStatus("Error", "gray", "#9c9c9c", f"{PRESENCE_ICON_ROOT}/ms-offline.png")

_PRESENCE_BY_AVAILABILITY = {
    "available": AVAILABLE,
    "availableidle": AVAILABLE,
    "away": AWAY,
    "berightback": AWAY,
    "busy": BUSY,
    "busyidle": BUSY,
    "donotdisturb": DO_NOT_DISTURB,
    "offline": OFFLINE,
    "presenceunknown": OFFLINE,
}


def classify_presence(raw: Optional[str]) -> PresenceStatus:
    """Map a directory availability string to a display status (case-insensitive)."""
    if not isinstance(raw, str):
        return ERROR
    return _PRESENCE_BY_AVAILABILITY.get(raw.strip().lower(), ERROR)


@dataclass(frozen=True)
class PresenceCard:
    robot_id: str
    user_id: str
    display_name: str
    status: PresenceStatus
    photo_ref: Optional[str] = None


class DirectoryLookupError(Exception):
    """A directory request failed or returned an unusable body."""


class DirectoryService:
    """Presence cards from the organisation directory (Microsoft Graph API).

    A card needs two dependent lookups, the user's profile and then their
    presence. Concurrent requests for the same (robot, user) pair share one
    pending lookup, and finished cards are reused for ``cache_seconds``.
    """

    def __init__(
        self,
        http_client: Optional[AsyncHTTPClient] = None,
        base_url: Optional[str] = None,
        access_token: Optional[str] = None,
        cache_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._http_client = http_client
        self.base_url = (base_url or os.getenv("DIRECTORY_BASE_URL") or DEFAULT_DIRECTORY_URL).rstrip("/")
        self.access_token = access_token or os.getenv("DIRECTORY_ACCESS_TOKEN")
        self.cache_seconds = (
            cache_seconds if cache_seconds is not None else float(os.getenv("PRESENCE_CACHE_SECONDS", "5"))
        )
        self.clock = clock
        self._pending: Dict[Tuple[str, str], asyncio.Future] = {}
        self._cache: Dict[Tuple[str, str], Tuple[float, PresenceCard]] = {}

    @property
    def http_client(self) -> AsyncHTTPClient:
        if self._http_client is None:
            self._http_client = AsyncHTTPClient()
        return self._http_client

    async def get_presence_card(self, robot_id: str, user_id: str) -> PresenceCard:
        key = (robot_id, user_id)
        cached = self._cache.get(key)
        if cached is not None and self.clock() - cached[0] < self.cache_seconds:
            return cached[1]

        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._lookup_card(robot_id, user_id))
            self._pending[key] = pending
            pending.add_done_callback(lambda fut, key=key: self._settle(key, fut))
        # shield so one cancelled waiter does not cancel the lookup for the others
        return await asyncio.shield(pending)

    def _settle(self, key: Tuple[str, str], future: asyncio.Future) -> None:
        self._pending.pop(key, None)
        if not future.cancelled() and future.exception() is None:
            self._cache[key] = (self.clock(), future.result())

    async def _lookup_card(self, robot_id: str, user_id: str) -> PresenceCard:
        photo_ref = f"/photos/{user_id}.png"
        try:
            profile = await self._get_json(f"/users/{quote(user_id, safe='')}")
        except DirectoryLookupError as exc:
            logger.warning("Directory profile lookup for %s failed: %s", user_id, exc)
            return PresenceCard(robot_id, user_id, user_id, ERROR, photo_ref)

        display_name = profile.get("displayName") or user_id
        try:
            presence = await self._get_json(f"/users/{quote(user_id, safe='')}/presence")
        except DirectoryLookupError as exc:
            logger.warning("Directory presence lookup for %s failed: %s", user_id, exc)
            return PresenceCard(robot_id, user_id, display_name, ERROR, photo_ref)

        status = classify_presence(presence.get("availability"))
        if status is ERROR:
            logger.warning("Unrecognized availability %r for %s", presence.get("availability"), user_id)
        return PresenceCard(robot_id, user_id, display_name, status, photo_ref)

    async def send_chat(self, chat_id: str, text: str) -> bool:
        try:
            request = HTTPRequest(
                f"{self.base_url}/chats/{quote(chat_id, safe='')}/messages",
                method="POST",
                headers=self._headers(json_body=True),
                body=json.dumps({"body": {"content": text}}),
            )
            await self.http_client.fetch(request)
        except (DirectoryLookupError, HTTPClientError, OSError) as exc:
            logger.warning("Chat message to %s failed: %s", chat_id, exc)
            return False
        logger.info("Chat message sent to %s", chat_id)
        return True

    async def _get_json(self, path: str) -> dict:
        request = HTTPRequest(f"{self.base_url}{path}", method="GET", headers=self._headers())
        try:
            response = await self.http_client.fetch(request)
            payload = json.loads(response.body)
        except (HTTPClientError, OSError, ValueError) as exc:
            raise DirectoryLookupError(str(exc)) from exc
        if not isinstance(payload, dict):
            raise DirectoryLookupError(f"unexpected body from {path}")
        return payload

    def _headers(self, json_body: bool = False) -> Dict[str, str]:
        if not self.access_token:
            raise DirectoryLookupError("DIRECTORY_ACCESS_TOKEN is not configured")
        headers = {"Authorization": f"Bearer {self.access_token}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers
