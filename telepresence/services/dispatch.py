import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional

from pymongo.errors import PyMongoError
from tornado.httpclient import AsyncHTTPClient, HTTPClientError, HTTPRequest

from telepresence.repositories import SmartActionRepository

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    action_id: Optional[str]
    url: Optional[str]
    ok: bool
    attempts: int
    status_code: Optional[int] = None
    error: Optional[str] = None


class ActionDispatcher:
    """Fires smart-action webhooks outside the relay's event processing.

    ``schedule`` wraps a dispatch in its own asyncio task, so the caller returns
    immediately. A failed call is retried ``retries`` times with exponential
    backoff, then reported as a failed ``DispatchResult``.
    """

    def __init__(
        self,
        action_repo: SmartActionRepository,
        http_client: Optional[AsyncHTTPClient] = None,
        retries: Optional[int] = None,
        backoff: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.action_repo = action_repo
        self._http_client = http_client
        self.retries = retries if retries is not None else int(os.getenv("WEBHOOK_RETRIES", "1"))
        self.backoff = backoff if backoff is not None else float(os.getenv("WEBHOOK_BACKOFF", "0.5"))
        self.timeout = timeout if timeout is not None else float(os.getenv("WEBHOOK_TIMEOUT", "10"))
        self._tasks: set[asyncio.Task] = set()

    @property
    def http_client(self) -> AsyncHTTPClient:
        if self._http_client is None:
            self._http_client = AsyncHTTPClient()
        return self._http_client

    def schedule(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        # keep a reference until done so the task is not garbage collected mid-flight
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def dispatch(self, action_id: str) -> DispatchResult:
        try:
            action = await self.action_repo.get(action_id)
        except PyMongoError as exc:
            logger.warning("Smart action %s lookup failed: %s", action_id, exc)
            return DispatchResult(action_id=action_id, url=None, ok=False, attempts=0, error="record store unavailable")
        if not action or not action.get("webhook"):
            logger.warning("Smart action %s not found", action_id)
            return DispatchResult(action_id=action_id, url=None, ok=False, attempts=0, error="unknown action")
        return await self._fire(action_id, action["webhook"])

    async def dispatch_url(self, url: str) -> DispatchResult:
        """Trigger by webhook url; only urls configured on a smart action are called."""
        try:
            action = await self.action_repo.find_by_webhook(url)
        except PyMongoError as exc:
            logger.warning("Webhook lookup for %s failed: %s", url, exc)
            return DispatchResult(action_id=None, url=url, ok=False, attempts=0, error="record store unavailable")
        if not action:
            logger.warning("Rejected trigger for unconfigured webhook %s", url)
            return DispatchResult(action_id=None, url=url, ok=False, attempts=0, error="unknown webhook")
        return await self._fire(action.get("uuid"), url)

    async def _fire(self, action_id: Optional[str], url: str) -> DispatchResult:
        attempts = 0
        error: Optional[str] = None
        status_code: Optional[int] = None
        while attempts <= self.retries:
            if attempts:
                await asyncio.sleep(self.backoff * (2 ** (attempts - 1)))
            attempts += 1
            try:
                response = await self.http_client.fetch(
                    HTTPRequest(url, method="GET", request_timeout=self.timeout)
                )
                logger.info("Smart action %s fired (%s)", action_id, response.code)
                return DispatchResult(
                    action_id=action_id, url=url, ok=True, attempts=attempts, status_code=response.code
                )
            except HTTPClientError as exc:
                status_code = exc.code
                error = str(exc)
            except (OSError, asyncio.TimeoutError, ValueError) as exc:
                # ValueError: tornado rejects urls it cannot fetch, e.g. an unsupported scheme
                status_code = None
                error = str(exc) or type(exc).__name__
            logger.warning("Smart action %s attempt %d failed: %s", action_id, attempts, error)
        return DispatchResult(
            action_id=action_id, url=url, ok=False, attempts=attempts, status_code=status_code, error=error
        )
