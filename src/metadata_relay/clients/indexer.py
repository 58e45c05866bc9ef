"""Project indexer client and the factory that owns client lifetimes"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, List, Optional, Set
import aiohttp
from loguru import logger

from .base import BaseClient, classify_error_text
from ..config import Config
from ..errors import ClientInitError, DecodeError, SubscriptionError
from ..models import Project, Token, TokenPage
from ..utils import validate_url

TokenCallback = Callable[[Token], Awaitable[None]]


class Subscription:
    """A live token update feed; cancel() stops it for good"""

    def __init__(self, name: str):
        self.name = name
        self.error: Optional[BaseException] = None
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        """False once cancelled or once the feed died"""
        return (
            not self._cancelled
            and self._task is not None
            and not self._task.done()
        )

    async def cancel(self) -> None:
        """Stop the feed and wait until no callback can run any more"""
        self._cancelled = True
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


class IndexerClient(BaseClient):
    """Client for one project's indexer"""

    def __init__(
        self,
        project: Project,
        timeout: int = 30,
        max_response_bytes: int = 16 * 1024 * 1024,
    ):
        super().__init__(
            base_url=project.indexer_url,
            timeout=timeout,
            max_response_bytes=max_response_bytes,
        )
        self.project = project

    async def get_tokens(
        self,
        contract_addresses: Optional[List[str]] = None,
        token_ids: Optional[List[str]] = None,
        limit: int = 5000,
        cursor: Optional[str] = None,
    ) -> TokenPage:
        """One page of tokens starting at cursor"""
        payload = {
            "contract_addresses": contract_addresses or [],
            "token_ids": token_ids or [],
            "limit": limit,
            "cursor": cursor,
        }
        if self.project.world_address:
            payload["world_address"] = self.project.world_address

        data = await self._request("POST", "/tokens", json_data=payload)
        if not isinstance(data, dict) or not isinstance(data.get("items", []), list):
            raise DecodeError("Token page has an unexpected shape", project=self.project.id)

        tokens = []
        for item in data.get("items", []):
            token = self._parse_token(item)
            if token is not None:
                tokens.append(token)
        return TokenPage(tokens=tokens, next_cursor=data.get("next_cursor") or None, limit=limit)

    def _parse_token(self, item: Any) -> Optional[Token]:
        if not isinstance(item, dict):
            return None
        try:
            return Token(**{**item, "project": self.project.id})
        except (TypeError, ValueError) as e:
            logger.debug(f"[{self.project.id}] Dropping malformed token: {e}")
            return None

    def updates_url(self) -> str:
        url = self.url("/tokens/updates")
        if url.startswith("https://"):
            return "wss://" + url[len("https://"):]
        if url.startswith("http://"):
            return "ws://" + url[len("http://"):]
        return url

    async def on_token_updated(
        self,
        contract_addresses: Optional[List[str]],
        token_ids: Optional[List[str]],
        callback: TokenCallback,
    ) -> Subscription:
        """Open the update feed and feed every update to callback"""
        if not self.is_open:
            await self.open()
        ws = None
        try:
            ws = await self._session.ws_connect(self.updates_url(), heartbeat=30)
            await ws.send_json({
                "contract_addresses": contract_addresses or [],
                "token_ids": token_ids or [],
            })
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            if ws is not None:
                await ws.close()
            raise SubscriptionError(f"Cannot subscribe: {e}", project=self.project.id) from e

        subscription = Subscription(self.project.id)
        task = asyncio.create_task(
            self._read_updates(ws, subscription, callback),
            name=f"updates:{self.project.id}",
        )
        subscription.attach(task)
        return subscription

    async def _read_updates(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        subscription: Subscription,
        callback: TokenCallback,
    ) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.ERROR:
                    subscription.error = ws.exception()
                    logger.warning(f"[{self.project.id}] Update feed error: {subscription.error}")
                    break
                if msg.type != aiohttp.WSMsgType.TEXT:
                    continue
                try:
                    data = json.loads(msg.data)
                except ValueError:
                    known = classify_error_text(msg.data)
                    logger.warning(f"[{self.project.id}] Unreadable update: {known or msg.data[:200]}")
                    continue
                token = self._parse_token(data)
                if token is None or subscription.cancelled:
                    continue
                await callback(token)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            subscription.error = e
            logger.warning(f"[{self.project.id}] Update feed failed: {e}")
        finally:
            await ws.close()
        if not subscription.cancelled:
            logger.warning(f"[{self.project.id}] Update feed closed by the indexer")


class IndexerClientFactory:
    """Opens one client per project and makes sure every one gets closed"""

    def __init__(self, config: Config, client_cls=IndexerClient):
        self.config = config
        self.client_cls = client_cls
        self._clients: Set[IndexerClient] = set()
        self._lock = asyncio.Lock()

    @property
    def open_count(self) -> int:
        return len(self._clients)

    async def open_client(self, project: Project) -> IndexerClient:
        """Open a client for project, ClientInitError on failure"""
        if not validate_url(project.indexer_url):
            raise ClientInitError(f"Invalid indexer URL {project.indexer_url!r}", project=project.id)
        try:
            client = self.client_cls(
                project,
                timeout=self.config.timeout,
                max_response_bytes=self.config.max_response_bytes,
            )
            await client.open()
        except Exception as e:
            raise ClientInitError(f"Cannot open indexer client: {e}", project=project.id) from e

        async with self._lock:
            self._clients.add(client)
        logger.debug(f"[{project.id}] Indexer client opened")
        return client

    async def close_client(self, client: IndexerClient) -> None:
        """Close client, safe to call more than once"""
        async with self._lock:
            self._clients.discard(client)
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"[{client.project.id}] Error closing indexer client: {e}")

    @asynccontextmanager
    async def scoped(self, project: Project):
        """Client that is closed on every exit path, cancellation included"""
        client = await self.open_client(project)
        try:
            yield client
        finally:
            await asyncio.shield(self.close_client(client))

    async def close_all(self) -> None:
        async with self._lock:
            clients = list(self._clients)
            self._clients.clear()
        for client in clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"[{client.project.id}] Error closing indexer client: {e}")
        if clients:
            logger.info(f"Closed {len(clients)} indexer clients")
