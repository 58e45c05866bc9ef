"""Live token update feeds, one per project"""

import asyncio
from typing import Dict, List, Optional
from loguru import logger

from .clients.indexer import IndexerClient, IndexerClientFactory, Subscription
from .errors import ClientInitError, RelayError, SubscriptionError
from .models import Project, Token
from .pipeline import TokenPipeline
from .utils import is_ack_sentinel


class _Feed:
    def __init__(self, project: Project, client: IndexerClient, subscription: Subscription):
        self.project = project
        self.client = client
        self.subscription = subscription


class SubscriptionManager:
    """
    Keeps one update feed per project and routes updates into the pipeline.

    A feed that fails is left degraded until ensure_subscribed() runs again,
    which the periodic sweep does every cycle.
    """

    def __init__(self, factory: IndexerClientFactory, pipeline: TokenPipeline):
        self.factory = factory
        self.pipeline = pipeline
        self._feeds: Dict[str, _Feed] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def active_projects(self) -> List[str]:
        return sorted(pid for pid, feed in self._feeds.items() if feed.subscription.active)

    def _handler(self, project: Project):
        async def on_update(token: Token) -> None:
            if is_ack_sentinel(token.contract_address, token.token_id):
                logger.debug(f"[{project.id}] Subscription acknowledged")
                return
            if not token.has_metadata:
                return
            try:
                await self.pipeline.process_tokens(project, [token])
            except RelayError as e:
                logger.warning(f"[{project.id}] Update for {token.token_id} failed: {e}")
            except Exception as e:
                logger.exception(f"[{project.id}] Unexpected error handling update for {token.token_id}: {e}")
        return on_update

    async def subscribe(self, project: Project) -> Optional[Subscription]:
        """Open a dedicated client and feed for project; None if it failed"""
        if self._closed:
            return None
        try:
            client = await self.factory.open_client(project)
        except ClientInitError as e:
            logger.warning(f"[{project.id}] No live updates: {e}")
            return None

        try:
            subscription = await client.on_token_updated(None, None, self._handler(project))
        except SubscriptionError as e:
            logger.warning(f"[{project.id}] Subscription degraded: {e}")
            await self.factory.close_client(client)
            return None

        async with self._lock:
            stale = self._feeds.pop(project.id, None)
            if self._closed:
                stale, orphan = None, _Feed(project, client, subscription)
            else:
                self._feeds[project.id] = _Feed(project, client, subscription)
                orphan = None
        if stale is not None:
            await self._close_feed(stale)
        if orphan is not None:
            await self._close_feed(orphan)
            return None

        logger.info(f"[{project.id}] Subscribed to token updates")
        return subscription

    async def subscribe_all(self, projects: List[Project]) -> int:
        results = await asyncio.gather(*(self.subscribe(p) for p in projects))
        return sum(1 for r in results if r is not None)

    async def ensure_subscribed(self, projects: List[Project]) -> int:
        """Re-open degraded feeds, add new projects, drop vanished ones"""
        wanted = {p.id for p in projects}
        async with self._lock:
            vanished = [f for pid, f in self._feeds.items() if pid not in wanted]
            for feed in vanished:
                self._feeds.pop(feed.project.id, None)
            missing = [
                p for p in projects
                if p.id not in self._feeds or not self._feeds[p.id].subscription.active
            ]
        for feed in vanished:
            await self._close_feed(feed)
        if not missing:
            return 0
        logger.info(f"Re-subscribing {len(missing)} projects")
        return await self.subscribe_all(missing)

    async def _close_feed(self, feed: _Feed) -> None:
        await feed.subscription.cancel()
        await self.factory.close_client(feed.client)

    async def cancel_all(self) -> None:
        """Cancel every feed; no update callback runs after this returns"""
        async with self._lock:
            self._closed = True
            feeds = list(self._feeds.values())
            self._feeds.clear()
        await asyncio.gather(*(self._close_feed(f) for f in feeds))
        if feeds:
            logger.info(f"Cancelled {len(feeds)} subscriptions")
