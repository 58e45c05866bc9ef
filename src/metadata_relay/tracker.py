"""Dedup of tokens whose attributes the marketplace already holds"""

import asyncio
import aiohttp
from loguru import logger

from .clients.marketplace import MarketplaceClient
from .errors import FetchError, ProcessingError
from .models import Token
from .storage import StorageAdapter
from .utils import token_key


class ProcessedTracker:
    """
    Local cache in front of the marketplace lookup.

    Only positives are cached, and only for this process. The marketplace
    stays the source of truth across restarts.
    """

    def __init__(self, identity: str, marketplace: MarketplaceClient, storage: StorageAdapter):
        self.identity = identity
        self.marketplace = marketplace
        self.storage = storage

    def key(self, token: Token) -> str:
        return token_key(self.identity, token.contract_address, token.token_id)

    async def is_processed(self, token: Token) -> bool:
        try:
            key = self.key(token)
        except ValueError as e:
            raise ProcessingError(f"Bad token identifiers: {e}", project=token.project)

        if await self.storage.contains(key):
            return True

        try:
            exists = await self.marketplace.query_existing_attribute(
                self.identity, token.contract_address, token.token_id
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, FetchError) as e:
            raise ProcessingError(
                f"Marketplace lookup failed: {e}", project=token.project, token_key=key
            ) from e

        if exists:
            logger.debug(f"[{token.project}] {key} already on the marketplace")
            await self.storage.add(key)
        return exists

    async def mark_processed(self, token: Token) -> None:
        await self.storage.add(self.key(token))

    async def processed_count(self) -> int:
        """Tokens currently known to be processed"""
        return await self.storage.size()
