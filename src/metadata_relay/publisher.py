"""Batch publishing of signed messages"""

import asyncio
from typing import List, Set, Tuple
import aiohttp
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .clients.marketplace import MarketplaceClient
from .errors import FetchError, PublishError
from .metrics import RelayMetrics
from .models import SignedMessage


class BatchPublisher:
    """Sends signed messages in fixed-size, all-or-nothing batches"""

    def __init__(
        self,
        marketplace: MarketplaceClient,
        batch_size: int,
        metrics: RelayMetrics,
        retry_attempts: int = 0,
        retry_delay: float = 0.0,
    ):
        self.marketplace = marketplace
        self.batch_size = batch_size
        self.metrics = metrics
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    async def _send(self, project: str, messages: List[SignedMessage]) -> None:
        self.metrics.message_batches.labels(project=project).inc()
        try:
            result = await asyncio.shield(self.marketplace.send_signed_message_batch(messages))
        except (aiohttp.ClientError, asyncio.TimeoutError, FetchError) as e:
            raise PublishError(f"Batch of {len(messages)} not delivered: {e}", project=project) from e
        if not result.ok:
            raise PublishError(f"Batch of {len(messages)} rejected: {result.error}", project=project)

    async def publish_batch(self, project: str, messages: List[SignedMessage]) -> int:
        """
        Send one batch, resending it the configured number of times.

        A send that has started is shielded from cancellation so it completes
        or fails on its own. Raises PublishError once every attempt was
        rejected or lost.
        """
        if not messages:
            return 0
        if len(messages) > self.batch_size:
            raise ValueError(f"Batch of {len(messages)} exceeds {self.batch_size}")

        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                f"[{project}] Batch attempt {retry_state.attempt_number} failed: "
                f"{retry_state.outcome.exception()}; retrying in {self.retry_delay}s"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts + 1),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type(PublishError),
            before_sleep=log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._send(project, messages)
        except PublishError:
            self.metrics.publish_failures.labels(project=project).inc()
            raise

        self.metrics.messages_published.labels(project=project).inc(len(messages))
        return len(messages)

    async def publish(self, project: str, entries: List[Tuple[str, SignedMessage]]) -> Set[str]:
        """
        Publish (token_key, message) entries in encounter order.

        Full groups are flushed as they fill up, the remainder at the end.
        Returns the keys of tokens that had a message in a failed batch.
        """
        failed: Set[str] = set()
        group: List[Tuple[str, SignedMessage]] = []

        async def flush():
            batch = list(group)
            group.clear()
            try:
                await self.publish_batch(project, [message for _, message in batch])
            except PublishError as e:
                logger.error(f"[{project}] {e}")
                failed.update(key for key, _ in batch)

        for entry in entries:
            group.append(entry)
            if len(group) >= self.batch_size:
                await flush()
        if group:
            await flush()
        return failed
