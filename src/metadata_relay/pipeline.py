"""Per-token processing: integrity, dedup, attributes, signing, publishing"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple
from loguru import logger

from .clients.marketplace import ATTRIBUTE_MODEL, METADATA_ATTRIBUTE_SCHEMA, MarketplaceClient
from .errors import ProcessingError
from .integrity import IntegrityPublisher
from .metrics import RelayMetrics
from .models import Project, SignedMessage, Token
from .publisher import BatchPublisher
from .signer import MessageSigner
from .tracker import ProcessedTracker
from .transformer import MetadataTransformer


@dataclass
class TokenOutcome:
    token: Token
    messages: List[SignedMessage] = field(default_factory=list)
    skipped: bool = False
    error: Optional[Exception] = None


@dataclass
class PageResult:
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    messages: int = 0
    published_tokens: int = 0
    failed_keys: Set[str] = field(default_factory=set)


class TokenPipeline:
    """Takes tokens from either a sweep or a live feed to the marketplace"""

    def __init__(
        self,
        identity: str,
        marketplace: MarketplaceClient,
        signer: MessageSigner,
        tracker: ProcessedTracker,
        publisher: BatchPublisher,
        metrics: RelayMetrics,
        concurrency: int = 10,
        transformer: MetadataTransformer = None,
    ):
        self.identity = identity
        self.marketplace = marketplace
        self.signer = signer
        self.tracker = tracker
        self.publisher = publisher
        self.metrics = metrics
        self.transformer = transformer or MetadataTransformer()
        self.integrity = IntegrityPublisher(identity, marketplace, signer)
        self.concurrency = concurrency

    async def process_token(self, project: Project, token: Token) -> TokenOutcome:
        """
        Publish the integrity hash, then build signed attribute messages.

        The integrity message goes out for every token and its failure aborts
        the token. Only the attribute messages are skipped for tokens the
        marketplace already has.
        """
        await self.integrity.publish(token)
        self.metrics.integrity_published.labels(project=project.id).inc()

        if await self.tracker.is_processed(token):
            self.metrics.tokens_skipped.labels(project=project.id).inc()
            return TokenOutcome(token=token, skipped=True)

        signed = []
        for message in self.transformer.to_messages(token, self.identity):
            try:
                typed_data = self.marketplace.generate_typed_data(
                    ATTRIBUTE_MODEL, message.model_dump(), METADATA_ATTRIBUTE_SCHEMA
                )
            except ValueError as e:
                raise ProcessingError(f"Cannot build attribute message: {e}", project=project.id) from e
            signed.append(await self.signer.sign(typed_data))

        self.metrics.messages_generated.labels(project=project.id).inc(len(signed))
        return TokenOutcome(token=token, messages=signed)

    async def _guarded(self, semaphore: asyncio.Semaphore, project: Project, token: Token) -> TokenOutcome:
        async with semaphore:
            try:
                return await self.process_token(project, token)
            except ProcessingError as e:
                return TokenOutcome(token=token, error=e)

    async def process_tokens(self, project: Project, tokens: List[Token]) -> PageResult:
        """
        Process a page of tokens with bounded parallelism, then publish.

        A failing token is logged and left out; the rest of the page goes on.
        Tokens are marked processed only once all their messages were accepted.
        """
        result = PageResult()
        if not tokens:
            return result

        semaphore = asyncio.Semaphore(self.concurrency)
        outcomes = await asyncio.gather(
            *(self._guarded(semaphore, project, token) for token in tokens)
        )

        entries: List[Tuple[str, SignedMessage]] = []
        to_mark: List[Tuple[str, Token]] = []
        for outcome in outcomes:
            if outcome.error is not None:
                result.failed += 1
                self.metrics.token_failures.labels(project=project.id).inc()
                logger.warning(f"[{project.id}] Skipping token {outcome.token.token_id}: {outcome.error}")
                continue
            if outcome.skipped:
                result.skipped += 1
                continue
            result.processed += 1
            self.metrics.tokens_processed.labels(project=project.id).inc()
            key = self.tracker.key(outcome.token)
            entries.extend((key, message) for message in outcome.messages)
            to_mark.append((key, outcome.token))

        result.messages = len(entries)
        result.failed_keys = await self.publisher.publish(project.id, entries)

        for key, token in to_mark:
            if key in result.failed_keys:
                continue
            await self.tracker.mark_processed(token)
            result.published_tokens += 1

        logger.debug(
            f"[{project.id}] Page done: {result.processed} processed, {result.skipped} skipped, "
            f"{result.failed} failed, {result.messages} messages"
        )
        return result
