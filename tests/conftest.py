import asyncio
import inspect
import json
from typing import Dict, List, Optional

import pytest

from metadata_relay.clients.indexer import IndexerClientFactory, Subscription
from metadata_relay.clients.marketplace import MarketplaceClient
from metadata_relay.config import Config
from metadata_relay.errors import RegistryUnavailable
from metadata_relay.fetcher import TokenFetcher
from metadata_relay.metrics import RelayMetrics
from metadata_relay.models import Project, PublishResult, Token, TokenPage
from metadata_relay.pipeline import TokenPipeline
from metadata_relay.publisher import BatchPublisher
from metadata_relay.scheduler import Scheduler
from metadata_relay.signer import MessageSigner
from metadata_relay.storage import MemoryStorage
from metadata_relay.subscriptions import SubscriptionManager
from metadata_relay.tracker import ProcessedTracker
from metadata_relay.utils import normalize_felt

IDENTITY = "0x1234"
PRIVATE_KEY = "0x" + "11" * 32


def make_config(**overrides) -> Config:
    values = dict(
        account_address=IDENTITY,
        account_private_key=PRIVATE_KEY,
        marketplace_address="0xabc",
        marketplace_url="https://marketplace.example.com/torii",
        indexer_url_template="https://indexer.example.com/x/{project}/torii",
        retry_delay=0,
        retry_attempts=2,
        publish_retry_attempts=0,
        publish_retry_delay=0,
        message_batch_size=500,
    )
    values.update(overrides)
    return Config(**values)


def make_project(project_id: str, url: Optional[str] = None) -> Project:
    return Project(
        id=project_id,
        indexer_url=url or f"https://indexer.example.com/x/{project_id}/torii",
        world_address="0x1",
    )


def attributes_json(*pairs) -> str:
    return json.dumps({
        "name": "token",
        "attributes": [{"trait_type": t, "value": v} for t, v in pairs],
    })


def make_token(token_id: str, metadata: Optional[str] = None, contract: str = "0x123", project: str = None) -> Token:
    return Token(contract_address=contract, token_id=token_id, metadata=metadata, project=project)


class FakeIndexerClient:
    """
    Scripted indexer.

    scripts maps project id -> cursor -> page, where a page is a TokenPage,
    an exception instance, or a callable taking the limit.
    """

    scripts: Dict[str, Dict[Optional[str], object]] = {}
    instances: List["FakeIndexerClient"] = []

    def __init__(self, project: Project, timeout: int = 30, max_response_bytes: int = 0):
        self.project = project
        self.calls: List[tuple] = []
        self.opened = False
        self.closed = False
        self.queue: Optional[asyncio.Queue] = None
        self.subscription: Optional[Subscription] = None
        self.instances.append(self)

    async def open(self):
        self.opened = True

    async def close(self):
        self.closed = True

    async def get_tokens(self, contract_addresses=None, token_ids=None, limit=5000, cursor=None):
        self.calls.append((cursor, limit))
        page = self.scripts[self.project.id][cursor]
        if callable(page):
            page = page(limit)
            if inspect.isawaitable(page):
                page = await page
        if isinstance(page, BaseException):
            raise page
        return page

    async def on_token_updated(self, contract_addresses, token_ids, callback):
        self.queue = asyncio.Queue()
        subscription = Subscription(self.project.id)

        async def reader():
            while True:
                token = await self.queue.get()
                try:
                    if not subscription.cancelled:
                        await callback(token)
                finally:
                    self.queue.task_done()

        subscription.attach(asyncio.create_task(reader()))
        self.subscription = subscription
        return subscription


def scripted_client_cls(scripts):
    return type("ScriptedIndexerClient", (FakeIndexerClient,), {"scripts": scripts, "instances": []})


class FakeMarketplace(MarketplaceClient):
    """Marketplace without a network; records every submission"""

    def __init__(self, config: Config, existing=(), reject_batches=(), fail_integrity_for=()):
        super().__init__(config)
        self.existing = {(normalize_felt(c), normalize_felt(t)) for c, t in existing}
        self.reject_batches = set(reject_batches)
        self.fail_integrity_for = {normalize_felt(t) for t in fail_integrity_for}
        self.lookups: List[tuple] = []
        self.single: list = []
        self.batches: List[list] = []
        self.closed = False

    async def query_existing_attribute(self, identity, collection, token_id):
        self.lookups.append((collection, token_id))
        return (normalize_felt(collection), normalize_felt(token_id)) in self.existing

    async def send_signed_message(self, message):
        data = json.loads(message.message)
        if normalize_felt(data["message"]["token_id"]) in self.fail_integrity_for:
            return PublishResult(ok=False, error="integrity rejected")
        self.single.append(message)
        return PublishResult(ok=True, accepted=1)

    async def send_signed_message_batch(self, messages):
        index = len(self.batches)
        self.batches.append(list(messages))
        if index in self.reject_batches:
            return PublishResult(ok=False, error="batch rejected")
        return PublishResult(ok=True, accepted=len(messages))

    async def close(self):
        self.closed = True

    @property
    def publish_calls(self) -> int:
        return len(self.single) + len(self.batches)


class FakeRegistry:
    def __init__(self, projects=None, error: Exception = None):
        self.projects = projects or []
        self.error = error
        self.calls = 0
        self.closed = False

    async def fetch_projects(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.projects)

    async def close(self):
        self.closed = True


def build_pipeline(config: Config, marketplace: FakeMarketplace):
    metrics = RelayMetrics()
    signer = MessageSigner(config.account_private_key, config.account_address)
    tracker = ProcessedTracker(config.account_address, marketplace, MemoryStorage(config))
    publisher = BatchPublisher(
        marketplace,
        config.message_batch_size,
        metrics,
        retry_attempts=config.publish_retry_attempts,
        retry_delay=config.publish_retry_delay,
    )
    pipeline = TokenPipeline(
        identity=config.account_address,
        marketplace=marketplace,
        signer=signer,
        tracker=tracker,
        publisher=publisher,
        metrics=metrics,
        concurrency=config.processing_concurrency,
    )
    return pipeline, metrics


def build_scheduler(config: Config, registry, scripts, marketplace=None, interval=None):
    marketplace = marketplace or FakeMarketplace(config)
    pipeline, metrics = build_pipeline(config, marketplace)
    client_cls = scripted_client_cls(scripts)
    factory = IndexerClientFactory(config, client_cls=client_cls)
    scheduler = Scheduler(
        config=config,
        registry=registry,
        factory=factory,
        fetcher=TokenFetcher.from_config(config),
        pipeline=pipeline,
        subscriptions=SubscriptionManager(factory, pipeline),
        metrics=metrics,
        interval=interval,
    )
    return scheduler, client_cls


def single_page(*tokens) -> TokenPage:
    return TokenPage(tokens=list(tokens), next_cursor=None, limit=5000)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def registry_down():
    return FakeRegistry(error=RegistryUnavailable("down"))
