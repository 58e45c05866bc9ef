"""
Worker scheduler

Runs one sweep over every project at startup, then keeps live subscriptions
open while repeating the sweep on a fixed interval, until asked to stop.
"""

import asyncio
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set
from loguru import logger

from .clients.indexer import IndexerClientFactory
from .clients.marketplace import MarketplaceClient
from .clients.registry import RegistryClient
from .config import Config
from .errors import ClientInitError, RegistryUnavailable
from .fetcher import TokenFetcher
from .metrics import RelayMetrics
from .models import Project
from .pipeline import TokenPipeline
from .publisher import BatchPublisher
from .signer import MessageSigner
from .storage import get_storage_adapter
from .subscriptions import SubscriptionManager
from .tracker import ProcessedTracker


class WorkerState(str, Enum):
    IDLE = "idle"
    INITIAL_SWEEP = "initial_sweep"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class Scheduler:
    """Owns every long-lived resource of the worker and its shutdown"""

    def __init__(
        self,
        config: Config,
        registry: RegistryClient,
        factory: IndexerClientFactory,
        fetcher: TokenFetcher,
        pipeline: TokenPipeline,
        subscriptions: SubscriptionManager,
        metrics: RelayMetrics,
        interval: Optional[float] = None,
    ):
        self.config = config
        self.registry = registry
        self.factory = factory
        self.fetcher = fetcher
        self.pipeline = pipeline
        self.subscriptions = subscriptions
        self.metrics = metrics
        self.interval = interval if interval is not None else config.fetch_interval * 60

        self.state = WorkerState.IDLE
        self.sweeps_completed = 0
        self._stop_event = asyncio.Event()
        self._inflight: Set[asyncio.Task] = set()
        self._periodic_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: Config) -> "Scheduler":
        """Wire up the real clients"""
        metrics = RelayMetrics()
        marketplace = MarketplaceClient(config)
        signer = MessageSigner(config.account_private_key, config.account_address)
        tracker = ProcessedTracker(config.account_address, marketplace, get_storage_adapter(config))
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
        factory = IndexerClientFactory(config)
        return cls(
            config=config,
            registry=RegistryClient(config),
            factory=factory,
            fetcher=TokenFetcher.from_config(config),
            pipeline=pipeline,
            subscriptions=SubscriptionManager(factory, pipeline),
            metrics=metrics,
        )

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def request_stop(self) -> None:
        """Ask the worker to stop; safe to call from a signal handler"""
        if self._stop_event.is_set():
            return
        logger.info("Stop requested")
        self._stop_event.set()
        for task in list(self._inflight):
            task.cancel()

    async def run(self) -> None:
        """Run until request_stop(); RegistryUnavailable at startup is fatal"""
        try:
            projects = await self.registry.fetch_projects()
            logger.info(f"Starting with {len(projects)} projects")

            self.state = WorkerState.INITIAL_SWEEP
            await self.sweep(projects)
            if self.stop_requested:
                return

            self.state = WorkerState.RUNNING
            subscribed = await self.subscriptions.subscribe_all(projects)
            live = ", ".join(self.subscriptions.active_projects)
            logger.info(f"Subscribed to {subscribed}/{len(projects)} projects: {live}")
            self._periodic_task = asyncio.create_task(self._periodic_loop(), name="periodic-sweep")
            await self._stop_event.wait()
        finally:
            await self.shutdown()

    async def run_once(self, project_ids: Optional[Sequence[str]] = None) -> Dict[str, bool]:
        """Single sweep over all (or the named) projects, then release everything"""
        try:
            projects = await self.registry.fetch_projects()
            if project_ids:
                wanted = set(project_ids)
                projects = [p for p in projects if p.id in wanted]
            self.state = WorkerState.INITIAL_SWEEP
            return await self.sweep(projects)
        finally:
            await self.shutdown()

    async def sweep(self, projects: List[Project]) -> Dict[str, bool]:
        """Sweep every project concurrently; returns project id -> completed"""
        limit = self.config.project_concurrency
        semaphore = asyncio.Semaphore(limit) if limit > 0 else None

        async def bounded(project: Project) -> bool:
            if semaphore is None:
                return await self._sweep_project(project)
            async with semaphore:
                return await self._sweep_project(project)

        tasks = []
        for project in projects:
            if self.stop_requested:
                break
            task = asyncio.create_task(bounded(project), name=f"sweep:{project.id}")
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            tasks.append((project, task))

        results = await asyncio.gather(*(t for _, t in tasks), return_exceptions=True)

        outcome: Dict[str, bool] = {}
        for (project, _), result in zip(tasks, results):
            if isinstance(result, asyncio.CancelledError):
                outcome[project.id] = False
            elif isinstance(result, BaseException):
                logger.opt(exception=result).error(f"[{project.id}] Sweep crashed: {result}")
                outcome[project.id] = False
            else:
                outcome[project.id] = result

        self.sweeps_completed += 1
        done = sum(1 for ok in outcome.values() if ok)
        processed = await self.pipeline.tracker.processed_count()
        logger.info(
            f"Sweep finished: {done}/{len(projects)} projects, {processed} tokens cached as processed, "
            f"counters {self.metrics.snapshot()}"
        )
        return outcome

    async def _sweep_project(self, project: Project) -> bool:
        if self.stop_requested:
            logger.debug(f"[{project.id}] Not starting, stop requested")
            return False
        try:
            async with self.factory.scoped(project) as client:
                return await self.fetcher.sweep_project(client, project, self.pipeline.process_tokens)
        except ClientInitError as e:
            logger.error(f"[{project.id}] Skipped: {e}")
            return False

    async def periodic_sweep(self) -> None:
        """One scheduled cycle: reload projects, sweep, repair subscriptions"""
        try:
            projects = await self.registry.fetch_projects()
        except RegistryUnavailable as e:
            logger.error(f"Registry unavailable, skipping this cycle: {e}")
            return
        if self.stop_requested:
            return
        await self.sweep(projects)
        if not self.stop_requested:
            repaired = await self.subscriptions.ensure_subscribed(projects)
            if repaired:
                logger.info(f"Resubscribed {repaired} feeds, live: {len(self.subscriptions.active_projects)}")

    async def _periodic_loop(self) -> None:
        while not self.stop_requested:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self.periodic_sweep()
            except Exception as e:
                logger.exception(f"Periodic sweep failed: {e}")

    async def shutdown(self) -> None:
        """Cancel periodic work, in-flight sweeps and subscriptions, close clients"""
        if self.state in (WorkerState.SHUTTING_DOWN, WorkerState.STOPPED):
            return
        self.state = WorkerState.SHUTTING_DOWN
        self._stop_event.set()

        if self._periodic_task is not None:
            self._periodic_task.cancel()
            await asyncio.gather(self._periodic_task, return_exceptions=True)
            self._periodic_task = None

        inflight = list(self._inflight)
        for task in inflight:
            task.cancel()
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)

        await self.subscriptions.cancel_all()
        await self.factory.close_all()
        await self.pipeline.marketplace.close()
        await self.registry.close()

        self.state = WorkerState.STOPPED
        logger.info(f"Stopped after {self.sweeps_completed} sweeps, counters {self.metrics.snapshot()}")
