import asyncio

import pytest

from metadata_relay.errors import RegistryUnavailable
from metadata_relay.models import TokenPage
from metadata_relay.scheduler import Scheduler, WorkerState

from conftest import (
    FakeMarketplace,
    FakeRegistry,
    attributes_json,
    build_scheduler,
    make_config,
    make_project,
    make_token,
    single_page,
)


def _project_page(project_id, attribute_count):
    pairs = [(f"T{i}", str(i)) for i in range(attribute_count)]
    return single_page(
        make_token("0x1", attributes_json(*pairs), project=project_id),
        make_token("0x2", attributes_json(("Only", "one")), project=project_id),
        make_token("0x3", None, project=project_id),
    )


def test_end_to_end_sweep_over_two_projects(config):
    projects = [make_project("p1"), make_project("p2")]
    scripts = {
        "p1": {None: _project_page("p1", 2)},
        "p2": {None: _project_page("p2", 3)},
    }
    marketplace = FakeMarketplace(config)
    scheduler, client_cls = build_scheduler(config, FakeRegistry(projects), scripts, marketplace=marketplace)

    outcome = asyncio.run(scheduler.run_once())

    assert outcome == {"p1": True, "p2": True}
    assert scheduler.metrics.value("tokens_processed") == 4
    # (2 + 1) + (3 + 1) attributes
    assert scheduler.metrics.value("messages_generated") == 7
    assert scheduler.metrics.value("messages_published") == 7
    assert scheduler.metrics.value("integrity_published") == 4
    assert len(marketplace.single) == 4
    assert scheduler.factory.open_count == 0
    assert all(c.closed for c in client_cls.instances)
    assert scheduler.state == WorkerState.STOPPED


def test_run_once_can_select_projects(config):
    projects = [make_project("p1"), make_project("p2")]
    scripts = {"p1": {None: _project_page("p1", 1)}, "p2": {None: _project_page("p2", 1)}}
    scheduler, client_cls = build_scheduler(config, FakeRegistry(projects), scripts)

    outcome = asyncio.run(scheduler.run_once(["p2"]))

    assert outcome == {"p2": True}
    assert [c.project.id for c in client_cls.instances] == ["p2"]


def test_failing_project_does_not_stop_others(config):
    projects = [make_project("bad", url="not a url"), make_project("broken"), make_project("p1")]
    scripts = {
        "broken": {None: RuntimeError("indexer down")},
        "p1": {None: _project_page("p1", 1)},
    }
    scheduler, _ = build_scheduler(config, FakeRegistry(projects), scripts)

    outcome = asyncio.run(scheduler.run_once())

    assert outcome == {"bad": False, "broken": False, "p1": True}
    assert scheduler.metrics.value("tokens_processed", "p1") == 2


def test_stop_mid_sweep_starts_no_new_project():
    config = make_config(project_concurrency=1)
    projects = [make_project("p1"), make_project("p2"), make_project("p3")]

    async def run():
        entered = asyncio.Event()
        gate = asyncio.Event()

        async def blocking(limit):
            entered.set()
            await gate.wait()
            return _project_page("p1", 1)

        scripts = {
            "p1": {None: blocking},
            "p2": {None: _project_page("p2", 1)},
            "p3": {None: _project_page("p3", 1)},
        }
        scheduler, client_cls = build_scheduler(config, FakeRegistry(projects), scripts)
        sweep = asyncio.create_task(scheduler.sweep(projects))
        await entered.wait()
        scheduler.request_stop()
        outcome = await sweep
        return scheduler, client_cls, outcome

    scheduler, client_cls, outcome = asyncio.run(run())

    assert outcome == {"p1": False, "p2": False, "p3": False}
    assert [c.project.id for c in client_cls.instances] == ["p1"]
    assert client_cls.instances[0].closed
    assert scheduler.factory.open_count == 0
    assert scheduler.metrics.value("tokens_processed") == 0


def test_periodic_sweep_stops_firing_after_stop(config):
    registry = FakeRegistry([make_project("p1")])
    scripts = {"p1": {None: _project_page("p1", 1)}}

    async def run():
        scheduler, _ = build_scheduler(config, registry, scripts, interval=0.01)
        task = asyncio.create_task(scheduler.run())
        for _ in range(500):
            if scheduler.sweeps_completed >= 3:
                break
            await asyncio.sleep(0.01)
        scheduler.request_stop()
        await task
        sweeps, calls = scheduler.sweeps_completed, registry.calls
        await asyncio.sleep(0.1)
        return scheduler, sweeps, calls

    scheduler, sweeps, calls = asyncio.run(run())

    assert sweeps >= 3
    assert scheduler.sweeps_completed == sweeps
    assert registry.calls == calls
    assert scheduler.state == WorkerState.STOPPED
    assert scheduler.subscriptions.active_projects == []
    assert scheduler.factory.open_count == 0
    assert registry.closed
    # later sweeps find the tokens already processed
    assert scheduler.metrics.value("tokens_processed") == 2
    assert scheduler.metrics.value("tokens_skipped") >= 2
    # integrity is republished on every sweep, attributes are not
    assert scheduler.metrics.value("integrity_published") == (
        scheduler.metrics.value("tokens_processed") + scheduler.metrics.value("tokens_skipped")
    )


def test_registry_failure_at_startup_is_fatal(config, registry_down):
    scheduler, _ = build_scheduler(config, registry_down, {})

    with pytest.raises(RegistryUnavailable):
        asyncio.run(scheduler.run())
    assert scheduler.state == WorkerState.STOPPED


def test_registry_failure_later_skips_the_cycle(config):
    registry = FakeRegistry([make_project("p1")])
    scheduler, _ = build_scheduler(config, registry, {"p1": {None: TokenPage()}})

    async def run():
        registry.error = RegistryUnavailable("down")
        await scheduler.periodic_sweep()
        await scheduler.shutdown()

    asyncio.run(run())

    assert scheduler.sweeps_completed == 0


def test_from_config_wires_real_components(config):
    scheduler = Scheduler.from_config(config)

    assert scheduler.state == WorkerState.IDLE
    assert scheduler.interval == config.fetch_interval * 60
    assert scheduler.fetcher.batch_size == config.token_fetch_batch_size
