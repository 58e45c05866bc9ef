import asyncio
import json

import aiohttp
import pytest

from metadata_relay.clients.registry import RegistryClient
from metadata_relay.errors import RegistryUnavailable

from conftest import make_config


def _edition(project, published=True, as_string=False, world="0xabc"):
    config = {"project": project, "name": project.title()}
    return {"ARCADE-Edition": {
        "id": 1,
        "world_address": world,
        "published": published,
        "config": json.dumps(config) if as_string else config,
    }}


def _registry(monkeypatch, response, **config_overrides):
    client = RegistryClient(make_config(**config_overrides))

    async def fake_request(method, endpoint, params=None, json_data=None):
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(client, "_request", fake_request)
    return client


def test_default_ignore_list_applies_when_unset(monkeypatch):
    items = [_edition("loot-survivor"), _edition("jokersofneon"), _edition("zkube-budo-mainnet", as_string=True)]
    client = _registry(monkeypatch, {"items": items})

    projects = asyncio.run(client.fetch_projects())

    assert [p.id for p in projects] == ["loot-survivor"]
    assert projects[0].indexer_url == "https://indexer.example.com/x/loot-survivor/torii"
    assert projects[0].world_address == "0xabc"


def test_configured_ignore_list_replaces_default(monkeypatch):
    items = [_edition("loot-survivor"), _edition("jokersofneon")]
    client = _registry(monkeypatch, {"items": items}, ignored_projects=["loot-survivor"])

    projects = asyncio.run(client.fetch_projects())

    assert [p.id for p in projects] == ["jokersofneon"]


def test_list_projects_flags_ignored_and_drops_unusable(monkeypatch):
    items = [
        _edition("a"),
        _edition("a"),
        _edition("hidden", published=False),
        {"ARCADE-Edition": {"config": "{broken"}},
        {"ARCADE-Edition": {"config": {}}},
        "garbage",
        _edition("jokersofneon"),
    ]
    client = _registry(monkeypatch, {"items": items})

    projects = asyncio.run(client.list_projects())

    assert [(p.id, p.ignored) for p in projects] == [("a", False), ("jokersofneon", True)]


def test_unreachable_registry(monkeypatch):
    client = _registry(monkeypatch, aiohttp.ClientConnectionError("refused"))

    with pytest.raises(RegistryUnavailable):
        asyncio.run(client.fetch_projects())


def test_registry_without_items(monkeypatch):
    client = _registry(monkeypatch, {"data": []})

    with pytest.raises(RegistryUnavailable):
        asyncio.run(client.fetch_projects())


def test_registry_follows_chain():
    assert RegistryClient(make_config()).base_url == "https://api.cartridge.gg/x/arcade-mainnet/torii"
    sepolia = RegistryClient(make_config(chain_id="SN_SEPOLIA"))
    assert sepolia.base_url == "https://api.cartridge.gg/x/arcade-sepolia/torii"
    custom = RegistryClient(make_config(registry_url="http://localhost:8080"))
    assert custom.base_url == "http://localhost:8080"
