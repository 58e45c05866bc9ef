"""Clients for the registry, project indexers and the marketplace"""

from .base import BaseClient
from .indexer import IndexerClient, IndexerClientFactory, Subscription
from .marketplace import MarketplaceClient
from .registry import RegistryClient

__all__ = [
    "BaseClient",
    "IndexerClient",
    "IndexerClientFactory",
    "MarketplaceClient",
    "RegistryClient",
    "Subscription",
]
