"""Project registry reader"""

import asyncio
import json
from typing import Any, Dict, List, Optional
import aiohttp
from loguru import logger

from .base import BaseClient
from ..config import Config
from ..errors import FetchError, RegistryUnavailable
from ..models import Project

EDITION_MODEL = "ARCADE-Edition"


class RegistryClient(BaseClient):
    """Reads published editions from the chain's registry indexer"""

    def __init__(self, config: Config):
        registry = config.registry
        super().__init__(
            base_url=registry.registry_url,
            timeout=config.timeout,
            max_response_bytes=config.max_response_bytes,
        )
        self.config = config
        self.world_address = registry.registry_world_address

    async def list_projects(self) -> List[Project]:
        """Every published edition, ignored ones flagged but included"""
        try:
            data = await self._request(
                "POST",
                "/entities",
                json_data={"models": [EDITION_MODEL], "world_address": self.world_address},
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, FetchError) as e:
            raise RegistryUnavailable(f"Registry {self.base_url} unreachable: {e}")

        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise RegistryUnavailable(f"Registry {self.base_url} returned no items")

        ignored = set(self.config.effective_ignored_projects)
        projects: List[Project] = []
        seen = set()
        for item in items:
            project = self._parse_edition(item, ignored)
            if project is None or project.id in seen:
                continue
            seen.add(project.id)
            projects.append(project)

        logger.debug(f"Registry returned {len(projects)} editions")
        return projects

    async def fetch_projects(self) -> List[Project]:
        """Published editions minus the ignore list"""
        projects = await self.list_projects()
        active = [p for p in projects if not p.ignored]
        skipped = len(projects) - len(active)
        if skipped:
            logger.info(f"Skipping {skipped} ignored projects")
        return active

    def _parse_edition(self, item: Any, ignored: set) -> Optional[Project]:
        """Turn one registry entity into a Project, None if unusable"""
        if not isinstance(item, dict):
            return None
        edition: Dict[str, Any] = item.get(EDITION_MODEL, item)
        if not isinstance(edition, dict):
            return None
        if not edition.get("published", True):
            return None

        config = edition.get("config")
        if isinstance(config, str):
            try:
                config = json.loads(config)
            except ValueError:
                logger.debug(f"Edition {edition.get('id')} has an unreadable config")
                return None
        if not isinstance(config, dict):
            return None

        project_id = config.get("project")
        if not project_id or not isinstance(project_id, str):
            return None

        return Project(
            id=project_id,
            indexer_url=self.config.indexer_url(project_id),
            world_address=edition.get("world_address"),
            ignored=project_id in ignored,
            published=True,
        )
