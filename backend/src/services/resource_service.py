"""
Resource service: the machine and provider directory.

This service handles:
- Listing machines and providers for filter dropdowns
- Excluding inactive resources from listings and default availability checks
"""

import logging
from typing import List, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Resource
from models.resource import RESOURCE_KIND_MACHINE, RESOURCE_KIND_PROVIDER
from shared_types.scheduling import ResourceInfo, ResourceListing

logger = logging.getLogger(__name__)


class ResourceDirectory(Protocol):
    async def get_resources(self) -> ResourceListing:
        ...


class ResourceService:
    """Service for machine and provider lookups."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_resources(self, include_inactive: bool = False) -> ResourceListing:
        """
        List machines and providers, ordered by name.

        Args:
            include_inactive: Also list retired resources (admin views only)

        Returns:
            ResourceListing with machines and providers
        """
        query = select(Resource).order_by(Resource.name, Resource.id)
        if not include_inactive:
            query = query.where(Resource.is_active == True)  # noqa: E712
        result = await self.db.execute(query)
        resources = list(result.scalars().all())

        machines = self._to_infos(r for r in resources if r.kind == RESOURCE_KIND_MACHINE)
        providers = self._to_infos(r for r in resources if r.kind == RESOURCE_KIND_PROVIDER)
        logger.debug(f"Loaded {len(machines)} machine(s) and {len(providers)} provider(s)")
        return ResourceListing(machines=tuple(machines), providers=tuple(providers))

    async def is_active_provider(self, provider_id: int) -> bool:
        resource = await self.db.get(Resource, provider_id)
        return (
            resource is not None
            and resource.kind == RESOURCE_KIND_PROVIDER
            and resource.is_active
        )

    @staticmethod
    def _to_infos(resources) -> List[ResourceInfo]:
        return [
            ResourceInfo(
                id=resource.id,
                name=resource.name,
                is_active=resource.is_active,
                is_overlappable=resource.is_overlappable,
            )
            for resource in resources
        ]
