"""
Read filters for world-scoped resources.

build_read_filter turns a caller and a request context into a
ReadPredicate. The same algorithm serves entities and locations.

Architects see everything in their world, except while previewing a
character: passing a character_id switches the architect to that
character's restricted view.
"""

import logging
from collections.abc import Iterable
from typing import Optional

from .models import AccessType, ResourceKind, ScopeType, User
from .predicates import KindMatch, ReadPredicate, ScopeMatch, WorldMatch, all_of, any_of
from .repository import AccessRepository, ResourceRecord
from .scopes import ScopeResolver

logger = logging.getLogger("worldwarden")


class AccessFilterBuilder:
    """Builds and applies read predicates."""

    def __init__(self, repository: AccessRepository, resolver: ScopeResolver) -> None:
        self.repository = repository
        self.resolver = resolver

    def build_read_filter(
        self,
        user: User,
        world_id: str,
        campaign_id: Optional[str] = None,
        character_id: Optional[str] = None,
        kind: Optional[ResourceKind] = None,
    ) -> ReadPredicate:
        """
        Build the read predicate for a caller in a request context.

        Args:
            user: The caller
            world_id: World the resources belong to
            campaign_id: Campaign context, adds CAMPAIGN READ grants for it
            character_id: Character context, adds CHARACTER READ grants for it
                and disables the architect bypass
            kind: Optionally narrow to entities or locations

        Returns:
            WorldMatch alone for an architect without a character, otherwise
            WorldMatch AND (GLOBAL READ OR CAMPAIGN READ? OR CHARACTER READ?)
        """
        base: list[ReadPredicate] = [WorldMatch(world_id=world_id)]
        if kind is not None:
            base.append(KindMatch(kind=kind))

        if self.resolver.is_architect(user.id, world_id) and not character_id:
            return base[0] if len(base) == 1 else all_of(*base)

        scopes: list[ReadPredicate] = [
            ScopeMatch(access_type=AccessType.READ, scope_type=ScopeType.GLOBAL)
        ]
        if campaign_id:
            scopes.append(ScopeMatch(
                access_type=AccessType.READ,
                scope_type=ScopeType.CAMPAIGN,
                scope_id=campaign_id,
            ))
        if character_id:
            scopes.append(ScopeMatch(
                access_type=AccessType.READ,
                scope_type=ScopeType.CHARACTER,
                scope_id=character_id,
            ))
        return all_of(*base, any_of(*scopes))

    def build_entity_filter(self, user: User, world_id: str, campaign_id: Optional[str] = None,
                            character_id: Optional[str] = None) -> ReadPredicate:
        return self.build_read_filter(user, world_id, campaign_id, character_id, ResourceKind.ENTITY)

    def build_location_filter(self, user: User, world_id: str, campaign_id: Optional[str] = None,
                              character_id: Optional[str] = None) -> ReadPredicate:
        return self.build_read_filter(user, world_id, campaign_id, character_id, ResourceKind.LOCATION)

    def can_read(
        self,
        user: User,
        resource: ResourceRecord,
        campaign_id: Optional[str] = None,
        character_id: Optional[str] = None,
    ) -> bool:
        """Evaluate the caller's read predicate against one resource."""
        predicate = self.build_read_filter(user, resource.world_id, campaign_id, character_id)
        allowed = predicate.evaluate(resource, self.repository.fetch_grants(resource.id))
        if not allowed:
            logger.debug(f"Read denied: user={user.id} resource={resource.id}")
        return allowed

    def readable(
        self,
        user: User,
        resources: Iterable[ResourceRecord],
        campaign_id: Optional[str] = None,
        character_id: Optional[str] = None,
    ) -> list[ResourceRecord]:
        """Keep the resources the caller can read, preserving order."""
        predicates: dict[str, ReadPredicate] = {}
        result = []
        for resource in resources:
            predicate = predicates.get(resource.world_id)
            if predicate is None:
                predicate = self.build_read_filter(user, resource.world_id, campaign_id, character_id)
                predicates[resource.world_id] = predicate
            if predicate.evaluate(resource, self.repository.fetch_grants(resource.id)):
                result.append(resource)
        return result


__all__ = ["AccessFilterBuilder"]
