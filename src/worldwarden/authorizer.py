"""
Write authorization for world-scoped resources.

A write decision is a plain bool. Callers turn a False into a generic
ForbiddenError so nothing about the grant structure leaks.
"""

import logging
from typing import Optional

from .errors import ForbiddenError
from .grants import AccessGrantStore
from .models import AccessType, ScopeType, User
from .repository import AccessRepository
from .scopes import ScopeResolver

logger = logging.getLogger("worldwarden")


class WriteAuthorizer:
    """Decides whether a caller may modify a resource."""

    def __init__(
        self,
        repository: AccessRepository,
        resolver: ScopeResolver,
        grant_store: AccessGrantStore,
    ) -> None:
        self.repository = repository
        self.resolver = resolver
        self.grant_store = grant_store

    def can_write(
        self,
        user: User,
        resource_id: str,
        campaign_id: Optional[str] = None,
        character_id: Optional[str] = None,
    ) -> bool:
        """
        Check if a caller may write a resource in a request context.

        Architects of the resource's world always may. Everyone else needs
        a WRITE grant that is GLOBAL, or CAMPAIGN for campaign_id, or
        CHARACTER for character_id. READ grants never imply WRITE.

        Args:
            user: The caller
            resource_id: The resource to modify
            campaign_id: Campaign context (CAMPAIGN grants only checked if given)
            character_id: Character context (CHARACTER grants only checked if given)

        Returns:
            True if the write is allowed; False for unknown resources
        """
        resource = self.repository.fetch_resource(resource_id)
        if resource is None:
            return False
        if self.resolver.is_architect(user.id, resource.world_id):
            return True

        for grant in self.grant_store.fetch_grants(resource_id):
            if grant.access_type != AccessType.WRITE:
                continue
            if grant.scope_type == ScopeType.GLOBAL:
                return True
            if campaign_id and grant.scope_type == ScopeType.CAMPAIGN and grant.scope_id == campaign_id:
                return True
            if character_id and grant.scope_type == ScopeType.CHARACTER and grant.scope_id == character_id:
                return True

        logger.debug(f"Write denied: user={user.id} resource={resource_id}")
        return False

    def require_write(
        self,
        user: User,
        resource_id: str,
        campaign_id: Optional[str] = None,
        character_id: Optional[str] = None,
    ) -> None:
        """Raise a bare ForbiddenError unless can_write() allows the caller (admins pass)."""
        if self.resolver.is_admin(user):
            return
        if not self.can_write(user, resource_id, campaign_id, character_id):
            raise ForbiddenError()

    def can_manage_access(self, user: User, world_id: str) -> bool:
        """
        Check if a caller may edit grants and read audit reports in a world.

        Admins, architects, world GMs and GMs of any campaign in the world.
        """
        if self.resolver.is_admin(user):
            return True
        if self.resolver.is_architect(user.id, world_id):
            return True
        if self.resolver.is_game_master(user.id, world_id):
            return True
        return self.resolver.gms_any_campaign(user.id, world_id)


__all__ = ["WriteAuthorizer"]
