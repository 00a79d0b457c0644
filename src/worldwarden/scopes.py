"""
Scope resolution: who a user is within a world.

Answers the structural role questions every other component builds on:
architect (primary or additional), world game-master, campaign GM, and
character player. Roles here are never grants; architect status in
particular overrides every grant in its world.

A ScopeResolver memoizes world and campaign lookups for its own lifetime,
so the intended use is one resolver per request.
"""

import logging
from collections.abc import Iterable
from typing import Optional

from .models import (
    Campaign,
    Character,
    EntityPermissionScope,
    User,
    World,
    WorldRole,
)
from .repository import AccessRepository

logger = logging.getLogger("worldwarden")

_MISSING = object()


class ScopeResolver:
    """
    Resolves a user's roles in worlds and campaigns.

    Attributes:
        repository: Source of world, campaign and character records
        _worlds: Per-request cache of world lookups (None = unknown world)
        _campaigns: Per-request cache of campaign lookups
        _characters: Per-request cache of character lookups
    """

    def __init__(self, repository: AccessRepository) -> None:
        self.repository = repository
        self._worlds: dict[str, Optional[World]] = {}
        self._campaigns: dict[str, Optional[Campaign]] = {}
        self._characters: dict[str, Optional[Character]] = {}

    # -- cached lookups -------------------------------------------------------

    def world(self, world_id: str) -> Optional[World]:
        cached = self._worlds.get(world_id, _MISSING)
        if cached is _MISSING:
            cached = self.repository.fetch_world(world_id)
            self._worlds[world_id] = cached
        return cached

    def campaign(self, campaign_id: str) -> Optional[Campaign]:
        cached = self._campaigns.get(campaign_id, _MISSING)
        if cached is _MISSING:
            cached = self.repository.fetch_campaign(campaign_id)
            self._campaigns[campaign_id] = cached
        return cached

    def character(self, character_id: str) -> Optional[Character]:
        cached = self._characters.get(character_id, _MISSING)
        if cached is _MISSING:
            cached = self.repository.fetch_character(character_id)
            self._characters[character_id] = cached
        return cached

    # -- role checks ----------------------------------------------------------

    @staticmethod
    def is_admin(user: User) -> bool:
        """System administrators."""
        return user.is_admin

    def is_architect(self, user_id: str, world_id: str) -> bool:
        """
        Check if a user is the primary or an additional architect of a world.

        Args:
            user_id: The user to check
            world_id: The world to check against

        Returns:
            True if the user is an architect; False for unknown worlds
        """
        world = self.world(world_id)
        if world is None:
            return False
        return world.primary_architect_id == user_id or user_id in world.architect_ids

    def is_game_master(self, user_id: str, world_id: str) -> bool:
        """World-level GM role. Distinct from running a campaign."""
        world = self.world(world_id)
        if world is None:
            return False
        return user_id in world.game_master_ids

    def is_campaign_gm(self, user_id: str, campaign_id: str) -> bool:
        """True if the user is the GM of this specific campaign."""
        campaign = self.campaign(campaign_id)
        if campaign is None:
            return False
        return campaign.gm_user_id == user_id

    def gms_any_campaign(self, user_id: str, world_id: str) -> bool:
        """True if the user runs at least one campaign in the world."""
        return any(
            campaign.gm_user_id == user_id
            for campaign in self.repository.fetch_campaigns_in_world(world_id)
        )

    def plays_in_world(self, user_id: str, world_id: str) -> bool:
        """True if the user controls at least one character in the world."""
        return any(
            character.player_id == user_id
            for character in self.repository.fetch_characters_in_world(world_id)
        )

    def controls_character(self, user_id: str, character_id: str) -> bool:
        character = self.character(character_id)
        return character is not None and character.player_id == user_id

    def controlled_roster_character_ids(self, user_id: str, campaign_id: str) -> set[str]:
        """Ids of roster characters in the campaign whose player is the user."""
        campaign = self.campaign(campaign_id)
        if campaign is None:
            return set()
        return {
            character_id
            for character_id in campaign.roster_character_ids
            if self.controls_character(user_id, character_id)
        }

    def can_access_world(self, user_id: str, world_id: str) -> bool:
        """
        Check if a user is a member of a world in any capacity.

        Architects, world GMs, campaign and character creators, GMs of any
        campaign in the world, and players of any character in it.
        """
        world = self.world(world_id)
        if world is None:
            return False
        if (
            world.primary_architect_id == user_id
            or user_id in world.architect_ids
            or user_id in world.game_master_ids
            or user_id in world.campaign_creator_ids
            or user_id in world.character_creator_ids
        ):
            return True
        if self.gms_any_campaign(user_id, world_id):
            return True
        return self.plays_in_world(user_id, world_id)

    def has_world_role(
        self, user: User, world_id: str, roles: WorldRole | Iterable[WorldRole]
    ) -> bool:
        """
        Check if a user holds at least one of the given world roles.

        Args:
            user: The caller
            world_id: The world to check against
            roles: A single role or several; any one of them suffices

        Returns:
            True if any role matches
        """
        required = [roles] if isinstance(roles, WorldRole) else list(roles)
        checkers = {
            WorldRole.ADMIN: lambda: self.is_admin(user),
            WorldRole.ARCHITECT: lambda: self.is_architect(user.id, world_id),
            WorldRole.GM: lambda: self.is_game_master(user.id, world_id),
            WorldRole.PLAYER: lambda: self.plays_in_world(user.id, world_id),
        }
        return any(checkers[role]() for role in required)

    def can_create_resource(self, user: User, world_id: str) -> bool:
        """
        Check if a user may create entities or locations in a world.

        Architects always may. Beyond that the world's entity permission
        scope decides whether campaign GMs, and then players, may too.
        """
        world = self.world(world_id)
        if world is None:
            return False
        if self.is_admin(user) or self.is_architect(user.id, world_id):
            return True

        scope = world.entity_permission_scope
        if scope == EntityPermissionScope.ARCHITECT_GM:
            return self.gms_any_campaign(user.id, world_id)
        if scope == EntityPermissionScope.ARCHITECT_GM_PLAYER:
            if self.gms_any_campaign(user.id, world_id):
                return True
            return self.plays_in_world(user.id, world_id)

        logger.debug(f"Resource creation denied for {user.id} in world {world_id}")
        return False


__all__ = ["ScopeResolver"]
