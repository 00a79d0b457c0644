"""
Repository contract and in-memory implementation.

The engine never talks to a database directly. Everything it needs is
expressed by AccessRepository; InMemoryRepository keeps the records in
dicts and implements transactions by snapshot and restore, and
sqlite_store.SqliteRepository backs the same contract with SQLite.
"""

import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Optional, Union

from .models import (
    AccessGrant,
    AuditEntry,
    Campaign,
    Character,
    Entity,
    Location,
    LocationTypeRule,
    Note,
    ResourceKind,
    User,
    World,
    WorldRoles,
)

logger = logging.getLogger("worldwarden.repository")

ResourceRecord = Union[Entity, Location]


class AccessRepository(ABC):
    """
    Storage contract consumed by the access-control components.

    Lookups return None for unknown ids rather than raising; the
    components decide whether that means NotFound or simply "no access".
    Writes that must be atomic are grouped by callers inside transaction().
    """

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes; everything inside commits or nothing does. Nests."""

    # -- identity -----------------------------------------------------------

    @abstractmethod
    def fetch_user(self, user_id: str) -> Optional[User]:
        ...

    def fetch_users(self, user_ids: Iterable[str]) -> list[User]:
        """Users for the given ids; unknown ids are skipped."""
        users = []
        for user_id in dict.fromkeys(user_ids):
            user = self.fetch_user(user_id)
            if user is not None:
                users.append(user)
        return users

    @abstractmethod
    def fetch_world(self, world_id: str) -> Optional[World]:
        ...

    def fetch_world_roles(self, world_id: str) -> Optional[WorldRoles]:
        world = self.fetch_world(world_id)
        return world.roles if world else None

    @abstractmethod
    def fetch_campaign(self, campaign_id: str) -> Optional[Campaign]:
        ...

    @abstractmethod
    def fetch_character(self, character_id: str) -> Optional[Character]:
        ...

    @abstractmethod
    def fetch_campaigns_in_world(self, world_id: str) -> list[Campaign]:
        ...

    @abstractmethod
    def fetch_characters_in_world(self, world_id: str) -> list[Character]:
        ...

    def fetch_world_member_user_ids(self, world_id: str) -> list[str]:
        """
        Every user who can access the world.

        Architects, world GMs, campaign and character creators, the GM of
        every campaign in the world, and every player of a character in it.
        """
        world = self.fetch_world(world_id)
        if world is None:
            return []

        user_ids: dict[str, None] = {}
        for user_id in [
            world.primary_architect_id,
            *world.architect_ids,
            *world.game_master_ids,
            *world.campaign_creator_ids,
            *world.character_creator_ids,
        ]:
            user_ids[user_id] = None
        for campaign in self.fetch_campaigns_in_world(world_id):
            user_ids[campaign.gm_user_id] = None
        for character in self.fetch_characters_in_world(world_id):
            user_ids[character.player_id] = None
        return list(user_ids)

    # -- resources ------------------------------------------------------------

    @abstractmethod
    def fetch_resource(self, resource_id: str) -> Optional[ResourceRecord]:
        ...

    @abstractmethod
    def list_resources(
        self, world_id: str, kind: Optional[ResourceKind] = None
    ) -> list[ResourceRecord]:
        ...

    @abstractmethod
    def save_resource(self, resource: ResourceRecord) -> None:
        ...

    @abstractmethod
    def delete_resource(self, resource_id: str) -> None:
        """Delete a resource together with its grants and notes."""

    def fetch_location_parent_id(self, location_id: str) -> Optional[str]:
        resource = self.fetch_resource(location_id)
        if isinstance(resource, Location):
            return resource.parent_location_id
        return None

    @abstractmethod
    def fetch_location_type_rules(self, world_id: str) -> list[LocationTypeRule]:
        ...

    # -- grants ---------------------------------------------------------------

    @abstractmethod
    def fetch_grants(self, resource_id: str) -> list[AccessGrant]:
        ...

    @abstractmethod
    def replace_grants(self, resource_id: str, grants: Iterable[AccessGrant]) -> None:
        """Delete every grant of the resource, then insert the given ones."""

    # -- notes ----------------------------------------------------------------

    @abstractmethod
    def fetch_note(self, note_id: str) -> Optional[Note]:
        ...

    @abstractmethod
    def fetch_notes(self, resource_id: str) -> list[Note]:
        """Notes attached to a resource, newest first."""

    @abstractmethod
    def save_note(self, note: Note) -> None:
        ...

    @abstractmethod
    def delete_note(self, note_id: str) -> None:
        ...

    # -- audit ----------------------------------------------------------------

    @abstractmethod
    def append_audit_entry(self, entry: AuditEntry) -> None:
        ...

    @abstractmethod
    def fetch_audit_history(self, resource_id: str) -> list[AuditEntry]:
        """Audit entries of a resource, newest first."""


class InMemoryRepository(AccessRepository):
    """
    Dict-backed repository.

    Transactions snapshot the mutable tables on entry of the outermost
    block and restore them if the block raises. Inner blocks join the
    outer one.
    """

    _TABLES = (
        "_users", "_worlds", "_campaigns", "_characters", "_resources",
        "_type_rules", "_grants", "_notes", "_audit",
    )

    def __init__(self) -> None:
        """Initialize an empty repository."""
        self._users: dict[str, User] = {}
        self._worlds: dict[str, World] = {}
        self._campaigns: dict[str, Campaign] = {}
        self._characters: dict[str, Character] = {}
        self._resources: dict[str, ResourceRecord] = {}
        self._type_rules: dict[str, list[LocationTypeRule]] = {}
        self._grants: dict[str, list[AccessGrant]] = {}
        self._notes: dict[str, Note] = {}
        self._audit: list[AuditEntry] = []
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._depth > 0:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        snapshot = {name: copy.deepcopy(getattr(self, name)) for name in self._TABLES}
        self._depth = 1
        try:
            yield
        except BaseException:
            for name, table in snapshot.items():
                setattr(self, name, table)
            logger.debug("Transaction rolled back")
            raise
        finally:
            self._depth = 0

    # -- seeding --------------------------------------------------------------

    def add_user(self, user: User) -> User:
        self._users[user.id] = user
        return user

    def add_world(self, world: World) -> World:
        self._worlds[world.id] = world
        return world

    def add_campaign(self, campaign: Campaign) -> Campaign:
        self._campaigns[campaign.id] = campaign
        return campaign

    def add_character(self, character: Character) -> Character:
        self._characters[character.id] = character
        return character

    def add_location_type_rule(self, world_id: str, rule: LocationTypeRule) -> None:
        self._type_rules.setdefault(world_id, []).append(rule)

    # -- identity -------------------------------------------------------------

    def fetch_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def fetch_world(self, world_id: str) -> Optional[World]:
        return self._worlds.get(world_id)

    def fetch_campaign(self, campaign_id: str) -> Optional[Campaign]:
        return self._campaigns.get(campaign_id)

    def fetch_character(self, character_id: str) -> Optional[Character]:
        return self._characters.get(character_id)

    def fetch_campaigns_in_world(self, world_id: str) -> list[Campaign]:
        return [c for c in self._campaigns.values() if c.world_id == world_id]

    def fetch_characters_in_world(self, world_id: str) -> list[Character]:
        return [c for c in self._characters.values() if c.world_id == world_id]

    # -- resources ------------------------------------------------------------

    def fetch_resource(self, resource_id: str) -> Optional[ResourceRecord]:
        return self._resources.get(resource_id)

    def list_resources(
        self, world_id: str, kind: Optional[ResourceKind] = None
    ) -> list[ResourceRecord]:
        return [
            r for r in self._resources.values()
            if r.world_id == world_id and (kind is None or r.kind == kind)
        ]

    def save_resource(self, resource: ResourceRecord) -> None:
        self._resources[resource.id] = resource

    def delete_resource(self, resource_id: str) -> None:
        self._resources.pop(resource_id, None)
        self._grants.pop(resource_id, None)
        self._notes = {
            note_id: note for note_id, note in self._notes.items()
            if note.resource_id != resource_id
        }

    def fetch_location_type_rules(self, world_id: str) -> list[LocationTypeRule]:
        return list(self._type_rules.get(world_id, []))

    # -- grants ---------------------------------------------------------------

    def fetch_grants(self, resource_id: str) -> list[AccessGrant]:
        return list(self._grants.get(resource_id, []))

    def replace_grants(self, resource_id: str, grants: Iterable[AccessGrant]) -> None:
        with self.transaction():
            self._grants.pop(resource_id, None)
            self._grants[resource_id] = list(dict.fromkeys(grants))

    # -- notes ----------------------------------------------------------------

    def fetch_note(self, note_id: str) -> Optional[Note]:
        return self._notes.get(note_id)

    def fetch_notes(self, resource_id: str) -> list[Note]:
        notes = [n for n in self._notes.values() if n.resource_id == resource_id]
        return sorted(notes, key=lambda n: n.created_at, reverse=True)

    def save_note(self, note: Note) -> None:
        self._notes[note.id] = note

    def delete_note(self, note_id: str) -> None:
        self._notes.pop(note_id, None)

    # -- audit ----------------------------------------------------------------

    def append_audit_entry(self, entry: AuditEntry) -> None:
        self._audit.append(entry)

    def fetch_audit_history(self, resource_id: str) -> list[AuditEntry]:
        entries = [
            (index, e) for index, e in enumerate(self._audit)
            if e.resource_id == resource_id
        ]
        # Insertion order breaks timestamp ties.
        entries.sort(key=lambda item: (item[1].created_at, item[0]), reverse=True)
        return [e for _, e in entries]


__all__ = ["AccessRepository", "InMemoryRepository", "ResourceRecord"]
