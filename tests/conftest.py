"""
Pytest configuration and fixtures for worldwarden tests.
"""

from dataclasses import dataclass

import pytest

from worldwarden.engine import AccessEngine
from worldwarden.models import (
    AccessGrant,
    AccessType,
    Campaign,
    Character,
    Entity,
    Location,
    LocationTypeRule,
    ScopeType,
    User,
    UserRole,
    World,
)
from worldwarden.repository import InMemoryRepository


@dataclass
class WorldScenario:
    """
    A small world with one user per role.

    World W: architect una, world GM wren.
    Campaign C1 "Ashfall": GM gus, roster kestrel (pia) and bram (pax).
    Campaign C2 "Brightwater": GM otto, empty roster.
    nell has no role anywhere; root is a system admin.
    lantern: an entity readable only through a CAMPAIGN READ grant for C1.
    """
    repo: InMemoryRepository
    world: World
    c1: Campaign
    c2: Campaign
    kestrel: Character
    bram: Character
    root: User
    una: User
    gus: User
    pia: User
    pax: User
    wren: User
    otto: User
    nell: User
    lantern: Entity

    def engine(self) -> AccessEngine:
        return AccessEngine(self.repo)

    def grant(self, resource_id: str, access_type: AccessType, scope_type: ScopeType,
              scope_id: str | None = None) -> AccessGrant:
        return AccessGrant(resource_id=resource_id, access_type=access_type,
                           scope_type=scope_type, scope_id=scope_id)

    def add_entity(self, name: str, *grants: tuple) -> Entity:
        """Store an entity with grants given as (access_type, scope_type, scope_id) tuples."""
        entity = Entity(world_id=self.world.id, name=name)
        self.repo.save_resource(entity)
        self.repo.replace_grants(entity.id, [self.grant(entity.id, *g) for g in grants])
        return entity

    def add_location(self, name: str, type_id: str, parent_id: str | None = None) -> Location:
        location = Location(
            world_id=self.world.id,
            name=name,
            location_type_id=type_id,
            parent_location_id=parent_id,
        )
        self.repo.save_resource(location)
        return location


def _seed(repo) -> WorldScenario:
    root = repo.add_user(User(email="root@example.com", name="Root", role=UserRole.ADMIN))
    una = repo.add_user(User(email="una@example.com", name="Una"))
    gus = repo.add_user(User(email="gus@example.com", name="Gus"))
    pia = repo.add_user(User(email="pia@example.com", name="Pia"))
    pax = repo.add_user(User(email="pax@example.com", name="Pax"))
    wren = repo.add_user(User(email="wren@example.com", name="Wren"))
    otto = repo.add_user(User(email="otto@example.com", name="Otto"))
    nell = repo.add_user(User(email="nell@example.com"))

    world = repo.add_world(World(
        name="Verdant Reach",
        primary_architect_id=una.id,
        game_master_ids=[wren.id],
    ))
    kestrel = repo.add_character(Character(world_id=world.id, name="Kestrel", player_id=pia.id))
    bram = repo.add_character(Character(world_id=world.id, name="Bram", player_id=pax.id))
    c1 = repo.add_campaign(Campaign(
        world_id=world.id,
        name="Ashfall",
        gm_user_id=gus.id,
        roster_character_ids=[kestrel.id, bram.id],
    ))
    c2 = repo.add_campaign(Campaign(world_id=world.id, name="Brightwater", gm_user_id=otto.id))

    lantern = Entity(world_id=world.id, name="The Lantern Keeper")
    repo.save_resource(lantern)
    repo.replace_grants(lantern.id, [AccessGrant(
        resource_id=lantern.id,
        access_type=AccessType.READ,
        scope_type=ScopeType.CAMPAIGN,
        scope_id=c1.id,
    )])

    return WorldScenario(
        repo=repo, world=world, c1=c1, c2=c2, kestrel=kestrel, bram=bram,
        root=root, una=una, gus=gus, pia=pia, pax=pax, wren=wren, otto=otto, nell=nell,
        lantern=lantern,
    )


@pytest.fixture
def repo() -> InMemoryRepository:
    """An empty in-memory repository."""
    return InMemoryRepository()


@pytest.fixture
def scenario(repo) -> WorldScenario:
    """The shared world scenario on an in-memory repository."""
    return _seed(repo)


@pytest.fixture
def engine(scenario) -> AccessEngine:
    """Engine bound to the scenario repository with the default policy."""
    return scenario.engine()


@pytest.fixture
def seed_world():
    """Seed the shared scenario into any repository (used for SQLite)."""
    return _seed


@pytest.fixture
def region_rules(scenario) -> WorldScenario:
    """
    Location type rules: town under region, district under town,
    region under continent. Districts may never sit directly under a region.
    """
    world_id = scenario.world.id
    for parent, child, allowed in [
        ("continent", "region", True),
        ("region", "town", True),
        ("town", "district", True),
        ("region", "district", False),
    ]:
        scenario.repo.add_location_type_rule(
            world_id, LocationTypeRule(parent_type_id=parent, child_type_id=child, allowed=allowed)
        )
    return scenario
