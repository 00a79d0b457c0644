"""
Tests for the read predicate tree: evaluation, SQL rendering, serialization.
"""

from pydantic import TypeAdapter

from worldwarden.models import AccessGrant, AccessType, Entity, Location, ResourceKind, ScopeType
from worldwarden.predicates import (
    And,
    KindMatch,
    Or,
    ReadPredicate,
    ScopeMatch,
    WorldMatch,
    all_of,
    any_of,
)


def _grant(resource_id, access_type, scope_type, scope_id=None):
    return AccessGrant(resource_id=resource_id, access_type=access_type,
                       scope_type=scope_type, scope_id=scope_id)


class TestEvaluate:
    """Tests for in-memory evaluation."""

    def test_world_and_kind(self):
        entity = Entity(world_id="w1", name="e")
        assert WorldMatch(world_id="w1").evaluate(entity, [])
        assert not WorldMatch(world_id="w2").evaluate(entity, [])
        assert KindMatch(kind=ResourceKind.ENTITY).evaluate(entity, [])
        assert not KindMatch(kind=ResourceKind.LOCATION).evaluate(entity, [])

    def test_scope_match(self):
        entity = Entity(world_id="w1", name="e")
        grants = [_grant(entity.id, AccessType.READ, ScopeType.CAMPAIGN, "c1")]
        assert ScopeMatch(access_type=AccessType.READ, scope_type=ScopeType.CAMPAIGN,
                          scope_id="c1").evaluate(entity, grants)
        assert not ScopeMatch(access_type=AccessType.READ, scope_type=ScopeType.CAMPAIGN,
                              scope_id="c2").evaluate(entity, grants)
        assert not ScopeMatch(access_type=AccessType.WRITE, scope_type=ScopeType.CAMPAIGN,
                              scope_id="c1").evaluate(entity, grants)

    def test_empty_and_or(self):
        entity = Entity(world_id="w1", name="e")
        assert And().evaluate(entity, [])
        assert not Or().evaluate(entity, [])

    def test_operators(self):
        location = Location(world_id="w1", name="l", location_type_id="town")
        predicate = WorldMatch(world_id="w1") & (KindMatch(kind=ResourceKind.ENTITY) | KindMatch(kind=ResourceKind.LOCATION))
        assert isinstance(predicate, And)
        assert predicate.evaluate(location, [])


class TestToSql:
    """Tests for SQL rendering."""

    def test_world_match(self):
        assert WorldMatch(world_id="w1").to_sql() == ("r.world_id = ?", ["w1"])

    def test_global_scope_has_no_scope_id_clause(self):
        sql, params = ScopeMatch(access_type=AccessType.READ, scope_type=ScopeType.GLOBAL).to_sql()
        assert "scope_id" not in sql
        assert params == ["READ", "GLOBAL"]

    def test_nested(self):
        predicate = all_of(
            WorldMatch(world_id="w1"),
            any_of(
                ScopeMatch(access_type=AccessType.READ, scope_type=ScopeType.GLOBAL),
                ScopeMatch(access_type=AccessType.READ, scope_type=ScopeType.CAMPAIGN, scope_id="c1"),
            ),
        )
        sql, params = predicate.to_sql()
        assert sql.startswith("(r.world_id = ? AND (EXISTS")
        assert " OR EXISTS" in sql
        assert params == ["w1", "READ", "GLOBAL", "READ", "CAMPAIGN", "c1"]

    def test_empty_clauses(self):
        assert And().to_sql() == ("1 = 1", [])
        assert Or().to_sql() == ("1 = 0", [])


class TestSerialization:
    """Tests for predicate serialization and value semantics."""

    def test_round_trip(self):
        predicate = all_of(
            WorldMatch(world_id="w1"),
            KindMatch(kind=ResourceKind.LOCATION),
            any_of(ScopeMatch(access_type=AccessType.READ, scope_type=ScopeType.CHARACTER, scope_id="k1")),
        )
        adapter = TypeAdapter(ReadPredicate)
        restored = adapter.validate_python(predicate.model_dump())
        assert restored == predicate

    def test_equality_by_value(self):
        assert WorldMatch(world_id="w1") == WorldMatch(world_id="w1")
        assert WorldMatch(world_id="w1") != WorldMatch(world_id="w2")

    def test_describe(self):
        predicate = all_of(
            WorldMatch(world_id="w1"),
            any_of(ScopeMatch(access_type=AccessType.READ, scope_type=ScopeType.GLOBAL)),
        )
        assert predicate.describe() == "(world=w1 AND (READ@GLOBAL))"
