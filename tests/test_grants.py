"""
Tests for the access grant store and grant signatures.
"""

import pytest

from worldwarden.config import AccessPolicyConfig
from worldwarden.errors import InvalidRequestError, NotFoundError
from worldwarden.grants import AccessGrantStore, signature
from worldwarden.models import AccessGrant, AccessSelection, AccessType, ScopeSelection, ScopeType


def _grant(access_type, scope_type, scope_id=None, resource_id="r1"):
    return AccessGrant(resource_id=resource_id, access_type=access_type,
                       scope_type=scope_type, scope_id=scope_id)


@pytest.fixture
def store(scenario):
    return AccessGrantStore(scenario.repo, AccessPolicyConfig())


class TestSignature:
    """Tests for the canonical grant-set signature."""

    def test_order_independent(self):
        grants = [
            _grant(AccessType.WRITE, ScopeType.CHARACTER, "k1"),
            _grant(AccessType.READ, ScopeType.GLOBAL),
            _grant(AccessType.READ, ScopeType.CAMPAIGN, "c1"),
        ]
        assert signature(grants) == signature(list(reversed(grants)))

    def test_duplicates_ignored(self):
        grant = _grant(AccessType.READ, ScopeType.GLOBAL)
        assert signature([grant, grant]) == signature([grant])

    def test_format(self):
        grants = [_grant(AccessType.WRITE, ScopeType.GLOBAL), _grant(AccessType.READ, ScopeType.CAMPAIGN, "c1")]
        assert signature(grants) == "READ:CAMPAIGN:c1|WRITE:GLOBAL:"

    def test_empty(self):
        assert signature([]) == ""

    def test_distinguishes_access_types(self):
        assert signature([_grant(AccessType.READ, ScopeType.GLOBAL)]) != signature(
            [_grant(AccessType.WRITE, ScopeType.GLOBAL)]
        )

    def test_stable_across_refetch(self, scenario, store):
        lantern = scenario.lantern.id
        first = store.signature(store.fetch_grants(lantern))
        second = store.signature(store.fetch_grants(lantern))
        assert first == second == f"READ:CAMPAIGN:{scenario.c1.id}"


class TestReplaceGrants:
    """Tests for replace_grants()."""

    def test_replaces_whole_set(self, scenario, store):
        lantern = scenario.lantern.id
        new = [_grant(AccessType.WRITE, ScopeType.GLOBAL, resource_id=lantern)]
        store.replace_grants(lantern, new)
        assert store.fetch_grants(lantern) == frozenset(new)

    def test_collapses_duplicates(self, scenario, store):
        lantern = scenario.lantern.id
        grant = _grant(AccessType.READ, ScopeType.GLOBAL, resource_id=lantern)
        stored = store.replace_grants(lantern, [grant, grant])
        assert stored == frozenset([grant])
        assert len(scenario.repo.fetch_grants(lantern)) == 1

    def test_rejects_foreign_grants(self, scenario, store):
        lantern = scenario.lantern.id
        before = store.fetch_grants(lantern)
        with pytest.raises(InvalidRequestError):
            store.replace_grants(lantern, [_grant(AccessType.READ, ScopeType.GLOBAL, resource_id="other")])
        assert store.fetch_grants(lantern) == before

    def test_empty_set_clears(self, scenario, store):
        store.replace_grants(scenario.lantern.id, [])
        assert store.fetch_grants(scenario.lantern.id) == frozenset()


class TestSelections:
    """Tests for converting between selections and grants."""

    def test_grants_from_selection(self):
        selection = AccessSelection(
            read=ScopeSelection(global_=True, campaigns=["c1", "c1", ""]),
            write=ScopeSelection(characters=["k1"]),
        )
        grants = AccessGrantStore.grants_from_selection("r1", selection)
        assert set(grants) == {
            _grant(AccessType.READ, ScopeType.GLOBAL),
            _grant(AccessType.READ, ScopeType.CAMPAIGN, "c1"),
            _grant(AccessType.WRITE, ScopeType.CHARACTER, "k1"),
        }
        assert len(grants) == 3

    def test_selection_from_grants(self):
        grants = [
            _grant(AccessType.READ, ScopeType.CAMPAIGN, "c2"),
            _grant(AccessType.READ, ScopeType.CAMPAIGN, "c1"),
            _grant(AccessType.WRITE, ScopeType.GLOBAL),
        ]
        selection = AccessGrantStore.selection_from_grants(grants)
        assert selection.read.campaigns == ["c1", "c2"]
        assert selection.read.global_ is False
        assert selection.write.global_ is True
        assert selection.write.characters == []

    def test_selection_round_trip_preserves_signature(self):
        grants = [
            _grant(AccessType.READ, ScopeType.GLOBAL),
            _grant(AccessType.WRITE, ScopeType.CHARACTER, "k9"),
        ]
        selection = AccessGrantStore.selection_from_grants(grants)
        assert signature(AccessGrantStore.grants_from_selection("r1", selection)) == signature(grants)


class TestDefaultGrants:
    """Tests for default grants on creation."""

    def test_global_without_campaign(self, store):
        grants = store.default_grants("r1")
        assert set(grants) == {
            _grant(AccessType.READ, ScopeType.GLOBAL),
            _grant(AccessType.WRITE, ScopeType.GLOBAL),
        }

    def test_campaign_scoped(self, store):
        grants = store.default_grants("r1", "c1")
        assert {g.scope_type for g in grants} == {ScopeType.CAMPAIGN}
        assert {g.scope_id for g in grants} == {"c1"}

    def test_configured_access_types(self, scenario):
        store = AccessGrantStore(scenario.repo, AccessPolicyConfig(default_access_types=(AccessType.READ,)))
        assert [g.access_type for g in store.default_grants("r1")] == [AccessType.READ]


class TestValidateScopeTargets:
    """Tests for validate_scope_targets()."""

    def test_known_targets(self, scenario, store):
        store.validate_scope_targets(scenario.world.id, [
            _grant(AccessType.READ, ScopeType.CAMPAIGN, scenario.c1.id),
            _grant(AccessType.READ, ScopeType.CHARACTER, scenario.kestrel.id),
            _grant(AccessType.READ, ScopeType.GLOBAL),
        ])

    def test_unknown_campaign(self, scenario, store):
        with pytest.raises(NotFoundError, match="Campaign"):
            store.validate_scope_targets(scenario.world.id, [
                _grant(AccessType.READ, ScopeType.CAMPAIGN, "missing")
            ])

    def test_character_of_other_world(self, scenario, store):
        with pytest.raises(NotFoundError, match="Character"):
            store.validate_scope_targets("other-world", [
                _grant(AccessType.READ, ScopeType.CHARACTER, scenario.kestrel.id)
            ])
