"""
Tests for the worldwarden data models.

Covers grant validation and hashing, tagged field values and the legacy
column decoder, access selections, and the discriminated resource union.
"""

import pytest
from pydantic import TypeAdapter, ValidationError

from worldwarden.models import (
    AccessGrant,
    AccessSelection,
    AccessType,
    AnyResource,
    BoolValue,
    Entity,
    FieldChange,
    JsonValue,
    Location,
    NumberValue,
    ResourceKind,
    ScopeType,
    StoredValueColumns,
    TextValue,
    User,
    UserRole,
    World,
    decode_stored_value,
    new_id,
    plain_value,
)


class TestIds:
    """Tests for id generation."""

    def test_new_id_length(self):
        assert len(new_id()) == 8

    def test_new_id_unique(self):
        assert len({new_id() for _ in range(100)}) == 100


class TestUser:
    """Tests for User."""

    def test_display_name_prefers_name(self):
        assert User(email="a@example.com", name="Ada").display_name == "Ada"

    def test_display_name_falls_back_to_email(self):
        assert User(email="a@example.com").display_name == "a@example.com"

    def test_is_admin(self):
        assert User(email="x@example.com", role=UserRole.ADMIN).is_admin
        assert not User(email="y@example.com").is_admin


class TestWorldRoles:
    """Tests for structural world roles."""

    def test_all_architect_ids_primary_first_without_repeats(self):
        world = World(name="W", primary_architect_id="u1", architect_ids=["u2", "u1", "u3"])
        assert world.roles.all_architect_ids == ["u1", "u2", "u3"]


class TestAccessGrant:
    """Tests for AccessGrant validation and identity."""

    def test_global_grant_without_scope_id(self):
        grant = AccessGrant(resource_id="r", access_type=AccessType.READ, scope_type=ScopeType.GLOBAL)
        assert grant.scope_id is None

    def test_global_grant_rejects_scope_id(self):
        with pytest.raises(ValidationError):
            AccessGrant(resource_id="r", access_type=AccessType.READ,
                        scope_type=ScopeType.GLOBAL, scope_id="c1")

    @pytest.mark.parametrize("scope_type", [ScopeType.CAMPAIGN, ScopeType.CHARACTER])
    def test_scoped_grant_requires_scope_id(self, scope_type):
        with pytest.raises(ValidationError):
            AccessGrant(resource_id="r", access_type=AccessType.WRITE, scope_type=scope_type)

    def test_grants_are_hashable_and_compare_by_value(self):
        a = AccessGrant(resource_id="r", access_type=AccessType.READ,
                        scope_type=ScopeType.CAMPAIGN, scope_id="c1")
        b = AccessGrant(resource_id="r", access_type=AccessType.READ,
                        scope_type=ScopeType.CAMPAIGN, scope_id="c1")
        assert a == b
        assert len({a, b}) == 1

    def test_grants_are_immutable(self):
        grant = AccessGrant(resource_id="r", access_type=AccessType.READ, scope_type=ScopeType.GLOBAL)
        with pytest.raises(ValidationError):
            grant.access_type = AccessType.WRITE

    def test_signature_key(self):
        grant = AccessGrant(resource_id="r", access_type=AccessType.WRITE,
                            scope_type=ScopeType.CHARACTER, scope_id="k1")
        assert grant.signature_key == "WRITE:CHARACTER:k1"
        global_grant = AccessGrant(resource_id="r", access_type=AccessType.READ,
                                   scope_type=ScopeType.GLOBAL)
        assert global_grant.signature_key == "READ:GLOBAL:"


class TestFieldValues:
    """Tests for the tagged field value union."""

    def test_discriminated_by_kind(self):
        adapter = TypeAdapter(Entity)
        entity = adapter.validate_python({
            "world_id": "w",
            "name": "Mira",
            "field_values": {
                "title": {"kind": "text", "value": "Harbormaster"},
                "age": {"kind": "number", "value": 51},
                "alive": {"kind": "bool", "value": True},
                "ledger": {"kind": "json", "value": {"debts": 3}},
            },
        })
        assert isinstance(entity.field_values["title"], TextValue)
        assert isinstance(entity.field_values["age"], NumberValue)
        assert isinstance(entity.field_values["alive"], BoolValue)
        assert isinstance(entity.field_values["ledger"], JsonValue)

    def test_json_value_ignores_key_order(self):
        assert JsonValue(value={"a": 1, "b": 2}) == JsonValue(value={"b": 2, "a": 1})
        assert hash(JsonValue(value={"a": 1, "b": 2})) == hash(JsonValue(value={"b": 2, "a": 1}))

    def test_plain_value(self):
        assert plain_value(None) is None
        assert plain_value(TextValue(value="x")) == "x"
        assert plain_value(NumberValue(value=2.5)) == 2.5
        assert plain_value(BoolValue(value=False)) is False
        assert plain_value(JsonValue(value={"b": 1, "a": 2})) == '{"a": 2, "b": 1}'


class TestDecodeStoredValue:
    """Tests for decoding legacy parallel-column rows."""

    def test_all_null_is_none(self):
        assert decode_stored_value(StoredValueColumns()) is None

    def test_string_wins_over_everything(self):
        columns = StoredValueColumns(value_string="s", value_text="t", value_number=1,
                                     value_boolean=True, value_json=[1])
        assert decode_stored_value(columns) == TextValue(value="s")

    def test_text_before_number(self):
        columns = StoredValueColumns(value_text="t", value_number=1)
        assert decode_stored_value(columns) == TextValue(value="t")

    def test_number_before_boolean(self):
        columns = StoredValueColumns(value_number=0, value_boolean=True)
        assert decode_stored_value(columns) == NumberValue(value=0)

    def test_false_boolean_is_a_value(self):
        columns = StoredValueColumns(value_boolean=False, value_json={"x": 1})
        assert decode_stored_value(columns) == BoolValue(value=False)

    def test_json_last(self):
        columns = StoredValueColumns(value_json={"x": 1})
        assert decode_stored_value(columns) == JsonValue(value={"x": 1})


class TestResources:
    """Tests for entity and location records."""

    def test_kind(self):
        assert Entity(world_id="w", name="e").kind == ResourceKind.ENTITY
        assert Location(world_id="w", name="l", location_type_id="town").kind == ResourceKind.LOCATION

    def test_discriminated_union_round_trip(self):
        adapter = TypeAdapter(AnyResource)
        location = Location(world_id="w", name="Harbor", location_type_id="town", parent_location_id="p")
        restored = adapter.validate_json(location.model_dump_json())
        assert isinstance(restored, Location)
        assert restored.parent_location_id == "p"


class TestAccessSelection:
    """Tests for the access edit request shape."""

    def test_accepts_global_alias(self):
        selection = AccessSelection.model_validate({
            "read": {"global": True, "campaigns": ["c1"]},
            "write": {"characters": ["k1"]},
        })
        assert selection.read.global_ is True
        assert selection.read.campaigns == ["c1"]
        assert selection.write.global_ is False
        assert selection.write.characters == ["k1"]

    def test_dumps_global_alias(self):
        dumped = AccessSelection().model_dump(by_alias=True)
        assert dumped["read"]["global"] is False


class TestFieldChange:
    """Tests for FieldChange serialization."""

    def test_dump_uses_wire_names(self):
        change = FieldChange(field_key="name", label="Name", from_value="a", to_value="b")
        assert change.model_dump(by_alias=True) == {
            "fieldKey": "name", "label": "Name", "from": "a", "to": "b",
        }
