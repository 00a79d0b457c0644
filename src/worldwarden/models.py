"""
Data models for the worldwarden access-control engine.

Covers the world-scoped identity records (users, worlds, campaigns,
characters), the resources being protected (entities and locations), the
grants attached to them, collaborative notes, audit entries, and the
read-only summary shapes handed back to the route layer.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from shortuuid import random


def new_id() -> str:
    """Generate a new random 8-character id."""
    return random(length=8)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class AccessType(str, Enum):
    """Kind of access a grant gives. READ and WRITE are independent."""
    READ = "READ"
    WRITE = "WRITE"


class ScopeType(str, Enum):
    """Breadth of a grant: world-wide, one campaign, or one character."""
    GLOBAL = "GLOBAL"
    CAMPAIGN = "CAMPAIGN"
    CHARACTER = "CHARACTER"


class ResourceKind(str, Enum):
    """The two kinds of world-scoped resources that carry grants."""
    ENTITY = "entity"
    LOCATION = "location"


class UserRole(str, Enum):
    """System-wide role. ADMIN bypasses world membership checks."""
    USER = "USER"
    ADMIN = "ADMIN"


class WorldRole(str, Enum):
    """World roles a caller can be required to hold."""
    ADMIN = "ADMIN"
    ARCHITECT = "ARCHITECT"
    GM = "GM"
    PLAYER = "PLAYER"


class EntityPermissionScope(str, Enum):
    """
    Who besides architects may create entities and locations in a world.

    ARCHITECT: architects only.
    ARCHITECT_GM: architects and GMs of any campaign in the world.
    ARCHITECT_GM_PLAYER: additionally anyone playing a character in the world.
    """
    ARCHITECT = "ARCHITECT"
    ARCHITECT_GM = "ARCHITECT_GM"
    ARCHITECT_GM_PLAYER = "ARCHITECT_GM_PLAYER"


class NoteVisibility(str, Enum):
    """
    Visibility class of a note.

    PRIVATE: the author plus privileged readers.
    SHARED: anyone reading the resource in the note's campaign.
    GM: the campaign GM plus explicit shares.
    """
    PRIVATE = "PRIVATE"
    SHARED = "SHARED"
    GM = "GM"


class NoteTagType(str, Enum):
    """Target kind of a mention inside a note body."""
    ENTITY = "ENTITY"
    LOCATION = "LOCATION"


class AuditAction(str, Enum):
    """Actions recorded in the audit log."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ACCESS_UPDATE = "access_update"


# ---------------------------------------------------------------------------
# Identity records
# ---------------------------------------------------------------------------

class User(BaseModel):
    """An account that can act on worlds."""
    id: str = Field(default_factory=new_id)
    email: str
    name: Optional[str] = None
    role: UserRole = UserRole.USER

    @property
    def display_name(self) -> str:
        """Name if set, else email."""
        return self.name or self.email

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class WorldRoles(BaseModel):
    """Structural roles of a world, independent of any grant."""
    primary_architect_id: str
    architect_ids: list[str] = Field(default_factory=list)
    game_master_ids: list[str] = Field(default_factory=list)

    @property
    def all_architect_ids(self) -> list[str]:
        """Primary architect first, then additional architects, without repeats."""
        seen: list[str] = [self.primary_architect_id]
        for user_id in self.architect_ids:
            if user_id not in seen:
                seen.append(user_id)
        return seen


class World(BaseModel):
    """A world owned by one primary architect."""
    id: str = Field(default_factory=new_id)
    name: str
    primary_architect_id: str
    architect_ids: list[str] = Field(default_factory=list)
    game_master_ids: list[str] = Field(default_factory=list)
    campaign_creator_ids: list[str] = Field(default_factory=list)
    character_creator_ids: list[str] = Field(default_factory=list)
    entity_permission_scope: EntityPermissionScope = EntityPermissionScope.ARCHITECT

    @property
    def roles(self) -> WorldRoles:
        return WorldRoles(
            primary_architect_id=self.primary_architect_id,
            architect_ids=list(self.architect_ids),
            game_master_ids=list(self.game_master_ids),
        )


class Campaign(BaseModel):
    """A campaign inside a world, run by exactly one GM."""
    id: str = Field(default_factory=new_id)
    world_id: str
    name: str
    gm_user_id: str
    roster_character_ids: list[str] = Field(default_factory=list)
    created_by_id: Optional[str] = None


class Character(BaseModel):
    """A character controlled by exactly one player."""
    id: str = Field(default_factory=new_id)
    world_id: str
    name: str
    player_id: str


# ---------------------------------------------------------------------------
# Field values
# ---------------------------------------------------------------------------

class TextValue(BaseModel):
    """A string field value (text, choice, or reference id)."""
    model_config = ConfigDict(frozen=True)
    kind: Literal["text"] = "text"
    value: str


class NumberValue(BaseModel):
    """A numeric field value."""
    model_config = ConfigDict(frozen=True)
    kind: Literal["number"] = "number"
    value: float


class BoolValue(BaseModel):
    """A boolean field value."""
    model_config = ConfigDict(frozen=True)
    kind: Literal["bool"] = "bool"
    value: bool


class JsonValue(BaseModel):
    """A structured field value, compared by its canonical JSON encoding."""
    model_config = ConfigDict(frozen=True)
    kind: Literal["json"] = "json"
    value: Any

    def canonical(self) -> str:
        return json.dumps(self.value, sort_keys=True, default=str)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JsonValue):
            return NotImplemented
        return self.canonical() == other.canonical()

    def __hash__(self) -> int:
        return hash(self.canonical())


FieldValue = Annotated[
    Union[TextValue, NumberValue, BoolValue, JsonValue],
    Field(discriminator="kind"),
]


class StoredValueColumns(BaseModel):
    """Legacy row shape: one nullable column per value type."""
    value_string: Optional[str] = None
    value_text: Optional[str] = None
    value_number: Optional[float] = None
    value_boolean: Optional[bool] = None
    value_json: Any = None


def decode_stored_value(columns: StoredValueColumns) -> Optional[FieldValue]:
    """
    Decode a legacy parallel-column row into a tagged field value.

    Precedence is string, text, number, boolean, json: the first non-null
    column wins. Returns None when every column is null.
    """
    if columns.value_string is not None:
        return TextValue(value=columns.value_string)
    if columns.value_text is not None:
        return TextValue(value=columns.value_text)
    if columns.value_number is not None:
        return NumberValue(value=columns.value_number)
    if columns.value_boolean is not None:
        return BoolValue(value=columns.value_boolean)
    if columns.value_json is not None:
        return JsonValue(value=columns.value_json)
    return None


def plain_value(value: Optional[FieldValue]) -> Any:
    """The JSON-friendly payload of a field value, for audit details."""
    if value is None:
        return None
    if isinstance(value, JsonValue):
        return value.canonical()
    return value.value


# ---------------------------------------------------------------------------
# Resources and grants
# ---------------------------------------------------------------------------

class Resource(BaseModel):
    """Common shape of every world-scoped resource."""
    id: str = Field(default_factory=new_id)
    world_id: str
    name: str
    description: Optional[str] = None
    status: str = "ACTIVE"
    field_values: dict[str, FieldValue] = Field(default_factory=dict)
    field_labels: dict[str, str] = Field(
        default_factory=dict,
        description="Display labels for field keys, supplied by the type designer"
    )
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def kind(self) -> ResourceKind:
        raise NotImplementedError


class Entity(Resource):
    """A world entity (NPC, faction, item, ...)."""
    resource_kind: Literal["entity"] = "entity"
    entity_type_id: Optional[str] = None

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.ENTITY


class Location(Resource):
    """A place. Locations form a forest through parent_location_id."""
    resource_kind: Literal["location"] = "location"
    location_type_id: str
    parent_location_id: Optional[str] = None

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.LOCATION


AnyResource = Annotated[Union[Entity, Location], Field(discriminator="resource_kind")]


class LocationTypeRule(BaseModel):
    """Whether a location of child_type_id may sit under parent_type_id."""
    parent_type_id: str
    child_type_id: str
    allowed: bool = True


class AccessGrant(BaseModel):
    """
    One permission row: (resource, access type, scope).

    Grants are immutable and hashable so grant sets behave as real sets.
    scope_id is required for CAMPAIGN and CHARACTER scopes and forbidden
    for GLOBAL.
    """
    model_config = ConfigDict(frozen=True)

    resource_id: str
    access_type: AccessType
    scope_type: ScopeType
    scope_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_scope_id(self) -> "AccessGrant":
        if self.scope_type == ScopeType.GLOBAL and self.scope_id is not None:
            raise ValueError("GLOBAL grants cannot carry a scope_id")
        if self.scope_type != ScopeType.GLOBAL and not self.scope_id:
            raise ValueError(f"{self.scope_type.value} grants require a scope_id")
        return self

    @property
    def signature_key(self) -> str:
        """Canonical '{access}:{scope}:{scope_id}' string for this grant."""
        return f"{self.access_type.value}:{self.scope_type.value}:{self.scope_id or ''}"


class ScopeSelection(BaseModel):
    """The per-access-type part of an access edit request."""
    model_config = ConfigDict(populate_by_name=True)

    global_: bool = Field(default=False, alias="global")
    campaigns: list[str] = Field(default_factory=list)
    characters: list[str] = Field(default_factory=list)


class AccessSelection(BaseModel):
    """Request shape of an access edit: read and write scopes."""
    read: ScopeSelection = Field(default_factory=ScopeSelection)
    write: ScopeSelection = Field(default_factory=ScopeSelection)


class RequestContext(BaseModel):
    """The (campaign, character) pair a request is made in."""
    campaign_id: Optional[str] = None
    character_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------

class NoteTag(BaseModel):
    """A mention of another resource inside a note body."""
    model_config = ConfigDict(frozen=True)

    tag_type: NoteTagType
    target_id: str
    label: str


class Note(BaseModel):
    """A collaborative note attached to one entity or location."""
    id: str = Field(default_factory=new_id)
    resource_id: str
    resource_kind: ResourceKind
    author_id: str
    body: str
    visibility: NoteVisibility = NoteVisibility.SHARED
    campaign_id: Optional[str] = None
    character_id: Optional[str] = None
    share_with_architect: bool = False
    share_character_ids: list[str] = Field(default_factory=list)
    tags: list[NoteTag] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)


class NoteDraft(BaseModel):
    """Input for creating a note."""
    body: str
    visibility: Optional[NoteVisibility] = None
    campaign_id: Optional[str] = None
    character_id: Optional[str] = None
    share_with_architect: bool = False
    share_character_ids: list[str] = Field(default_factory=list)


class NoteEdit(BaseModel):
    """Input for editing a note. Context (campaign, character) is fixed at creation."""
    body: str
    visibility: Optional[NoteVisibility] = None
    share_with_architect: bool = False
    share_character_ids: list[str] = Field(default_factory=list)


class NoteTagView(BaseModel):
    """A tag as shown to one reader."""
    tag_type: NoteTagType
    target_id: str
    label: str
    can_access: bool


class NoteView(BaseModel):
    """A note as shown to one reader."""
    id: str
    body: str
    visibility: NoteVisibility
    share_with_architect: bool
    share_character_ids: list[str]
    created_at: datetime
    author_id: str
    author_label: str
    author_role_label: Optional[str] = None
    tags: list[NoteTagView] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Resource mutations
# ---------------------------------------------------------------------------

class ResourceDraft(BaseModel):
    """Input for creating an entity or location."""
    kind: ResourceKind
    world_id: str
    name: str
    description: Optional[str] = None
    status: str = "ACTIVE"
    entity_type_id: Optional[str] = None
    location_type_id: Optional[str] = None
    parent_location_id: Optional[str] = None
    field_values: dict[str, FieldValue] = Field(default_factory=dict)
    field_labels: dict[str, str] = Field(default_factory=dict)
    access: Optional[AccessSelection] = None
    context: RequestContext = Field(default_factory=RequestContext)


class ResourcePatch(BaseModel):
    """
    Partial update of a resource. Unset attributes are left alone.

    parent_location_id uses an explicit flag because None is a meaningful
    target (detach from parent).
    """
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    change_parent: bool = False
    parent_location_id: Optional[str] = None
    field_values: dict[str, Optional[FieldValue]] = Field(default_factory=dict)


class FieldChange(BaseModel):
    """One changed attribute inside an update audit entry."""
    model_config = ConfigDict(populate_by_name=True)

    field_key: str = Field(alias="fieldKey")
    label: str
    from_value: Any = Field(default=None, alias="from")
    to_value: Any = Field(default=None, alias="to")


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

class AuditEntry(BaseModel):
    """Immutable, append-only record of an action on a resource."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    resource_kind: ResourceKind
    resource_id: str
    action: AuditAction
    actor_id: str
    created_at: datetime = Field(default_factory=datetime.now)
    details: dict[str, Any] = Field(default_factory=dict)


class AuditActor(BaseModel):
    """Identity of the user behind an audit entry."""
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class AuditChange(BaseModel):
    """An audit entry as reported in an access summary."""
    id: str
    action: AuditAction
    actor_id: str
    actor: Optional[AuditActor] = None
    timestamp: datetime
    details: dict[str, Any] = Field(default_factory=dict)


class AccessSummaryEntry(BaseModel):
    """One user with access to a resource and the contexts granting it."""
    user_id: str
    display_name: str
    email: str
    read_contexts: list[str] = Field(default_factory=list)
    write_contexts: list[str] = Field(default_factory=list)


class AccessSummary(BaseModel):
    """Everyone with access to a resource, plus its change history."""
    access: list[AccessSummaryEntry] = Field(default_factory=list)
    changes: list[AuditChange] = Field(default_factory=list)
