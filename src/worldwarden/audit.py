"""
Audit trail and access summaries.

AuditLog appends immutable entries for resource mutations; it must be called
inside the same repository transaction as the mutation it records.

AccessAuditReporter answers "who can see or change this, and who changed
it": grants are expanded into concrete users with labeled contexts, and the
resource's change history is attached newest first.
"""

import logging
from collections.abc import Iterable
from typing import Any, Optional

from .config import AccessPolicyConfig
from .errors import NotFoundError
from .models import (
    AccessSelection,
    AccessSummary,
    AccessSummaryEntry,
    AuditAction,
    AuditActor,
    AuditChange,
    AuditEntry,
    FieldChange,
    ScopeType,
    AccessType,
    User,
    UserRole,
)
from .repository import AccessRepository, ResourceRecord
from .scopes import ScopeResolver

logger = logging.getLogger("worldwarden")


class AuditLog:
    """Writes audit entries for resource mutations."""

    def __init__(self, repository: AccessRepository, config: AccessPolicyConfig) -> None:
        self.repository = repository
        self.config = config

    def record(
        self,
        resource: ResourceRecord,
        action: AuditAction,
        actor_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            resource_kind=resource.kind,
            resource_id=resource.id,
            action=action,
            actor_id=actor_id,
            details=details or {},
        )
        self.repository.append_audit_entry(entry)
        logger.info(
            f"Audit {action.value} on {self.config.audit_keys[resource.kind]}/{resource.id} by {actor_id}"
        )
        return entry

    def record_create(
        self,
        resource: ResourceRecord,
        actor_id: str,
        access: Optional[AccessSelection],
    ) -> AuditEntry:
        details = resource.model_dump(
            mode="json",
            include={"name", "description", "status", "world_id", "location_type_id",
                     "parent_location_id", "entity_type_id"},
        )
        details["access"] = access.model_dump(mode="json", by_alias=True) if access else None
        return self.record(resource, AuditAction.CREATE, actor_id, details)

    def record_update(self, resource: ResourceRecord, actor_id: str,
                      changes: list[FieldChange]) -> AuditEntry:
        return self.record(resource, AuditAction.UPDATE, actor_id, {
            "changes": [change.model_dump(mode="json", by_alias=True) for change in changes]
        })

    def record_delete(self, resource: ResourceRecord, actor_id: str) -> AuditEntry:
        return self.record(resource, AuditAction.DELETE, actor_id, {"name": resource.name})

    def record_access_update(self, resource: ResourceRecord, actor_id: str,
                             selection: AccessSelection) -> AuditEntry:
        return self.record(resource, AuditAction.ACCESS_UPDATE, actor_id, {
            "read": selection.read.model_dump(mode="json", by_alias=True),
            "write": selection.write.model_dump(mode="json", by_alias=True),
        })


class _ContextSets:
    """Read and write context labels collected for one user."""

    def __init__(self, user: User) -> None:
        self.user = user
        self.read: set[str] = set()
        self.write: set[str] = set()

    def add(self, access_type: AccessType, label: str) -> None:
        (self.read if access_type == AccessType.READ else self.write).add(label)

    def to_entry(self) -> AccessSummaryEntry:
        return AccessSummaryEntry(
            user_id=self.user.id,
            display_name=self.user.display_name,
            email=self.user.email,
            read_contexts=sorted(self.read),
            write_contexts=sorted(self.write),
        )


class AccessAuditReporter:
    """Builds the access summary of a single resource."""

    def __init__(
        self,
        repository: AccessRepository,
        resolver: ScopeResolver,
        config: AccessPolicyConfig,
    ) -> None:
        self.repository = repository
        self.resolver = resolver
        self.config = config

    def summarize(self, resource_id: str) -> AccessSummary:
        """
        Expand a resource's grants into users and attach its change history.

        GLOBAL grants reach every world member, CAMPAIGN grants the campaign
        GM and the players of its roster, CHARACTER grants the character's
        player. Users are only listed through grants when they are regular
        users; architects are always listed with the "Architect" context.

        Callers are responsible for gating (see WriteAuthorizer.can_manage_access).

        Raises:
            NotFoundError: If the resource doesn't exist
        """
        resource = self.repository.fetch_resource(resource_id)
        if resource is None:
            raise NotFoundError("Resource not found.")

        labels = self.config.labels
        contexts: dict[str, _ContextSets] = {}

        def grant_to(user_ids: Iterable[str], access_type: AccessType, label: str,
                     users_only: bool = True) -> None:
            for user in self.repository.fetch_users(user_ids):
                if users_only and user.role != UserRole.USER:
                    continue
                contexts.setdefault(user.id, _ContextSets(user)).add(access_type, label)

        world_member_ids: Optional[list[str]] = None
        for grant in sorted(self.repository.fetch_grants(resource_id), key=lambda g: g.signature_key):
            if grant.scope_type == ScopeType.GLOBAL:
                if world_member_ids is None:
                    world_member_ids = self.repository.fetch_world_member_user_ids(resource.world_id)
                grant_to(world_member_ids, grant.access_type, labels.global_label)
            elif grant.scope_type == ScopeType.CAMPAIGN:
                campaign = self.resolver.campaign(grant.scope_id)
                if campaign is None:
                    continue
                user_ids = [campaign.gm_user_id]
                for character_id in campaign.roster_character_ids:
                    character = self.resolver.character(character_id)
                    if character is not None:
                        user_ids.append(character.player_id)
                grant_to(dict.fromkeys(user_ids), grant.access_type, labels.campaign(campaign.name))
            else:
                character = self.resolver.character(grant.scope_id)
                if character is None:
                    continue
                grant_to([character.player_id], grant.access_type, labels.character(character.name))

        world = self.resolver.world(resource.world_id)
        if world is not None:
            for access_type in AccessType:
                grant_to(world.roles.all_architect_ids, access_type, labels.architect_label,
                         users_only=False)

        access = sorted(
            (sets.to_entry() for sets in contexts.values()),
            key=lambda entry: entry.display_name.lower(),
        )
        return AccessSummary(access=access, changes=self.changes(resource_id))

    def changes(self, resource_id: str) -> list[AuditChange]:
        """The resource's audit history, newest first, with actor identities."""
        history = self.repository.fetch_audit_history(resource_id)
        actors = {
            user.id: user
            for user in self.repository.fetch_users({entry.actor_id for entry in history})
        }
        changes = []
        for entry in history:
            actor = actors.get(entry.actor_id)
            changes.append(AuditChange(
                id=entry.id,
                action=entry.action,
                actor_id=entry.actor_id,
                actor=AuditActor(id=actor.id, name=actor.name, email=actor.email) if actor else None,
                timestamp=entry.created_at,
                details=entry.details,
            ))
        return changes


__all__ = ["AccessAuditReporter", "AuditLog"]
