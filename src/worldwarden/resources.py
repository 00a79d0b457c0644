"""
Mutation workflows for entities and locations.

Each workflow checks the caller's authority first, validates everything it
is about to write, and then performs the write together with its audit
entry inside one repository transaction.
"""

import logging
from typing import Optional

from .audit import AccessAuditReporter, AuditLog
from .authorizer import WriteAuthorizer
from .errors import ForbiddenError, InvalidRequestError, NotFoundError
from .filters import AccessFilterBuilder
from .grants import AccessGrantStore, signature
from .hierarchy import LocationHierarchyValidator
from .models import (
    AccessSelection,
    AccessSummary,
    Entity,
    FieldChange,
    FieldValue,
    Location,
    RequestContext,
    ResourceDraft,
    ResourceKind,
    ResourcePatch,
    User,
    plain_value,
)
from .repository import AccessRepository, ResourceRecord
from .scopes import ScopeResolver

logger = logging.getLogger("worldwarden")

_ATTRIBUTE_LABELS = {
    "name": "Name",
    "description": "Description",
    "status": "Status",
    "parent_location_id": "Parent Location",
}


class ResourceService:
    """Create, update, delete and re-grant world resources."""

    def __init__(
        self,
        repository: AccessRepository,
        resolver: ScopeResolver,
        filters: AccessFilterBuilder,
        authorizer: WriteAuthorizer,
        grant_store: AccessGrantStore,
        hierarchy: LocationHierarchyValidator,
        audit_log: AuditLog,
        reporter: AccessAuditReporter,
    ) -> None:
        self.repository = repository
        self.resolver = resolver
        self.filters = filters
        self.authorizer = authorizer
        self.grant_store = grant_store
        self.hierarchy = hierarchy
        self.audit_log = audit_log
        self.reporter = reporter

    def _require_resource(self, resource_id: str) -> ResourceRecord:
        resource = self.repository.fetch_resource(resource_id)
        if resource is None:
            raise NotFoundError("Resource not found.")
        return resource

    # -- reading --------------------------------------------------------------

    def get_resource(
        self,
        user: User,
        resource_id: str,
        context: Optional[RequestContext] = None,
    ) -> ResourceRecord:
        """
        Fetch one resource the caller can read.

        Raises:
            NotFoundError: If the resource doesn't exist
            ForbiddenError: If the caller can't read it in this context
        """
        context = context or RequestContext()
        resource = self._require_resource(resource_id)
        if not self.filters.can_read(user, resource, context.campaign_id, context.character_id):
            raise ForbiddenError()
        return resource

    def list_resources(
        self,
        user: User,
        world_id: str,
        kind: Optional[ResourceKind] = None,
        context: Optional[RequestContext] = None,
    ) -> list[ResourceRecord]:
        """Resources of a world the caller can read in a request context."""
        context = context or RequestContext()
        return self.filters.readable(
            user,
            self.repository.list_resources(world_id, kind),
            context.campaign_id,
            context.character_id,
        )

    # -- create ---------------------------------------------------------------

    def create_resource(self, user: User, draft: ResourceDraft) -> ResourceRecord:
        """
        Create an entity or location with its initial grants.

        Without an explicit access selection the resource gets the default
        grants: scoped to the request's campaign when there is one, GLOBAL
        otherwise.

        Raises:
            NotFoundError: Unknown world, or grants naming unknown scopes
            ForbiddenError: Caller may not create resources in the world
            InvalidRequestError: Missing name/type or an invalid parent
        """
        world = self.resolver.world(draft.world_id)
        if world is None:
            raise NotFoundError("World not found.")
        if not self.resolver.can_create_resource(user, draft.world_id):
            raise ForbiddenError()
        if not draft.name or not draft.name.strip():
            raise InvalidRequestError("Name is required.")

        campaign_id = draft.context.campaign_id
        if campaign_id:
            campaign = self.resolver.campaign(campaign_id)
            if campaign is None:
                raise NotFoundError("Campaign not found.")
            if campaign.world_id != draft.world_id:
                raise InvalidRequestError("Campaign world mismatch.")

        common = dict(
            world_id=draft.world_id,
            name=draft.name.strip(),
            description=draft.description,
            status=draft.status,
            field_values=dict(draft.field_values),
            field_labels=dict(draft.field_labels),
        )
        if draft.kind == ResourceKind.LOCATION:
            if not draft.location_type_id:
                raise InvalidRequestError("Location type is required.")
            resource: ResourceRecord = Location(
                location_type_id=draft.location_type_id,
                parent_location_id=draft.parent_location_id,
                **common,
            )
            self.hierarchy.validate_parent(resource, draft.parent_location_id)
        else:
            resource = Entity(entity_type_id=draft.entity_type_id, **common)

        if draft.access is not None:
            grants = self.grant_store.grants_from_selection(resource.id, draft.access)
        else:
            grants = self.grant_store.default_grants(resource.id, campaign_id)
        self.grant_store.validate_scope_targets(draft.world_id, grants)

        with self.repository.transaction():
            self.repository.save_resource(resource)
            self.grant_store.replace_grants(resource.id, grants)
            self.audit_log.record_create(resource, user.id, draft.access)
        return resource

    # -- update ---------------------------------------------------------------

    @staticmethod
    def diff(resource: ResourceRecord, patch: ResourcePatch) -> tuple[dict, list[FieldChange]]:
        """
        Compare a patch against the stored resource.

        Returns:
            (attribute updates to apply, field-level changes for the audit log)
        """
        updates: dict = {}
        changes: list[FieldChange] = []

        for attribute in ("name", "description", "status"):
            new_value = getattr(patch, attribute)
            if new_value is None:
                continue
            old_value = getattr(resource, attribute)
            if new_value != old_value:
                updates[attribute] = new_value
                changes.append(FieldChange(
                    field_key=attribute,
                    label=_ATTRIBUTE_LABELS[attribute],
                    from_value=old_value,
                    to_value=new_value,
                ))

        if patch.change_parent and isinstance(resource, Location):
            if patch.parent_location_id != resource.parent_location_id:
                updates["parent_location_id"] = patch.parent_location_id
                changes.append(FieldChange(
                    field_key="parent_location_id",
                    label=_ATTRIBUTE_LABELS["parent_location_id"],
                    from_value=resource.parent_location_id,
                    to_value=patch.parent_location_id,
                ))

        field_values: dict[str, FieldValue] = dict(resource.field_values)
        for field_key, new_value in patch.field_values.items():
            old_value = field_values.get(field_key)
            if plain_value(old_value) == plain_value(new_value):
                continue
            if new_value is None:
                field_values.pop(field_key, None)
            else:
                field_values[field_key] = new_value
            changes.append(FieldChange(
                field_key=field_key,
                label=resource.field_labels.get(field_key, field_key),
                from_value=plain_value(old_value),
                to_value=plain_value(new_value),
            ))
        if field_values != resource.field_values:
            updates["field_values"] = field_values

        return updates, changes

    def update_resource(
        self,
        user: User,
        resource_id: str,
        patch: ResourcePatch,
        context: Optional[RequestContext] = None,
    ) -> ResourceRecord:
        """
        Apply a partial update.

        A reparent is validated against the stored hierarchy before anything
        is written. An update entry is audited only when something changed.

        Raises:
            NotFoundError: If the resource doesn't exist
            ForbiddenError: If the caller can't write it in this context
            InvalidRequestError: Invalid reparent
        """
        context = context or RequestContext()
        resource = self._require_resource(resource_id)
        self.authorizer.require_write(user, resource_id, context.campaign_id, context.character_id)

        if patch.change_parent and not isinstance(resource, Location):
            raise InvalidRequestError("Only locations have a parent.")

        updates, changes = self.diff(resource, patch)
        if "parent_location_id" in updates:
            self.hierarchy.validate_parent(resource, updates["parent_location_id"])

        if not changes:
            logger.debug(f"Update of {resource_id} by {user.id} changed nothing")
            return resource

        updated = resource.model_copy(update=updates)
        with self.repository.transaction():
            self.repository.save_resource(updated)
            self.audit_log.record_update(updated, user.id, changes)
        return updated

    # -- delete ---------------------------------------------------------------

    def delete_resource(
        self,
        user: User,
        resource_id: str,
        context: Optional[RequestContext] = None,
    ) -> None:
        """
        Delete a resource together with its grants and notes.

        Audit entries of the resource are kept. Locations that still have
        child locations cannot be deleted.
        """
        context = context or RequestContext()
        resource = self._require_resource(resource_id)
        self.authorizer.require_write(user, resource_id, context.campaign_id, context.character_id)

        if isinstance(resource, Location):
            children = [
                child for child in self.repository.list_resources(resource.world_id, ResourceKind.LOCATION)
                if isinstance(child, Location) and child.parent_location_id == resource.id
            ]
            if children:
                raise InvalidRequestError("Location has child locations.")

        with self.repository.transaction():
            self.audit_log.record_delete(resource, user.id)
            self.repository.delete_resource(resource_id)

    # -- access ---------------------------------------------------------------

    def _require_manager(self, user: User, resource: ResourceRecord) -> None:
        if not self.authorizer.can_manage_access(user, resource.world_id):
            raise ForbiddenError()

    def access_selection(self, user: User, resource_id: str) -> AccessSelection:
        """The resource's current grants in request shape."""
        resource = self._require_resource(resource_id)
        self._require_manager(user, resource)
        return self.grant_store.selection_from_grants(self.grant_store.fetch_grants(resource_id))

    def update_access(self, user: User, resource_id: str, selection: AccessSelection) -> bool:
        """
        Replace a resource's grants with a submitted selection.

        The old and new signatures are compared inside the same transaction
        as the replace; an access_update entry is written only when they
        differ. Concurrent edits are not detected: the last one wins.

        Returns:
            True if the grant set changed
        """
        resource = self._require_resource(resource_id)
        self._require_manager(user, resource)

        grants = self.grant_store.grants_from_selection(resource_id, selection)
        self.grant_store.validate_scope_targets(resource.world_id, grants)

        with self.repository.transaction():
            changed = signature(self.grant_store.fetch_grants(resource_id)) != signature(grants)
            self.grant_store.replace_grants(resource_id, grants)
            if changed:
                self.audit_log.record_access_update(resource, user.id, selection)
            else:
                logger.debug(f"Access edit of {resource_id} by {user.id} changed nothing")
        return changed

    def summarize_access(self, user: User, resource_id: str) -> AccessSummary:
        """Access summary and change log, for access managers only."""
        resource = self._require_resource(resource_id)
        self._require_manager(user, resource)
        return self.reporter.summarize(resource_id)


__all__ = ["ResourceService"]
