"""
Location hierarchy validation.

Locations form a forest through parent_location_id. Before a reparent is
written, the proposed parent chain is walked upward to make sure the
location would not become its own ancestor, and the world's location type
rules are consulted to make sure the parent's type may contain the child's.
"""

import logging
from collections import deque
from typing import Optional

from .errors import InvalidRequestError
from .models import Location
from .repository import AccessRepository

logger = logging.getLogger("worldwarden")


class LocationHierarchyValidator:
    """Checks location reparent operations against the stored hierarchy."""

    def __init__(self, repository: AccessRepository) -> None:
        self.repository = repository

    def has_cycle(self, node_id: str, proposed_parent_id: Optional[str]) -> bool:
        """
        Check whether making proposed_parent_id the parent of node_id creates a cycle.

        Walks parent links upward from the proposed parent using the
        currently stored chain. A chain that revisits a node without ever
        reaching node_id is already corrupt and is reported as a cycle too,
        which also guarantees the walk ends.

        Args:
            node_id: The location being reparented
            proposed_parent_id: Its new parent, or None to detach

        Returns:
            True if node_id would become its own ancestor
        """
        current_id = proposed_parent_id
        seen: set[str] = set()
        while current_id:
            if current_id == node_id:
                return True
            if current_id in seen:
                logger.warning(f"Existing location chain loops at {current_id}")
                return True
            seen.add(current_id)
            current_id = self.repository.fetch_location_parent_id(current_id)
        return False

    def allowed_parent_type_ids(self, child_type_id: str, world_id: str) -> set[str]:
        """
        Location types that may contain a location of child_type_id.

        Allowed rules are followed transitively (a type allowed under a
        type that is itself allowed under X may also sit under X); parent
        types directly denied for the child type are then removed.
        """
        allowed_by_child: dict[str, set[str]] = {}
        denied_by_child: dict[str, set[str]] = {}
        for rule in self.repository.fetch_location_type_rules(world_id):
            target = allowed_by_child if rule.allowed else denied_by_child
            target.setdefault(rule.child_type_id, set()).add(rule.parent_type_id)

        allowed: set[str] = set()
        queue = deque([child_type_id])
        visited = {child_type_id}
        while queue:
            current = queue.popleft()
            for parent_type_id in allowed_by_child.get(current, set()):
                allowed.add(parent_type_id)
                if parent_type_id not in visited:
                    visited.add(parent_type_id)
                    queue.append(parent_type_id)

        return allowed - denied_by_child.get(child_type_id, set())

    def validate_parent(self, location: Location, proposed_parent_id: Optional[str]) -> None:
        """
        Validate a parent assignment for a location before it is written.

        Args:
            location: The location as currently stored (or being created)
            proposed_parent_id: The new parent id; None detaches and is always valid

        Raises:
            InvalidRequestError: Own parent, foreign or missing parent,
                disallowed parent type, or a cycle
        """
        if proposed_parent_id is None:
            return
        if proposed_parent_id == location.id:
            raise InvalidRequestError("Location cannot be its own parent.")

        parent = self.repository.fetch_resource(proposed_parent_id)
        if not isinstance(parent, Location) or parent.world_id != location.world_id:
            raise InvalidRequestError("Parent location must belong to the same world.")

        allowed = self.allowed_parent_type_ids(location.location_type_id, location.world_id)
        if parent.location_type_id not in allowed:
            raise InvalidRequestError("Location type rule does not allow this parent.")

        if self.has_cycle(location.id, proposed_parent_id):
            raise InvalidRequestError("Location parent would create a cycle.")


__all__ = ["LocationHierarchyValidator"]
