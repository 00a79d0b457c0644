"""
Access grant store.

Grants are managed as whole sets per resource: an edit deletes every grant
of the resource and inserts the new set inside one transaction. A grant
set's signature is a canonical, order-independent string used to tell
whether an edit changed anything.
"""

import logging
from collections.abc import Iterable
from typing import Optional

from .config import AccessPolicyConfig
from .errors import InvalidRequestError, NotFoundError
from .models import (
    AccessGrant,
    AccessSelection,
    AccessType,
    ScopeSelection,
    ScopeType,
)
from .repository import AccessRepository

logger = logging.getLogger("worldwarden")


def signature(grants: Iterable[AccessGrant]) -> str:
    """
    Canonical fingerprint of a grant set.

    Sorted '{access}:{scope}:{scope_id}' keys joined by '|'. Reordering the
    input or repeating a grant does not change the result.
    """
    return "|".join(sorted({grant.signature_key for grant in grants}))


class AccessGrantStore:
    """Reads and replaces grant sets, and converts them to and from request shapes."""

    def __init__(self, repository: AccessRepository, config: AccessPolicyConfig) -> None:
        self.repository = repository
        self.config = config

    signature = staticmethod(signature)

    def fetch_grants(self, resource_id: str) -> frozenset[AccessGrant]:
        return frozenset(self.repository.fetch_grants(resource_id))

    def replace_grants(self, resource_id: str, grants: Iterable[AccessGrant]) -> frozenset[AccessGrant]:
        """
        Atomically replace every grant of a resource.

        Duplicate grants are collapsed. Grants addressed to another
        resource are rejected before anything is written.

        Returns:
            The stored grant set
        """
        unique = list(dict.fromkeys(grants))
        foreign = [g for g in unique if g.resource_id != resource_id]
        if foreign:
            raise InvalidRequestError("Grants must all belong to the edited resource.")

        with self.repository.transaction():
            self.repository.replace_grants(resource_id, unique)
        logger.info(f"Replaced grants for {resource_id} ({len(unique)} grants)")
        return frozenset(unique)

    # -- request shapes -------------------------------------------------------

    @staticmethod
    def grants_from_selection(resource_id: str, selection: AccessSelection) -> list[AccessGrant]:
        """
        Expand a {read: {...}, write: {...}} selection into grants.

        Empty and repeated scope ids are skipped.
        """
        grants: list[AccessGrant] = []
        for access_type, scopes in (
            (AccessType.READ, selection.read),
            (AccessType.WRITE, selection.write),
        ):
            if scopes.global_:
                grants.append(AccessGrant(
                    resource_id=resource_id,
                    access_type=access_type,
                    scope_type=ScopeType.GLOBAL,
                ))
            for scope_type, scope_ids in (
                (ScopeType.CAMPAIGN, scopes.campaigns),
                (ScopeType.CHARACTER, scopes.characters),
            ):
                for scope_id in dict.fromkeys(s for s in scope_ids if s):
                    grants.append(AccessGrant(
                        resource_id=resource_id,
                        access_type=access_type,
                        scope_type=scope_type,
                        scope_id=scope_id,
                    ))
        return grants

    @staticmethod
    def selection_from_grants(grants: Iterable[AccessGrant]) -> AccessSelection:
        """Inverse of grants_from_selection; scope ids come back sorted."""
        scopes: dict[AccessType, dict[str, object]] = {
            access_type: {"global": False, "campaigns": set(), "characters": set()}
            for access_type in AccessType
        }
        for grant in grants:
            bucket = scopes[grant.access_type]
            if grant.scope_type == ScopeType.GLOBAL:
                bucket["global"] = True
            elif grant.scope_type == ScopeType.CAMPAIGN:
                bucket["campaigns"].add(grant.scope_id)
            else:
                bucket["characters"].add(grant.scope_id)

        def _selection(bucket: dict[str, object]) -> ScopeSelection:
            return ScopeSelection(
                global_=bucket["global"],
                campaigns=sorted(bucket["campaigns"]),
                characters=sorted(bucket["characters"]),
            )

        return AccessSelection(
            read=_selection(scopes[AccessType.READ]),
            write=_selection(scopes[AccessType.WRITE]),
        )

    def default_grants(self, resource_id: str, campaign_id: Optional[str] = None) -> list[AccessGrant]:
        """
        Grants given to a resource created without an explicit access selection.

        Scoped to the creating campaign when there is one, GLOBAL otherwise.
        """
        scope_type = ScopeType.CAMPAIGN if campaign_id else ScopeType.GLOBAL
        return [
            AccessGrant(
                resource_id=resource_id,
                access_type=access_type,
                scope_type=scope_type,
                scope_id=campaign_id or None,
            )
            for access_type in self.config.default_access_types
        ]

    def validate_scope_targets(self, world_id: str, grants: Iterable[AccessGrant]) -> None:
        """
        Make sure every scoped grant points at a campaign or character of the world.

        Raises:
            NotFoundError: If a campaign or character doesn't exist in the world
        """
        for grant in grants:
            if grant.scope_type == ScopeType.CAMPAIGN:
                campaign = self.repository.fetch_campaign(grant.scope_id)
                if campaign is None or campaign.world_id != world_id:
                    raise NotFoundError("Campaign not found.")
            elif grant.scope_type == ScopeType.CHARACTER:
                character = self.repository.fetch_character(grant.scope_id)
                if character is None or character.world_id != world_id:
                    raise NotFoundError("Character not found.")


__all__ = ["AccessGrantStore", "signature"]
