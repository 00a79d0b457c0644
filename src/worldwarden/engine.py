"""
Component wiring.

AccessEngine builds every component against one repository and one
configuration. Scope lookups are memoized by the resolver, so build one
engine per request and let it go afterwards.
"""

from typing import Optional

from .audit import AccessAuditReporter, AuditLog
from .authorizer import WriteAuthorizer
from .config import AccessPolicyConfig
from .filters import AccessFilterBuilder
from .grants import AccessGrantStore
from .hierarchy import LocationHierarchyValidator
from .notes import NoteVisibilityEngine
from .repository import AccessRepository
from .resources import ResourceService
from .scopes import ScopeResolver


class AccessEngine:
    """All access-control components for a single request."""

    def __init__(self, repository: AccessRepository, config: Optional[AccessPolicyConfig] = None):
        self.repository = repository
        self.config = config or AccessPolicyConfig()

        self.resolver = ScopeResolver(repository)
        self.hierarchy = LocationHierarchyValidator(repository)
        self.grants = AccessGrantStore(repository, self.config)
        self.filters = AccessFilterBuilder(repository, self.resolver)
        self.authorizer = WriteAuthorizer(repository, self.resolver, self.grants)
        self.notes = NoteVisibilityEngine(repository, self.resolver, self.filters, self.config)
        self.audit_log = AuditLog(repository, self.config)
        self.reporter = AccessAuditReporter(repository, self.resolver, self.config)
        self.resources = ResourceService(
            repository,
            self.resolver,
            self.filters,
            self.authorizer,
            self.grants,
            self.hierarchy,
            self.audit_log,
            self.reporter,
        )


__all__ = ["AccessEngine"]
