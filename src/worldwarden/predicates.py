"""
Read predicates as a small tagged expression tree.

A ReadPredicate is one of:
- WorldMatch: the resource belongs to a world
- KindMatch: the resource is an entity / a location
- ScopeMatch: the resource carries a grant of the given access type and scope
- And / Or: conjunction / disjunction of predicates

Predicates are immutable pydantic models, so they compare by value,
serialize with model_dump(), and can be rendered either way the backing
store needs: evaluate() checks one resource in memory, to_sql() renders a
parameterized WHERE fragment over `resources r` / `resource_access a`.
"""

from collections.abc import Collection
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .models import AccessGrant, AccessType, ResourceKind, ScopeType


class _Predicate(BaseModel):
    """Shared behavior of every predicate node."""
    model_config = ConfigDict(frozen=True)

    def evaluate(self, resource: Any, grants: Collection[AccessGrant]) -> bool:
        raise NotImplementedError

    def to_sql(self) -> tuple[str, list[str]]:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError

    def __and__(self, other: "ReadPredicate") -> "And":
        return And(clauses=(self, other))

    def __or__(self, other: "ReadPredicate") -> "Or":
        return Or(clauses=(self, other))


class WorldMatch(_Predicate):
    """Resource belongs to world_id."""
    op: Literal["world"] = "world"
    world_id: str

    def evaluate(self, resource: Any, grants: Collection[AccessGrant]) -> bool:
        return resource.world_id == self.world_id

    def to_sql(self) -> tuple[str, list[str]]:
        return "r.world_id = ?", [self.world_id]

    def describe(self) -> str:
        return f"world={self.world_id}"


class KindMatch(_Predicate):
    """Resource is of the given kind."""
    op: Literal["kind"] = "kind"
    kind: ResourceKind

    def evaluate(self, resource: Any, grants: Collection[AccessGrant]) -> bool:
        return resource.kind == self.kind

    def to_sql(self) -> tuple[str, list[str]]:
        return "r.kind = ?", [self.kind.value]

    def describe(self) -> str:
        return f"kind={self.kind.value}"


class ScopeMatch(_Predicate):
    """Resource has a grant of access_type at scope_type (and scope_id, if scoped)."""
    op: Literal["scope"] = "scope"
    access_type: AccessType
    scope_type: ScopeType
    scope_id: Optional[str] = None

    def matches(self, grant: AccessGrant) -> bool:
        if grant.access_type != self.access_type or grant.scope_type != self.scope_type:
            return False
        if self.scope_type == ScopeType.GLOBAL:
            return True
        return grant.scope_id == self.scope_id

    def evaluate(self, resource: Any, grants: Collection[AccessGrant]) -> bool:
        return any(self.matches(grant) for grant in grants)

    def to_sql(self) -> tuple[str, list[str]]:
        sql = (
            "EXISTS (SELECT 1 FROM resource_access a WHERE a.resource_id = r.id"
            " AND a.access_type = ? AND a.scope_type = ?"
        )
        params = [self.access_type.value, self.scope_type.value]
        if self.scope_type != ScopeType.GLOBAL:
            sql += " AND a.scope_id = ?"
            params.append(self.scope_id or "")
        return sql + ")", params

    def describe(self) -> str:
        if self.scope_id:
            return f"{self.access_type.value}@{self.scope_type.value}:{self.scope_id}"
        return f"{self.access_type.value}@{self.scope_type.value}"


class And(_Predicate):
    """All clauses hold. An empty And is true."""
    op: Literal["and"] = "and"
    clauses: tuple["ReadPredicate", ...] = ()

    def evaluate(self, resource: Any, grants: Collection[AccessGrant]) -> bool:
        return all(clause.evaluate(resource, grants) for clause in self.clauses)

    def to_sql(self) -> tuple[str, list[str]]:
        if not self.clauses:
            return "1 = 1", []
        return _join_sql(self.clauses, " AND ")

    def describe(self) -> str:
        return "(" + " AND ".join(c.describe() for c in self.clauses) + ")"


class Or(_Predicate):
    """At least one clause holds. An empty Or is false."""
    op: Literal["or"] = "or"
    clauses: tuple["ReadPredicate", ...] = ()

    def evaluate(self, resource: Any, grants: Collection[AccessGrant]) -> bool:
        return any(clause.evaluate(resource, grants) for clause in self.clauses)

    def to_sql(self) -> tuple[str, list[str]]:
        if not self.clauses:
            return "1 = 0", []
        return _join_sql(self.clauses, " OR ")

    def describe(self) -> str:
        return "(" + " OR ".join(c.describe() for c in self.clauses) + ")"


ReadPredicate = Annotated[
    Union[WorldMatch, KindMatch, ScopeMatch, And, Or],
    Field(discriminator="op"),
]

And.model_rebuild()
Or.model_rebuild()


def _join_sql(clauses: tuple[Any, ...], joiner: str) -> tuple[str, list[str]]:
    parts: list[str] = []
    params: list[str] = []
    for clause in clauses:
        sql, clause_params = clause.to_sql()
        parts.append(sql)
        params.extend(clause_params)
    return "(" + joiner.join(parts) + ")", params


def all_of(*clauses: Any) -> And:
    """Conjunction of the given predicates."""
    return And(clauses=tuple(clauses))


def any_of(*clauses: Any) -> Or:
    """Disjunction of the given predicates."""
    return Or(clauses=tuple(clauses))


__all__ = [
    "ReadPredicate",
    "WorldMatch",
    "KindMatch",
    "ScopeMatch",
    "And",
    "Or",
    "all_of",
    "any_of",
]
