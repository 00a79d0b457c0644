"""
SQLite-backed repository.

Identity records, resources and notes are stored as validated JSON
documents next to the columns that queries filter on. Grants live in their
own table, unique on (resource_id, access_type, scope_type, scope_id) with
the GLOBAL scope stored as '' so the constraint also covers it. Read
predicates render straight to SQL against this schema (see
list_readable_resources).
"""

import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from pydantic import TypeAdapter

from .models import (
    AccessGrant,
    AccessType,
    AnyResource,
    AuditEntry,
    Campaign,
    Character,
    LocationTypeRule,
    Note,
    ResourceKind,
    ScopeType,
    User,
    World,
)
from .predicates import ReadPredicate
from .repository import AccessRepository, ResourceRecord

logger = logging.getLogger("worldwarden.sqlite")

_resource_adapter: TypeAdapter = TypeAdapter(AnyResource)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS worlds (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS campaigns (
    id TEXT PRIMARY KEY,
    world_id TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_campaigns_world ON campaigns(world_id);

CREATE TABLE IF NOT EXISTS characters (
    id TEXT PRIMARY KEY,
    world_id TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_characters_world ON characters(world_id);

CREATE TABLE IF NOT EXISTS location_type_rules (
    world_id TEXT NOT NULL,
    parent_type_id TEXT NOT NULL,
    child_type_id TEXT NOT NULL,
    allowed INTEGER NOT NULL DEFAULT 1
);

-- Entities and locations share one table; kind tells them apart
CREATE TABLE IF NOT EXISTS resources (
    id TEXT PRIMARY KEY,
    world_id TEXT NOT NULL,
    kind TEXT NOT NULL CHECK(kind IN ('entity', 'location')),
    parent_location_id TEXT,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_resources_world ON resources(world_id, kind);

CREATE TABLE IF NOT EXISTS resource_access (
    resource_id TEXT NOT NULL,
    access_type TEXT NOT NULL CHECK(access_type IN ('READ', 'WRITE')),
    scope_type TEXT NOT NULL CHECK(scope_type IN ('GLOBAL', 'CAMPAIGN', 'CHARACTER')),
    scope_id TEXT NOT NULL DEFAULT '',       -- '' for GLOBAL
    UNIQUE(resource_id, access_type, scope_type, scope_id)
);

CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    resource_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_notes_resource ON notes(resource_id);

-- Append-only; rows are never updated or deleted
CREATE TABLE IF NOT EXISTS audit_entries (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    resource_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_resource ON audit_entries(resource_id);
"""


def connect(db_path: str | Path = ":memory:") -> sqlite3.Connection:
    """Open a connection configured for explicit transaction control."""
    conn = sqlite3.connect(str(db_path), isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


class SqliteRepository(AccessRepository):
    """AccessRepository on top of a sqlite3 connection."""

    def __init__(self, db_path: str | Path = ":memory:", conn: sqlite3.Connection | None = None):
        self.conn = conn or connect(db_path)
        self.conn.executescript(SCHEMA_SQL)
        self._depth = 0
        logger.debug(f"SQLite repository ready at {db_path}")

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._depth > 0:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        self.conn.execute("BEGIN")
        self._depth = 1
        try:
            yield
        except BaseException:
            self.conn.execute("ROLLBACK")
            logger.debug("Transaction rolled back")
            raise
        else:
            self.conn.execute("COMMIT")
        finally:
            self._depth = 0

    def close(self) -> None:
        self.conn.close()

    # -- seeding --------------------------------------------------------------

    def add_user(self, user: User) -> User:
        with self.transaction():
            self.conn.execute(
                "INSERT OR REPLACE INTO users (id, data) VALUES (?, ?)",
                (user.id, user.model_dump_json()),
            )
        return user

    def add_world(self, world: World) -> World:
        with self.transaction():
            self.conn.execute(
                "INSERT OR REPLACE INTO worlds (id, data) VALUES (?, ?)",
                (world.id, world.model_dump_json()),
            )
        return world

    def add_campaign(self, campaign: Campaign) -> Campaign:
        with self.transaction():
            self.conn.execute(
                "INSERT OR REPLACE INTO campaigns (id, world_id, data) VALUES (?, ?, ?)",
                (campaign.id, campaign.world_id, campaign.model_dump_json()),
            )
        return campaign

    def add_character(self, character: Character) -> Character:
        with self.transaction():
            self.conn.execute(
                "INSERT OR REPLACE INTO characters (id, world_id, data) VALUES (?, ?, ?)",
                (character.id, character.world_id, character.model_dump_json()),
            )
        return character

    def add_location_type_rule(self, world_id: str, rule: LocationTypeRule) -> None:
        with self.transaction():
            self.conn.execute(
                "INSERT INTO location_type_rules (world_id, parent_type_id, child_type_id, allowed)"
                " VALUES (?, ?, ?, ?)",
                (world_id, rule.parent_type_id, rule.child_type_id, int(rule.allowed)),
            )

    # -- identity -------------------------------------------------------------

    def _fetch_document(self, table: str, record_id: str) -> Optional[str]:
        row = self.conn.execute(
            f"SELECT data FROM {table} WHERE id = ?", (record_id,)
        ).fetchone()
        return row["data"] if row else None

    def fetch_user(self, user_id: str) -> Optional[User]:
        data = self._fetch_document("users", user_id)
        return User.model_validate_json(data) if data else None

    def fetch_world(self, world_id: str) -> Optional[World]:
        data = self._fetch_document("worlds", world_id)
        return World.model_validate_json(data) if data else None

    def fetch_campaign(self, campaign_id: str) -> Optional[Campaign]:
        data = self._fetch_document("campaigns", campaign_id)
        return Campaign.model_validate_json(data) if data else None

    def fetch_character(self, character_id: str) -> Optional[Character]:
        data = self._fetch_document("characters", character_id)
        return Character.model_validate_json(data) if data else None

    def fetch_campaigns_in_world(self, world_id: str) -> list[Campaign]:
        rows = self.conn.execute(
            "SELECT data FROM campaigns WHERE world_id = ? ORDER BY id", (world_id,)
        ).fetchall()
        return [Campaign.model_validate_json(row["data"]) for row in rows]

    def fetch_characters_in_world(self, world_id: str) -> list[Character]:
        rows = self.conn.execute(
            "SELECT data FROM characters WHERE world_id = ? ORDER BY id", (world_id,)
        ).fetchall()
        return [Character.model_validate_json(row["data"]) for row in rows]

    # -- resources ------------------------------------------------------------

    def fetch_resource(self, resource_id: str) -> Optional[ResourceRecord]:
        data = self._fetch_document("resources", resource_id)
        return _resource_adapter.validate_json(data) if data else None

    def list_resources(
        self, world_id: str, kind: Optional[ResourceKind] = None
    ) -> list[ResourceRecord]:
        if kind is None:
            rows = self.conn.execute(
                "SELECT data FROM resources WHERE world_id = ? ORDER BY id", (world_id,)
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT data FROM resources WHERE world_id = ? AND kind = ? ORDER BY id",
                (world_id, kind.value),
            ).fetchall()
        return [_resource_adapter.validate_json(row["data"]) for row in rows]

    def list_readable_resources(self, predicate: ReadPredicate) -> list[ResourceRecord]:
        """Resources matching a read predicate, filtered inside SQLite."""
        where, params = predicate.to_sql()
        rows = self.conn.execute(
            f"SELECT r.data FROM resources r WHERE {where} ORDER BY r.id", params
        ).fetchall()
        return [_resource_adapter.validate_json(row["data"]) for row in rows]

    def save_resource(self, resource: ResourceRecord) -> None:
        parent_id = getattr(resource, "parent_location_id", None)
        with self.transaction():
            self.conn.execute(
                "INSERT OR REPLACE INTO resources (id, world_id, kind, parent_location_id, data)"
                " VALUES (?, ?, ?, ?, ?)",
                (resource.id, resource.world_id, resource.kind.value, parent_id,
                 resource.model_dump_json()),
            )

    def delete_resource(self, resource_id: str) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM resource_access WHERE resource_id = ?", (resource_id,))
            self.conn.execute("DELETE FROM notes WHERE resource_id = ?", (resource_id,))
            self.conn.execute("DELETE FROM resources WHERE id = ?", (resource_id,))

    def fetch_location_parent_id(self, location_id: str) -> Optional[str]:
        row = self.conn.execute(
            "SELECT parent_location_id FROM resources WHERE id = ? AND kind = 'location'",
            (location_id,),
        ).fetchone()
        return row["parent_location_id"] if row else None

    def fetch_location_type_rules(self, world_id: str) -> list[LocationTypeRule]:
        rows = self.conn.execute(
            "SELECT parent_type_id, child_type_id, allowed FROM location_type_rules"
            " WHERE world_id = ?",
            (world_id,),
        ).fetchall()
        return [
            LocationTypeRule(
                parent_type_id=row["parent_type_id"],
                child_type_id=row["child_type_id"],
                allowed=bool(row["allowed"]),
            )
            for row in rows
        ]

    # -- grants ---------------------------------------------------------------

    def fetch_grants(self, resource_id: str) -> list[AccessGrant]:
        rows = self.conn.execute(
            "SELECT access_type, scope_type, scope_id FROM resource_access"
            " WHERE resource_id = ? ORDER BY access_type, scope_type, scope_id",
            (resource_id,),
        ).fetchall()
        return [
            AccessGrant(
                resource_id=resource_id,
                access_type=AccessType(row["access_type"]),
                scope_type=ScopeType(row["scope_type"]),
                scope_id=row["scope_id"] or None,
            )
            for row in rows
        ]

    def replace_grants(self, resource_id: str, grants: Iterable[AccessGrant]) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM resource_access WHERE resource_id = ?", (resource_id,))
            self.conn.executemany(
                "INSERT OR IGNORE INTO resource_access"
                " (resource_id, access_type, scope_type, scope_id) VALUES (?, ?, ?, ?)",
                [
                    (resource_id, g.access_type.value, g.scope_type.value, g.scope_id or "")
                    for g in grants
                ],
            )

    # -- notes ----------------------------------------------------------------

    def fetch_note(self, note_id: str) -> Optional[Note]:
        data = self._fetch_document("notes", note_id)
        return Note.model_validate_json(data) if data else None

    def fetch_notes(self, resource_id: str) -> list[Note]:
        rows = self.conn.execute(
            "SELECT data FROM notes WHERE resource_id = ? ORDER BY created_at DESC, rowid DESC",
            (resource_id,),
        ).fetchall()
        return [Note.model_validate_json(row["data"]) for row in rows]

    def save_note(self, note: Note) -> None:
        with self.transaction():
            self.conn.execute(
                "INSERT OR REPLACE INTO notes (id, resource_id, created_at, data) VALUES (?, ?, ?, ?)",
                (note.id, note.resource_id, note.created_at.isoformat(), note.model_dump_json()),
            )

    def delete_note(self, note_id: str) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))

    # -- audit ----------------------------------------------------------------

    def append_audit_entry(self, entry: AuditEntry) -> None:
        with self.transaction():
            self.conn.execute(
                "INSERT INTO audit_entries (id, resource_id, created_at, data) VALUES (?, ?, ?, ?)",
                (entry.id, entry.resource_id, entry.created_at.isoformat(),
                 entry.model_dump_json()),
            )

    def fetch_audit_history(self, resource_id: str) -> list[AuditEntry]:
        rows = self.conn.execute(
            "SELECT data FROM audit_entries WHERE resource_id = ?"
            " ORDER BY created_at DESC, seq DESC",
            (resource_id,),
        ).fetchall()
        return [AuditEntry.model_validate_json(row["data"]) for row in rows]

    def audit_entry_count(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) AS n FROM audit_entries").fetchone()
        return int(row["n"])


__all__ = ["SqliteRepository", "SCHEMA_SQL", "connect"]
