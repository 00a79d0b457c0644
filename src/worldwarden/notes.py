"""
Note visibility and authoring rules.

Notes attached to entities and locations come in three visibility classes:
- PRIVATE: the author, the campaign GM acting in the note's campaign, and
  privileged readers (architects, world GMs)
- SHARED: anyone who can read the parent resource in the note's campaign
- GM: the campaign GM, architects when share_with_architect is set, and
  players of the characters the note is explicitly shared with

Admins see every note. A GM note is hidden from its own author once the
author is no longer the GM of the note's campaign: notes of that class
belong to the GM role, not to the person who wrote them.

Key components:
- extract_note_tags: parses @[Label](entity:id) mentions out of a body
- NoteReader: a reader's roles, resolved once per request
- NoteVisibilityEngine: eligibility checks, listing, and authoring workflows
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from .config import AccessPolicyConfig
from .errors import ForbiddenError, InvalidRequestError, NotFoundError
from .filters import AccessFilterBuilder
from .models import (
    Campaign,
    Character,
    Note,
    NoteDraft,
    NoteEdit,
    NoteTag,
    NoteTagType,
    NoteTagView,
    NoteView,
    NoteVisibility,
    ResourceKind,
    User,
)
from .repository import AccessRepository, ResourceRecord
from .scopes import ScopeResolver

logger = logging.getLogger("worldwarden")

NOTE_TAG_PATTERN = re.compile(r"@\[([^\]]+)\]\((entity|location):([^)]+)\)")

_TAG_KINDS = {
    NoteTagType.ENTITY: ResourceKind.ENTITY,
    NoteTagType.LOCATION: ResourceKind.LOCATION,
}


def extract_note_tags(body: str) -> list[NoteTag]:
    """
    Extract resource mentions from a note body.

    Mentions look like @[Label](entity:<id>) or @[Label](location:<id>).
    Repeated mentions of the same target keep the first label.
    """
    tags: dict[tuple[NoteTagType, str], NoteTag] = {}
    for label, raw_type, target_id in NOTE_TAG_PATTERN.findall(body or ""):
        if not label or not target_id:
            continue
        tag_type = NoteTagType.LOCATION if raw_type == "location" else NoteTagType.ENTITY
        tags.setdefault((tag_type, target_id), NoteTag(tag_type=tag_type, target_id=target_id, label=label))
    return list(tags.values())


@dataclass
class NoteReader:
    """
    A reader's roles in the world of the notes being read.

    Attributes:
        user_id: The reader
        campaign_id: Campaign context of the request (None = no campaign)
        is_admin: System administrator
        is_architect: Architect of the world
        is_world_gm: World-level game master
        is_context_campaign_gm: GM of the request's campaign
        played_character_ids: Roster characters of that campaign the reader controls
    """
    user_id: str
    campaign_id: Optional[str] = None
    is_admin: bool = False
    is_architect: bool = False
    is_world_gm: bool = False
    is_context_campaign_gm: bool = False
    played_character_ids: set[str] = field(default_factory=set)

    def acts_as_gm_of(self, campaign_id: Optional[str]) -> bool:
        return bool(campaign_id) and self.campaign_id == campaign_id and self.is_context_campaign_gm


def is_note_visible(note: Note, reader: NoteReader) -> bool:
    """
    Decide whether one reader may see one note.

    Does not check access to the parent resource; callers do that first.
    """
    if reader.is_admin:
        return True

    if note.visibility == NoteVisibility.GM:
        if not reader.campaign_id or reader.campaign_id != note.campaign_id:
            return False
        if reader.is_context_campaign_gm:
            return True
        if note.share_with_architect and reader.is_architect:
            return True
        return bool(set(note.share_character_ids) & reader.played_character_ids)

    if note.visibility == NoteVisibility.SHARED:
        return bool(note.campaign_id) and reader.campaign_id == note.campaign_id

    # PRIVATE
    if note.author_id == reader.user_id:
        return True
    if reader.acts_as_gm_of(note.campaign_id):
        return True
    return reader.is_architect or reader.is_world_gm


class NoteVisibilityEngine:
    """Applies note visibility to readers and authoring constraints to writers."""

    def __init__(
        self,
        repository: AccessRepository,
        resolver: ScopeResolver,
        filters: AccessFilterBuilder,
        config: AccessPolicyConfig,
    ) -> None:
        self.repository = repository
        self.resolver = resolver
        self.filters = filters
        self.config = config

    # -- reading --------------------------------------------------------------

    def reader_for(self, user: User, world_id: str, campaign_id: Optional[str] = None) -> NoteReader:
        """Resolve the roles of a reader once for a whole listing."""
        return NoteReader(
            user_id=user.id,
            campaign_id=campaign_id,
            is_admin=self.resolver.is_admin(user),
            is_architect=self.resolver.is_architect(user.id, world_id),
            is_world_gm=self.resolver.is_game_master(user.id, world_id),
            is_context_campaign_gm=(
                self.resolver.is_campaign_gm(user.id, campaign_id) if campaign_id else False
            ),
            played_character_ids=(
                self.resolver.controlled_roster_character_ids(user.id, campaign_id)
                if campaign_id else set()
            ),
        )

    def can_read_note(
        self,
        user: User,
        note: Note,
        campaign_id: Optional[str] = None,
        character_id: Optional[str] = None,
    ) -> bool:
        """
        Check whether a user may read a single note in a request context.

        Only notes written in the request's campaign qualify (no campaign
        matches notes without one), as in list_notes(). The parent resource
        must be readable in the context, and the note must be eligible for
        the reader.
        """
        if note.campaign_id != (campaign_id or None):
            return False
        resource = self.repository.fetch_resource(note.resource_id)
        if resource is None:
            return False
        if not self.filters.can_read(user, resource, campaign_id, character_id):
            return False
        return is_note_visible(note, self.reader_for(user, resource.world_id, campaign_id))

    def list_notes(
        self,
        user: User,
        resource_id: str,
        campaign_id: Optional[str] = None,
        character_id: Optional[str] = None,
    ) -> list[NoteView]:
        """
        Notes on a resource visible to a user, newest first.

        Only notes written in the request's campaign are considered (no
        campaign matches notes without one).

        Raises:
            NotFoundError: If the resource doesn't exist
            ForbiddenError: If the user can't read the resource in this context
        """
        resource = self._require_resource(resource_id)
        if not self.filters.can_read(user, resource, campaign_id, character_id):
            raise ForbiddenError()

        reader = self.reader_for(user, resource.world_id, campaign_id)
        notes = [
            note for note in self.repository.fetch_notes(resource_id)
            if note.campaign_id == (campaign_id or None) and is_note_visible(note, reader)
        ]
        logger.debug(f"{len(notes)} visible notes on {resource_id} for {user.id}")
        return [self._view(note, user, resource, campaign_id, character_id) for note in notes]

    def _view(
        self,
        note: Note,
        user: User,
        resource: ResourceRecord,
        campaign_id: Optional[str],
        character_id: Optional[str],
    ) -> NoteView:
        author = self.repository.fetch_user(note.author_id)
        author_base = author.display_name if author else note.author_id
        character = self.resolver.character(note.character_id) if note.character_id else None
        author_label = f"{character.name} played by {author_base}" if character else author_base

        role_label = None
        if note.visibility == NoteVisibility.GM:
            role_label = "GM"
        elif note.visibility == NoteVisibility.SHARED:
            if self.resolver.is_architect(note.author_id, resource.world_id):
                role_label = "Architect"
            elif note.campaign_id and self.resolver.is_campaign_gm(note.author_id, note.campaign_id):
                role_label = "GM"

        tags = []
        for tag in note.tags:
            target = self.repository.fetch_resource(tag.target_id)
            can_access = (
                target is not None
                and target.kind == _TAG_KINDS[tag.tag_type]
                and self.filters.can_read(user, target, campaign_id, character_id)
            )
            tags.append(NoteTagView(
                tag_type=tag.tag_type,
                target_id=tag.target_id,
                label=tag.label,
                can_access=can_access,
            ))

        return NoteView(
            id=note.id,
            body=note.body,
            visibility=note.visibility,
            share_with_architect=note.share_with_architect,
            share_character_ids=list(note.share_character_ids),
            created_at=note.created_at,
            author_id=note.author_id,
            author_label=author_label,
            author_role_label=role_label,
            tags=tags,
        )

    # -- writing --------------------------------------------------------------

    def create_note(self, user: User, resource_id: str, draft: NoteDraft) -> Note:
        """
        Create a note on a resource after checking every authoring rule.

        Raises:
            InvalidRequestError: Empty body, missing campaign for SHARED/GM,
                character off the roster, bad shares, inaccessible tags
            NotFoundError: Unknown resource, campaign or character
            ForbiddenError: Caller may not read the resource or author here
        """
        body = self._require_body(draft.body)
        resource = self._require_resource(resource_id)
        campaign_id = draft.campaign_id or None
        character_id = draft.character_id or None

        if not self.filters.can_read(user, resource, campaign_id, character_id):
            raise ForbiddenError()

        visibility = draft.visibility or self.config.default_note_visibility
        self._require_campaign_context(visibility, campaign_id)

        campaign = self._require_campaign(campaign_id, resource.world_id) if campaign_id else None
        character = self._require_character(character_id, resource.world_id) if character_id else None
        if campaign and character and character.id not in campaign.roster_character_ids:
            raise InvalidRequestError("Character is not in the campaign.")

        is_admin = self.resolver.is_admin(user)
        is_architect = self.resolver.is_architect(user.id, resource.world_id)
        is_world_gm = self.resolver.is_game_master(user.id, resource.world_id)
        is_campaign_gm = campaign is not None and campaign.gm_user_id == user.id

        if not campaign and not is_admin and not is_architect:
            raise ForbiddenError("Campaign context required.")
        if not (is_admin or is_architect or is_world_gm or is_campaign_gm):
            if not character or not campaign or character.player_id != user.id:
                raise ForbiddenError("Player context required.")
        if visibility == NoteVisibility.GM and not is_campaign_gm:
            raise ForbiddenError("Only the campaign GM can write GM notes.")

        share_ids = self._validate_shares(visibility, draft.share_character_ids, campaign)
        tags = self._validate_tags(user, body, resource, campaign_id, character_id)

        note = Note(
            resource_id=resource.id,
            resource_kind=resource.kind,
            author_id=user.id,
            body=body,
            visibility=visibility,
            campaign_id=campaign_id,
            character_id=character_id,
            share_with_architect=draft.share_with_architect if visibility == NoteVisibility.GM else False,
            share_character_ids=share_ids,
            tags=tags,
        )
        with self.repository.transaction():
            self.repository.save_note(note)
        logger.info(f"Note {note.id} ({visibility.value}) created on {resource.id} by {user.id}")
        return note

    def update_note(self, user: User, note_id: str, edit: NoteEdit) -> Note:
        """
        Edit a note. Only its author may; tags and shares are fully replaced.

        The note's campaign and character context cannot change.
        """
        body = self._require_body(edit.body)
        note = self.repository.fetch_note(note_id)
        if note is None:
            raise NotFoundError("Note not found.")
        if note.author_id != user.id:
            raise ForbiddenError()

        resource = self.repository.fetch_resource(note.resource_id)
        if resource is None:
            raise NotFoundError("Note target not found.")
        if not self.filters.can_read(user, resource, note.campaign_id, note.character_id):
            raise ForbiddenError()

        visibility = edit.visibility or note.visibility
        self._require_campaign_context(visibility, note.campaign_id)
        if visibility == NoteVisibility.GM:
            if not self.resolver.is_campaign_gm(user.id, note.campaign_id):
                raise ForbiddenError("Only the campaign GM can edit GM notes.")

        campaign = self.resolver.campaign(note.campaign_id) if note.campaign_id else None
        share_ids = self._validate_shares(visibility, edit.share_character_ids, campaign)
        tags = self._validate_tags(user, body, resource, note.campaign_id, note.character_id)

        updated = note.model_copy(update={
            "body": body,
            "visibility": visibility,
            "share_with_architect": edit.share_with_architect if visibility == NoteVisibility.GM else False,
            "share_character_ids": share_ids,
            "tags": tags,
        })
        with self.repository.transaction():
            self.repository.save_note(updated)
        logger.info(f"Note {note.id} updated by {user.id}")
        return updated

    def delete_note(self, user: User, note_id: str) -> None:
        """Delete a note. Only its author may."""
        note = self.repository.fetch_note(note_id)
        if note is None:
            raise NotFoundError("Note not found.")
        if note.author_id != user.id:
            raise ForbiddenError()
        with self.repository.transaction():
            self.repository.delete_note(note_id)
        logger.info(f"Note {note_id} deleted by {user.id}")

    # -- validation helpers ---------------------------------------------------

    @staticmethod
    def _require_body(body: str) -> str:
        if not body or not body.strip():
            raise InvalidRequestError("Note body is required.")
        return body

    @staticmethod
    def _require_campaign_context(visibility: NoteVisibility, campaign_id: Optional[str]) -> None:
        if visibility == NoteVisibility.SHARED and not campaign_id:
            raise InvalidRequestError("Shared notes require a campaign context.")
        if visibility == NoteVisibility.GM and not campaign_id:
            raise InvalidRequestError("GM notes require a campaign context.")

    def _require_resource(self, resource_id: str) -> ResourceRecord:
        resource = self.repository.fetch_resource(resource_id)
        if resource is None:
            raise NotFoundError("Resource not found.")
        return resource

    def _require_campaign(self, campaign_id: str, world_id: str) -> Campaign:
        campaign = self.resolver.campaign(campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign not found.")
        if campaign.world_id != world_id:
            raise InvalidRequestError("Campaign world mismatch.")
        return campaign

    def _require_character(self, character_id: str, world_id: str) -> Character:
        character = self.resolver.character(character_id)
        if character is None:
            raise NotFoundError("Character not found.")
        if character.world_id != world_id:
            raise InvalidRequestError("Character world mismatch.")
        return character

    @staticmethod
    def _validate_shares(
        visibility: NoteVisibility,
        share_character_ids: list[str],
        campaign: Optional[Campaign],
    ) -> list[str]:
        share_ids = list(dict.fromkeys(s for s in share_character_ids if s))
        if not share_ids:
            return []
        if visibility != NoteVisibility.GM:
            raise InvalidRequestError("GM note sharing is not available for this note.")
        roster = set(campaign.roster_character_ids) if campaign else set()
        if any(share_id not in roster for share_id in share_ids):
            raise InvalidRequestError("One or more shared characters are not in the campaign.")
        return share_ids

    def _validate_tags(
        self,
        user: User,
        body: str,
        resource: ResourceRecord,
        campaign_id: Optional[str],
        character_id: Optional[str],
    ) -> list[NoteTag]:
        tags = extract_note_tags(body)
        for tag in tags:
            target = self.repository.fetch_resource(tag.target_id)
            accessible = (
                target is not None
                and target.kind == _TAG_KINDS[tag.tag_type]
                and target.world_id == resource.world_id
                and self.filters.can_read(user, target, campaign_id, character_id)
            )
            if not accessible:
                noun = "entities" if tag.tag_type == NoteTagType.ENTITY else "locations"
                raise InvalidRequestError(f"One or more tagged {noun} are not accessible.")
        return tags


__all__ = [
    "NOTE_TAG_PATTERN",
    "NoteReader",
    "NoteVisibilityEngine",
    "extract_note_tags",
    "is_note_visible",
]
