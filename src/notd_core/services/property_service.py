"""Direct property reads and writes for notes and pages."""
import logging
from typing import Optional

from notd_core.exceptions import (ErrorCode, PropertyNotFoundError,
                                  ValidationError)
from notd_core.models.schema import (MIN_PROPERTY_WEIGHT, OwnerType,
                                     PropertyBehavior, utc_now)
from notd_core.observability import traced
from notd_core.services.notifier import default_notifier, deliver, take_outbox
from notd_core.services.property_indexer import PropertyIndexer
from notd_core.storage.note_repository import NoteRepository
from notd_core.storage.property_parser import (is_tag_name, tag_label,
                                               upsert_annotation)
from notd_core.storage.property_repository import PropertyMap, PropertyRepository

logger = logging.getLogger(__name__)


def parse_owner_type(owner_type) -> OwnerType:
    """Coerce user input into an OwnerType."""
    try:
        return OwnerType(str(owner_type).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Invalid owner type '{owner_type}'. Valid types are: "
            f"{', '.join(t.value for t in OwnerType)}",
            field="owner_type",
            value=owner_type,
            code=ErrorCode.INVALID_OWNER_TYPE,
        )


def normalize_property(name: str, value) -> tuple:
    """Clean a directly written name/value pair.

    A tag name ``tag::label`` always carries ``label`` as its value.

    Raises:
        ValidationError: For a blank name or a tag name without a label.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Property name cannot be empty", field="name")
    value = "" if value is None else str(value).strip()
    if is_tag_name(name):
        label = tag_label(name.split("::", 1)[1])
        if not label:
            raise ValidationError("Tag property needs a label", field="name", value=name)
        return f"tag::{label}", label
    return name, value


class PropertyService:
    """Reads and writes properties outside of content re-indexing.

    Each public method runs in its own transaction and delivers staged
    notifications after commit.
    """

    def __init__(self, session_factory, indexer: Optional[PropertyIndexer] = None,
                 notifier=None, notes: Optional[NoteRepository] = None,
                 properties: Optional[PropertyRepository] = None):
        self.session_factory = session_factory
        self.notifier = notifier or default_notifier()
        self.indexer = indexer or PropertyIndexer()
        self.notes = notes or NoteRepository()
        self.properties = properties or self.indexer.properties

    def _check_owner(self, session, owner_type: OwnerType, owner_id: int):
        if owner_type is OwnerType.NOTE:
            return self.notes.get_note(session, owner_id)
        return self.notes.get_page(session, owner_id)

    def _commit(self, session) -> None:
        session.commit()
        deliver(self.notifier, take_outbox(session))

    @traced("get_properties")
    def get_properties(self, owner_type, owner_id: int,
                       include_internal: bool = False) -> PropertyMap:
        """Return an owner's property map.

        Raises:
            NoteNotFoundError / PageNotFoundError: If the owner does not exist.
        """
        owner_type = parse_owner_type(owner_type)
        with self.session_factory() as session:
            self._check_owner(session, owner_type, owner_id)
            return self.properties.get_map(session, owner_type, owner_id, include_internal)

    @traced("set_property")
    def set_property(
        self,
        owner_type,
        owner_id: int,
        name: str,
        value,
        internal: Optional[bool] = None,
        weight: int = MIN_PROPERTY_WEIGHT,
        sync_content: bool = False,
    ) -> PropertyMap:
        """Write one property directly.

        A replaceable property replaces the owner's rows of that name; an
        appendable one adds a row. ``internal`` overrides any definition.

        With ``sync_content`` (replaceable note properties only) the
        annotation is written into the note's content and the note is
        re-indexed, so the row exists exactly once and the next re-index
        reproduces it. ``internal=True`` is then written as a triple-colon
        annotation.

        Returns:
            The owner's property map, internal rows included.
        """
        owner_type = parse_owner_type(owner_type)
        name, value = normalize_property(name, value)
        if weight < MIN_PROPERTY_WEIGHT:
            raise ValidationError(
                f"Property weight must be at least {MIN_PROPERTY_WEIGHT}",
                field="weight", value=weight,
            )
        behavior = PropertyBehavior.from_weight(weight)

        with self.session_factory() as session:
            owner = self._check_owner(session, owner_type, owner_id)

            if sync_content:
                if owner_type is not OwnerType.NOTE:
                    raise ValidationError("sync_content is only supported for notes",
                                          field="sync_content")
                if behavior is PropertyBehavior.APPENDABLE:
                    raise ValidationError("sync_content cannot write appendable properties",
                                          field="weight", value=weight)
                written_weight = 3 if internal else 2
                owner.content = upsert_annotation(owner.content, name, value, written_weight)
                owner.updated_at = utc_now()
                session.flush()
                result = self.indexer.reindex(session, owner_type, owner_id, owner.content)
            else:
                flag = self.indexer.resolver.resolve_internal(session, name, internal)
                if behavior is PropertyBehavior.REPLACEABLE:
                    self.properties.delete_by_name(session, owner_type, owner_id, name)
                self.properties.add(session, owner_type, owner_id, name, value, weight, flag)
                self.indexer.dispatcher.dispatch(session, owner_type, owner_id, name, value)
                self.indexer.refresh_internal_flag(session, owner_type, owner_id)
                result = self.properties.get_map(session, owner_type, owner_id)

            self._commit(session)
            logger.info(f"Set property '{name}' on {owner_type.value} {owner_id}")
            return result

    @traced("delete_property")
    def delete_property(self, owner_type, owner_id: int, name: str) -> int:
        """Delete every row named ``name`` from an owner.

        Content is not rewritten, so a later re-index can bring the
        property back.

        Returns:
            Number of rows deleted.
        """
        owner_type = parse_owner_type(owner_type)
        name = (name or "").strip()
        with self.session_factory() as session:
            self._check_owner(session, owner_type, owner_id)
            removed = self.properties.delete_by_name(session, owner_type, owner_id, name)
            self.indexer.refresh_internal_flag(session, owner_type, owner_id)
            self._commit(session)
            logger.info(f"Deleted {removed} '{name}' rows from {owner_type.value} {owner_id}")
            return removed

    @traced("set_property_internal")
    def set_property_internal(self, owner_type, owner_id: int, name: str,
                              internal: bool) -> int:
        """Set the internal flag of an owner's rows named ``name``.

        Triggers run again with each row's value.

        Returns:
            Number of rows whose flag changed.

        Raises:
            PropertyNotFoundError: If the owner has no such property.
        """
        owner_type = parse_owner_type(owner_type)
        name = (name or "").strip()
        with self.session_factory() as session:
            self._check_owner(session, owner_type, owner_id)
            rows = self.properties.list_for_owner(session, owner_type, owner_id, name=name)
            if not rows:
                raise PropertyNotFoundError(owner_type.value, owner_id, name)
            changed = self.properties.set_internal(rows, bool(internal))
            session.flush()
            for row in rows:
                self.indexer.dispatcher.dispatch(session, owner_type, owner_id, row.name, row.value)
            self._commit(session)
            return changed

    @traced("reindex_note")
    def reindex_note(self, note_id: int) -> PropertyMap:
        """Re-index a note from its stored content."""
        with self.session_factory() as session:
            note = self.notes.get_note(session, note_id)
            result = self.indexer.reindex(session, OwnerType.NOTE, note.id, note.content)
            self._commit(session)
            return result

    @traced("reindex_page")
    def reindex_page(self, page_id: int, content: Optional[str] = None) -> PropertyMap:
        """Re-index a page, storing ``content`` first when given."""
        with self.session_factory() as session:
            page = self.notes.get_page(session, page_id)
            if content is not None:
                page.content = content
                page.updated_at = utc_now()
                session.flush()
            result = self.indexer.reindex(session, OwnerType.PAGE, page.id, page.content)
            self._commit(session)
            return result
