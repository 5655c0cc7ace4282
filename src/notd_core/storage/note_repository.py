"""Repository for notes and pages.

Methods take the caller's session and never commit; the batch engine and
the property service own the transaction boundaries.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update

from notd_core.exceptions import (InvalidParentError, NoteHasChildrenError,
                                  NoteNotFoundError, PageNotFoundError,
                                  ValidationError)
from notd_core.models.db_models import DBNote, DBPage
from notd_core.models.schema import utc_now

logger = logging.getLogger(__name__)


class NoteRepository:
    """Session-scoped data access for the ``notes`` and ``pages`` tables."""

    # Pages

    def get_page(self, session, page_id: int) -> DBPage:
        """Get a page by id.

        Raises:
            PageNotFoundError: If no page has this id.
        """
        page = session.get(DBPage, page_id)
        if page is None:
            raise PageNotFoundError(page_id)
        return page

    def find_page_by_name(self, session, name: str) -> Optional[DBPage]:
        """Find a page by name, ignoring case."""
        return session.scalar(
            select(DBPage).where(func.lower(DBPage.name) == name.strip().lower())
        )

    def get_or_create_page(self, session, name: str) -> DBPage:
        """Get the page called ``name``, creating it when it does not exist."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Page name cannot be empty", field="page_name")
        page = self.find_page_by_name(session, name)
        if page is None:
            page = DBPage(name=name, content="")
            session.add(page)
            session.flush()
            logger.info(f"Created page {page.id} '{name}'")
        return page

    def resolve_page(self, session, page_id: Optional[int] = None,
                     page_name: Optional[str] = None) -> DBPage:
        """Resolve a page reference; an id takes precedence over a name."""
        if page_id is not None:
            return self.get_page(session, page_id)
        return self.get_or_create_page(session, page_name or "")

    # Notes

    def get_note(self, session, note_id: int) -> DBNote:
        """Get a note by id.

        Raises:
            NoteNotFoundError: If no note has this id.
        """
        note = session.get(DBNote, note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def count_children(self, session, note_id: int) -> int:
        return session.scalar(
            select(func.count(DBNote.id)).where(DBNote.parent_note_id == note_id)
        ) or 0

    def descendant_ids(self, session, note_id: int) -> List[int]:
        """Ids of every note below ``note_id`` in the tree, breadth first."""
        found: List[int] = []
        frontier = [note_id]
        while frontier:
            children = session.scalars(
                select(DBNote.id).where(DBNote.parent_note_id.in_(frontier))
            ).all()
            children = [c for c in children if c not in found and c != note_id]
            found.extend(children)
            frontier = children
        return found

    def check_parent(self, session, note: Optional[DBNote], parent_id: int,
                     page_id: int) -> DBNote:
        """Validate ``parent_id`` as the parent of ``note`` on page ``page_id``.

        ``note`` is None for a note that does not exist yet.

        Raises:
            NoteNotFoundError: If the parent does not exist.
            InvalidParentError: If the parent is on another page, is the note
                itself or sits below it.
        """
        parent = self.get_note(session, parent_id)
        note_id = note.id if note is not None else None
        if parent.page_id != page_id:
            raise InvalidParentError(
                f"Parent note {parent_id} belongs to a different page",
                note_id=note_id, parent_note_id=parent_id,
            )
        if note is not None:
            if parent_id == note.id:
                raise InvalidParentError(
                    "A note cannot be its own parent", note_id=note_id, parent_note_id=parent_id
                )
            if parent_id in self.descendant_ids(session, note.id):
                raise InvalidParentError(
                    f"Note {parent_id} is a descendant of note {note.id}",
                    note_id=note_id, parent_note_id=parent_id,
                )
        return parent

    def _siblings(self, page_id: int, parent_id: Optional[int]):
        clause = DBNote.page_id == page_id
        if parent_id is None:
            return clause & DBNote.parent_note_id.is_(None)
        return clause & (DBNote.parent_note_id == parent_id)

    def next_order_index(self, session, page_id: int, parent_id: Optional[int],
                         exclude_id: Optional[int] = None) -> int:
        stmt = select(func.max(DBNote.order_index)).where(self._siblings(page_id, parent_id))
        if exclude_id is not None:
            stmt = stmt.where(DBNote.id != exclude_id)
        highest = session.scalar(stmt)
        return 0 if highest is None else highest + 1

    def make_room(self, session, page_id: int, parent_id: Optional[int],
                  order_index: int, exclude_id: Optional[int] = None) -> int:
        """Shift siblings at or after ``order_index`` down by one.

        Returns the number of siblings moved.
        """
        stmt = (
            update(DBNote)
            .where(self._siblings(page_id, parent_id))
            .where(DBNote.order_index >= order_index)
        )
        if exclude_id is not None:
            stmt = stmt.where(DBNote.id != exclude_id)
        result = session.execute(
            stmt.values(order_index=DBNote.order_index + 1)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def create_note(
        self,
        session,
        page_id: int,
        content: str = "",
        parent_note_id: Optional[int] = None,
        order_index: Optional[int] = None,
        collapsed: bool = False,
    ) -> DBNote:
        """Insert a note, placing it among its siblings."""
        if order_index is None:
            order_index = self.next_order_index(session, page_id, parent_note_id)
        else:
            self.make_room(session, page_id, parent_note_id, order_index)
        now = utc_now()
        note = DBNote(
            page_id=page_id,
            parent_note_id=parent_note_id,
            content=content or "",
            order_index=order_index,
            collapsed=bool(collapsed),
            internal=False,
            is_favorite=False,
            created_at=now,
            updated_at=now,
        )
        session.add(note)
        session.flush()
        return note

    def move_to_page(self, session, note: DBNote, page_id: int) -> int:
        """Move a note and its whole subtree to another page.

        Returns the number of descendants moved along with the note.
        """
        descendants = self.descendant_ids(session, note.id)
        note.page_id = page_id
        if descendants:
            session.execute(
                update(DBNote)
                .where(DBNote.id.in_(descendants))
                .values(page_id=page_id)
                .execution_options(synchronize_session="fetch")
            )
        return len(descendants)

    def delete_note(self, session, note: DBNote) -> None:
        """Delete a leaf note; its properties go with it.

        Raises:
            NoteHasChildrenError: If the note still has children.
        """
        children = self.count_children(session, note.id)
        if children:
            raise NoteHasChildrenError(note.id, children)
        session.delete(note)
        session.flush()

    def note_to_dict(self, note: DBNote, properties: Dict[str, Any]) -> Dict[str, Any]:
        """Serialize a note for API results."""
        return {
            "id": note.id,
            "page_id": note.page_id,
            "parent_note_id": note.parent_note_id,
            "content": note.content,
            "order_index": note.order_index,
            "collapsed": bool(note.collapsed),
            "internal": bool(note.internal),
            "is_favorite": bool(note.is_favorite),
            "created_at": note.created_at.isoformat() if note.created_at else None,
            "updated_at": note.updated_at.isoformat() if note.updated_at else None,
            "properties": properties,
        }
