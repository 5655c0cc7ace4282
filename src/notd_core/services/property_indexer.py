"""Re-indexing of an owner's properties from its content."""
import logging
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from notd_core.config import config
from notd_core.models.db_models import DBNote
from notd_core.models.schema import OwnerType, PropertyBehavior
from notd_core.services.definition_resolver import DefinitionResolver
from notd_core.services.trigger_dispatcher import TriggerDispatcher
from notd_core.storage.property_parser import parse_properties
from notd_core.storage.property_repository import PropertyMap, PropertyRepository
from notd_core.utils import is_true_value

logger = logging.getLogger(__name__)

ENCRYPTED_PROPERTY = "encrypted"
INTERNAL_PROPERTY = "internal"


class PropertyIndexer:
    """Reconciles an owner's persisted properties with freshly parsed content.

    Works inside the caller's session and never commits. Notifications
    staged by triggers are left on the session for the caller to deliver.
    """

    def __init__(
        self,
        resolver: Optional[DefinitionResolver] = None,
        dispatcher: Optional[TriggerDispatcher] = None,
        properties: Optional[PropertyRepository] = None,
        task_states: Optional[Sequence[str]] = None,
    ):
        self.dispatcher = dispatcher or TriggerDispatcher()
        self.resolver = resolver or DefinitionResolver(dispatcher=self.dispatcher)
        self.properties = properties or PropertyRepository()
        self.task_states = task_states

    def is_encrypted(self, session, owner_type: OwnerType, owner_id: int) -> bool:
        """True for a note carrying ``encrypted::true``."""
        if OwnerType(owner_type) is not OwnerType.NOTE:
            return False
        return self.properties.has_value(
            session, owner_type, owner_id, ENCRYPTED_PROPERTY, "true"
        )

    def reindex(self, session, owner_type, owner_id: int, content: str) -> PropertyMap:
        """Rebuild the owner's properties from ``content``.

        1. Encrypted notes are left untouched.
        2. Replaceable rows are deleted; appendable rows stay.
        3. Content is parsed.
        4. Each candidate gets its internal flag, is inserted and dispatched.
        5. A note's denormalized ``internal`` column is refreshed.

        Returns:
            The owner's reconciled map, internal rows included.
        """
        owner_type = OwnerType(owner_type)

        if self.is_encrypted(session, owner_type, owner_id):
            logger.debug(f"Skipping re-index of encrypted note {owner_id}")
            return self.properties.get_map(session, owner_type, owner_id)

        removed = self.properties.delete_by_behavior(
            session, owner_type, owner_id, PropertyBehavior.REPLACEABLE
        )

        states = self.task_states if self.task_states is not None else config.task_states
        candidates = parse_properties(content, task_states=states)
        for candidate in candidates:
            override = True if candidate.forced_internal else None
            internal = self.resolver.resolve_internal(session, candidate.name, override)
            self.properties.add(
                session, owner_type, owner_id,
                candidate.name, candidate.value, candidate.weight, internal,
            )
            self.dispatcher.dispatch(session, owner_type, owner_id, candidate.name, candidate.value)

        self.refresh_internal_flag(session, owner_type, owner_id)

        logger.debug(
            f"Re-indexed {owner_type.value} {owner_id}: removed {removed}, "
            f"inserted {len(candidates)}"
        )
        return self.properties.get_map(session, owner_type, owner_id)

    def refresh_internal_flag(self, session, owner_type, owner_id: int) -> Optional[bool]:
        """Recompute a note's ``internal`` column from its properties.

        Runs in its own savepoint. A store error is logged and swallowed so
        already persisted properties survive. Returns the new flag, or None
        for pages and on failure.
        """
        if OwnerType(owner_type) is not OwnerType.NOTE:
            return None
        try:
            with session.begin_nested():
                values = self.properties.effective_values(
                    session, OwnerType.NOTE, owner_id, INTERNAL_PROPERTY
                )
                flag = any(is_true_value(v) for v in values)
                note = session.get(DBNote, owner_id)
                if note is not None:
                    note.internal = flag
            return flag
        except SQLAlchemyError as e:
            logger.error(f"Failed to refresh internal flag for note {owner_id}: {e}")
            return None
