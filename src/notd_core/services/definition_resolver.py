"""Property definitions: admin rules for the internal flag."""
import logging
from typing import List, Optional

from sqlalchemy import select

from notd_core.exceptions import StorageError, ValidationError
from notd_core.models.db_models import DBPropertyDefinition
from notd_core.models.schema import OwnerType, PropertyDefinition, utc_now
from notd_core.observability import timed_operation
from notd_core.services.notifier import default_notifier, deliver, take_outbox
from notd_core.services.trigger_dispatcher import TriggerDispatcher
from notd_core.storage.property_repository import PropertyRepository

logger = logging.getLogger(__name__)


def _to_model(row: DBPropertyDefinition) -> PropertyDefinition:
    return PropertyDefinition(
        name=row.name,
        internal=bool(row.internal),
        auto_apply=bool(row.auto_apply),
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class DefinitionResolver:
    """Decides whether a property row is internal, and manages the rules.

    ``resolve_internal`` and ``apply_definition`` work inside a caller's
    session. The remaining public methods open and commit their own.
    """

    def __init__(self, session_factory=None, dispatcher: Optional[TriggerDispatcher] = None,
                 notifier=None, properties: Optional[PropertyRepository] = None):
        self.session_factory = session_factory
        self.dispatcher = dispatcher or TriggerDispatcher()
        self.notifier = notifier or default_notifier()
        self.properties = properties or PropertyRepository()

    def _session(self):
        if self.session_factory is None:
            raise StorageError(
                "DefinitionResolver was built without a session factory",
                operation="definitions",
            )
        return self.session_factory()

    def resolve_internal(self, session, name: str, explicit_override: Optional[bool] = None) -> bool:
        """Internal flag for a new row named ``name``.

        An explicit override wins; otherwise an auto-apply definition for
        the name decides; otherwise the row is visible.
        """
        if explicit_override is not None:
            return bool(explicit_override)
        definition = session.scalar(
            select(DBPropertyDefinition)
            .where(DBPropertyDefinition.name == name)
            .where(DBPropertyDefinition.auto_apply.is_(True))
        )
        if definition is not None:
            return bool(definition.internal)
        return False

    def apply_definition(self, session, name: str, internal: bool) -> int:
        """Rewrite every row named ``name`` to ``internal``, across all owners.

        Triggers run again for each rewritten row. Returns rows changed.
        """
        rows = self.properties.rows_to_relabel(session, name, internal)
        changed = self.properties.set_internal(rows, internal)
        session.flush()
        for row in rows:
            if row.note_id is not None:
                owner_type, owner_id = OwnerType.NOTE, row.note_id
            else:
                owner_type, owner_id = OwnerType.PAGE, row.page_id
            self.dispatcher.dispatch(session, owner_type, owner_id, row.name, row.value)
        return changed

    def publish_definition(self, name: str, internal: bool, auto_apply: bool = True,
                           description: Optional[str] = None) -> int:
        """Create or update a definition and apply it to existing rows.

        The upsert and the bulk rewrite share one transaction.

        Returns:
            Number of property rows whose internal flag changed.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Definition name cannot be empty", field="name")

        with timed_operation("publish_definition", name=name, internal=internal) as op:
            with self._session() as session:
                row = session.scalar(
                    select(DBPropertyDefinition).where(DBPropertyDefinition.name == name)
                )
                now = utc_now()
                if row is None:
                    row = DBPropertyDefinition(name=name, created_at=now)
                    session.add(row)
                row.internal = bool(internal)
                row.auto_apply = bool(auto_apply)
                if description is not None:
                    row.description = description
                row.updated_at = now
                session.flush()

                changed = self.apply_definition(session, name, bool(internal)) if auto_apply else 0
                session.commit()
                deliver(self.notifier, take_outbox(session))

            op["rows_changed"] = changed
            logger.info(f"Published definition '{name}' (internal={internal}, "
                        f"auto_apply={auto_apply}): {changed} rows changed")
            return changed

    def apply_all_definitions(self) -> int:
        """Re-apply every auto-apply definition in one transaction."""
        with timed_operation("apply_all_definitions") as op:
            with self._session() as session:
                definitions = session.scalars(
                    select(DBPropertyDefinition)
                    .where(DBPropertyDefinition.auto_apply.is_(True))
                    .order_by(DBPropertyDefinition.name)
                ).all()
                changed = 0
                for definition in definitions:
                    changed += self.apply_definition(
                        session, definition.name, bool(definition.internal)
                    )
                session.commit()
                deliver(self.notifier, take_outbox(session))
            op["rows_changed"] = changed
            return changed

    def get_definition(self, name: str) -> Optional[PropertyDefinition]:
        with self._session() as session:
            row = session.scalar(
                select(DBPropertyDefinition).where(DBPropertyDefinition.name == name.strip())
            )
            return _to_model(row) if row else None

    def list_definitions(self) -> List[PropertyDefinition]:
        with self._session() as session:
            rows = session.scalars(
                select(DBPropertyDefinition).order_by(DBPropertyDefinition.name)
            ).all()
            return [_to_model(row) for row in rows]

    def delete_definition(self, name: str) -> bool:
        """Delete a definition. Existing rows keep their current flag.

        Returns:
            True if a definition was deleted.
        """
        with self._session() as session:
            row = session.scalar(
                select(DBPropertyDefinition).where(DBPropertyDefinition.name == name.strip())
            )
            if row is None:
                return False
            session.delete(row)
            session.commit()
            logger.info(f"Deleted definition '{name}'")
            return True

