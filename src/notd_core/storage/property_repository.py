"""Repository for property rows.

Every method takes the caller's session and never commits, so property
writes join whatever transaction (or savepoint) the caller has open.
"""
import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select

from notd_core.models.db_models import DBProperty
from notd_core.models.schema import OwnerType, PropertyBehavior, utc_now

logger = logging.getLogger(__name__)

PropertyMap = Dict[str, List[Dict[str, object]]]


def _owner_column(owner_type: OwnerType):
    if OwnerType(owner_type) is OwnerType.NOTE:
        return DBProperty.note_id
    return DBProperty.page_id


def properties_to_map(rows: Iterable[DBProperty], include_internal: bool = True) -> PropertyMap:
    """Group rows by name into ``{name: [{"value", "internal"}, ...]}``.

    Rows must already be in creation order; names keep first-seen order.
    """
    grouped: PropertyMap = OrderedDict()
    for row in rows:
        if row.internal and not include_internal:
            continue
        grouped.setdefault(row.name, []).append(
            {"value": row.value, "internal": bool(row.internal)}
        )
    return dict(grouped)


class PropertyRepository:
    """Session-scoped data access for the ``properties`` table."""

    def list_for_owner(
        self,
        session,
        owner_type: OwnerType,
        owner_id: int,
        include_internal: bool = True,
        name: Optional[str] = None,
    ) -> List[DBProperty]:
        """Rows of one owner in creation order."""
        stmt = select(DBProperty).where(_owner_column(owner_type) == owner_id)
        if not include_internal:
            stmt = stmt.where(DBProperty.internal.is_(False))
        if name is not None:
            stmt = stmt.where(DBProperty.name == name)
        stmt = stmt.order_by(DBProperty.created_at, DBProperty.id)
        return list(session.scalars(stmt).all())

    def get_map(
        self, session, owner_type: OwnerType, owner_id: int, include_internal: bool = True
    ) -> PropertyMap:
        rows = self.list_for_owner(session, owner_type, owner_id, include_internal)
        return properties_to_map(rows)

    def add(
        self,
        session,
        owner_type: OwnerType,
        owner_id: int,
        name: str,
        value: str,
        weight: int,
        internal: bool,
    ) -> DBProperty:
        """Insert one property row."""
        row = DBProperty(
            name=name,
            value=value,
            weight=weight,
            internal=internal,
            created_at=utc_now(),
        )
        if OwnerType(owner_type) is OwnerType.NOTE:
            row.note_id = owner_id
        else:
            row.page_id = owner_id
        session.add(row)
        session.flush()
        return row

    def delete_by_behavior(
        self, session, owner_type: OwnerType, owner_id: int, behavior: PropertyBehavior
    ) -> int:
        """Delete every row of one behavior class for an owner."""
        result = session.execute(
            delete(DBProperty)
            .where(_owner_column(owner_type) == owner_id)
            .where(behavior.weight_filter(DBProperty.weight))
        )
        return result.rowcount or 0

    def delete_by_name(self, session, owner_type: OwnerType, owner_id: int, name: str) -> int:
        """Delete every row named ``name`` for an owner."""
        result = session.execute(
            delete(DBProperty)
            .where(_owner_column(owner_type) == owner_id)
            .where(DBProperty.name == name)
        )
        return result.rowcount or 0

    def has_value(
        self, session, owner_type: OwnerType, owner_id: int, name: str, value: str
    ) -> bool:
        """True when the owner has a row ``name`` whose value equals ``value``.

        Both comparisons ignore case.
        """
        stmt = (
            select(func.count(DBProperty.id))
            .where(_owner_column(owner_type) == owner_id)
            .where(func.lower(DBProperty.name) == name.lower())
            .where(func.lower(func.trim(DBProperty.value)) == value.lower())
        )
        return (session.scalar(stmt) or 0) > 0

    def effective_values(self, session, owner_type: OwnerType, owner_id: int, name: str) -> List[str]:
        """Current value of each property whose name matches ``name`` in any case.

        When a name has several rows (appendable history) the most recent
        row is the current one.
        """
        rows = session.scalars(
            select(DBProperty)
            .where(_owner_column(owner_type) == owner_id)
            .where(func.lower(DBProperty.name) == name.lower())
            .order_by(DBProperty.created_at, DBProperty.id)
        ).all()
        latest: Dict[str, str] = {}
        for row in rows:
            latest[row.name] = row.value
        return list(latest.values())

    def rows_to_relabel(self, session, name: str, internal: bool) -> List[DBProperty]:
        """Rows named ``name``, across all owners, whose internal flag differs."""
        return list(session.scalars(
            select(DBProperty)
            .where(DBProperty.name == name)
            .where(DBProperty.internal != internal)
            .order_by(DBProperty.id)
        ).all())

    def set_internal(self, rows: Iterable[DBProperty], internal: bool) -> int:
        """Set the internal flag on loaded rows, returning how many changed."""
        changed = 0
        for row in rows:
            if bool(row.internal) != internal:
                row.internal = internal
                changed += 1
        return changed
