"""Side effects of well-known property names.

``TRIGGER_RULES`` maps a property name to a handler. The dispatcher looks
the name up, runs the handler inside a savepoint and stages an outbound
notification when the rule asks for one. Names without a rule are a
no-op. Nothing raised by a handler escapes ``dispatch``.
"""
import logging
from typing import Dict, FrozenSet, Optional

from notd_core.config import config
from notd_core.models.db_models import DBNote, DBPage
from notd_core.models.schema import Notification, OwnerType, utc_now
from notd_core.services.notifier import stage_notification
from notd_core.utils import is_true_value, is_truthy

logger = logging.getLogger(__name__)


class TriggerHandler:
    """Strategy for one property name.

    Attributes:
        owner_types: Owner kinds the rule applies to.
        notify: Whether a write stages an outbound notification.
    """

    owner_types: FrozenSet[OwnerType] = frozenset(OwnerType)
    notify = False

    def handle(self, session, owner_type: OwnerType, owner_id: int, value: str) -> None:
        raise NotImplementedError


class NoteInternalTrigger(TriggerHandler):
    """``internal`` mirrors into ``notes.internal``; only ``true`` sets it."""

    owner_types = frozenset({OwnerType.NOTE})
    notify = True

    def handle(self, session, owner_type, owner_id, value):
        note = session.get(DBNote, owner_id)
        if note is not None:
            note.internal = is_true_value(value)


class NoteFavoriteTrigger(TriggerHandler):
    """``favorite`` mirrors into ``notes.is_favorite``."""

    owner_types = frozenset({OwnerType.NOTE})
    notify = True

    def handle(self, session, owner_type, owner_id, value):
        note = session.get(DBNote, owner_id)
        if note is not None:
            note.is_favorite = is_truthy(value)


class PageAliasTrigger(TriggerHandler):
    """``alias`` sets ``pages.alias``.

    An alias that is blank or equal to the page's own name (any case)
    clears the column instead.
    """

    owner_types = frozenset({OwnerType.PAGE})

    def handle(self, session, owner_type, owner_id, value):
        page = session.get(DBPage, owner_id)
        if page is None:
            return
        alias = (value or "").strip()
        if not alias or alias.lower() == page.name.strip().lower():
            page.alias = None
        else:
            page.alias = alias
        page.updated_at = utc_now()


class StatusTrigger(TriggerHandler):
    """Task status changes only notify."""

    notify = True

    def handle(self, session, owner_type, owner_id, value):
        return None


TRIGGER_RULES: Dict[str, TriggerHandler] = {
    "internal": NoteInternalTrigger(),
    "favorite": NoteFavoriteTrigger(),
    "alias": PageAliasTrigger(),
    "status": StatusTrigger(),
}


class TriggerDispatcher:
    """Runs the trigger rule for a property write."""

    def __init__(self, rules: Optional[Dict[str, TriggerHandler]] = None,
                 notifications_enabled: Optional[bool] = None):
        self.rules = dict(TRIGGER_RULES if rules is None else rules)
        self.notifications_enabled = (
            config.notifications_enabled
            if notifications_enabled is None
            else notifications_enabled
        )

    def dispatch(self, session, owner_type, owner_id: int, name: str, value: str) -> bool:
        """Run the rule for ``name``, if there is one.

        Returns:
            True when a rule ran successfully, False for no-ops and failures.
        """
        handler = self.rules.get((name or "").lower())
        if handler is None:
            return False
        owner_type = OwnerType(owner_type)
        if owner_type not in handler.owner_types:
            return False

        try:
            with session.begin_nested():
                handler.handle(session, owner_type, owner_id, value)
        except Exception as e:
            logger.error(
                f"Trigger '{name}' failed for {owner_type.value} {owner_id}: {e}",
                exc_info=True,
            )
            return False

        if handler.notify and self.notifications_enabled:
            stage_notification(
                session,
                Notification(owner_type.value, owner_id, name, value),
            )
        logger.debug(f"Trigger '{name}' ran for {owner_type.value} {owner_id}")
        return True
