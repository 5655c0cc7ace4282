"""Tests for property triggers."""
import logging

from notd_core.models.db_models import DBNote, DBPage
from notd_core.models.schema import Notification, OwnerType
from notd_core.services.notifier import take_outbox
from notd_core.services.trigger_dispatcher import TRIGGER_RULES, TriggerDispatcher
from tests.fakes import ExplodingTrigger


class TestNoteTriggers:
    """favorite and internal mirror into note columns."""

    def test_favorite_sets_column(self, session_factory, dispatcher, make_note):
        note_id = make_note()
        with session_factory() as session:
            assert dispatcher.dispatch(session, OwnerType.NOTE, note_id, "favorite", "true")
            assert session.get(DBNote, note_id).is_favorite is True
            assert dispatcher.dispatch(session, OwnerType.NOTE, note_id, "favorite", "no")
            assert session.get(DBNote, note_id).is_favorite is False

    def test_internal_sets_column(self, session_factory, dispatcher, make_note):
        note_id = make_note()
        with session_factory() as session:
            dispatcher.dispatch(session, "note", note_id, "internal", "TRUE")
            assert session.get(DBNote, note_id).internal is True

    def test_internal_accepts_only_true(self, session_factory, dispatcher, make_note):
        note_id = make_note()
        with session_factory() as session:
            for value in ("yes", "on", "1"):
                assert dispatcher.dispatch(session, OwnerType.NOTE, note_id, "internal", value)
                assert session.get(DBNote, note_id).internal is False
            dispatcher.dispatch(session, OwnerType.NOTE, note_id, "internal", " true ")
            assert session.get(DBNote, note_id).internal is True

    def test_name_lookup_ignores_case(self, session_factory, dispatcher, make_note):
        note_id = make_note()
        with session_factory() as session:
            assert dispatcher.dispatch(session, OwnerType.NOTE, note_id, "Favorite", "1")
            assert session.get(DBNote, note_id).is_favorite is True

    def test_note_rule_does_not_fire_for_pages(self, session_factory, dispatcher, page_id):
        with session_factory() as session:
            assert dispatcher.dispatch(session, OwnerType.PAGE, page_id, "favorite", "true") is False
            assert take_outbox(session) == []


class TestPageAliasTrigger:
    """alias sets pages.alias unless it repeats the page's own name."""

    def test_alias_is_set(self, session_factory, dispatcher, page_id):
        with session_factory() as session:
            dispatcher.dispatch(session, OwnerType.PAGE, page_id, "alias", " Mailbox ")
            assert session.get(DBPage, page_id).alias == "Mailbox"

    def test_alias_equal_to_own_name_clears(self, session_factory, dispatcher, page_id):
        with session_factory() as session:
            dispatcher.dispatch(session, OwnerType.PAGE, page_id, "alias", "Mailbox")
            dispatcher.dispatch(session, OwnerType.PAGE, page_id, "alias", "inbox")
            assert session.get(DBPage, page_id).alias is None

    def test_blank_alias_clears(self, session_factory, dispatcher, page_id):
        with session_factory() as session:
            dispatcher.dispatch(session, OwnerType.PAGE, page_id, "alias", "Mailbox")
            dispatcher.dispatch(session, OwnerType.PAGE, page_id, "alias", "  ")
            assert session.get(DBPage, page_id).alias is None

    def test_alias_does_not_notify(self, session_factory, dispatcher, page_id):
        with session_factory() as session:
            dispatcher.dispatch(session, OwnerType.PAGE, page_id, "alias", "Mailbox")
            assert take_outbox(session) == []


class TestDispatch:
    """Rule lookup, failure isolation and notification staging."""

    def test_unknown_name_is_a_noop(self, session_factory, dispatcher, make_note):
        note_id = make_note()
        with session_factory() as session:
            assert dispatcher.dispatch(session, OwnerType.NOTE, note_id, "priority", "high") is False

    def test_notifications_are_staged_in_order(self, session_factory, dispatcher, make_note):
        note_id = make_note()
        with session_factory() as session:
            dispatcher.dispatch(session, OwnerType.NOTE, note_id, "status", "TODO")
            dispatcher.dispatch(session, OwnerType.NOTE, note_id, "favorite", "yes")
            assert take_outbox(session) == [
                Notification("note", note_id, "status", "TODO"),
                Notification("note", note_id, "favorite", "yes"),
            ]

    def test_status_notifies_for_pages(self, session_factory, dispatcher, page_id):
        with session_factory() as session:
            assert dispatcher.dispatch(session, OwnerType.PAGE, page_id, "status", "DONE")
            assert take_outbox(session) == [Notification("page", page_id, "status", "DONE")]

    def test_disabled_notifications_are_not_staged(self, session_factory, make_note):
        dispatcher = TriggerDispatcher(notifications_enabled=False)
        note_id = make_note()
        with session_factory() as session:
            assert dispatcher.dispatch(session, OwnerType.NOTE, note_id, "favorite", "yes")
            assert take_outbox(session) == []

    def test_failing_handler_is_logged_and_contained(self, session_factory, make_note, caplog):
        handler = ExplodingTrigger()
        dispatcher = TriggerDispatcher(rules={**TRIGGER_RULES, "boom": handler})
        note_id = make_note("before")

        with session_factory() as session:
            with caplog.at_level(logging.ERROR, logger="notd_core"):
                assert dispatcher.dispatch(session, OwnerType.NOTE, note_id, "boom", "x") is False
            assert take_outbox(session) == []

            # The session is still usable after the failed savepoint
            note = session.get(DBNote, note_id)
            note.content = "after"
            session.commit()

        assert handler.calls == 1
        assert "Trigger 'boom' failed" in caplog.text
        with session_factory() as session:
            assert session.get(DBNote, note_id).content == "after"

    def test_custom_rules_replace_defaults(self, session_factory, make_note):
        dispatcher = TriggerDispatcher(rules={})
        note_id = make_note()
        with session_factory() as session:
            assert dispatcher.dispatch(session, OwnerType.NOTE, note_id, "favorite", "yes") is False
