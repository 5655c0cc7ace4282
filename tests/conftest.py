"""Common test fixtures for the notd core."""

import tempfile
from pathlib import Path

import pytest

from notd_core.config import config
from notd_core.models.db_models import DBPage, get_session_factory, init_db
from notd_core.services.batch_service import BatchService
from notd_core.services.definition_resolver import DefinitionResolver
from notd_core.services.property_indexer import PropertyIndexer
from notd_core.services.property_service import PropertyService
from notd_core.services.trigger_dispatcher import TriggerDispatcher
from tests.fakes import RecordingNotifier


@pytest.fixture
def temp_dirs():
    """Create a temporary directory for the database."""
    with tempfile.TemporaryDirectory() as db_dir:
        yield Path(db_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    monkeypatch.setattr(config, "database_path", temp_dirs / "test_notd.db")
    monkeypatch.setattr(config, "in_memory_db", False)
    monkeypatch.setattr(config, "notifications_enabled", True)
    yield config


@pytest.fixture
def engine(test_config):
    """Initialized engine on a fresh database file."""
    engine = init_db()
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher():
    return TriggerDispatcher(notifications_enabled=True)


@pytest.fixture
def resolver(session_factory, dispatcher, notifier):
    return DefinitionResolver(session_factory, dispatcher=dispatcher, notifier=notifier)


@pytest.fixture
def indexer(resolver, dispatcher):
    return PropertyIndexer(resolver=resolver, dispatcher=dispatcher)


@pytest.fixture
def property_service(session_factory, indexer, notifier):
    return PropertyService(session_factory, indexer=indexer, notifier=notifier)


@pytest.fixture
def batch_service(session_factory, indexer, notifier):
    return BatchService(session_factory, indexer=indexer, notifier=notifier)


@pytest.fixture
def page_id(session_factory):
    """Id of an empty page named "Inbox"."""
    with session_factory() as session:
        page = DBPage(name="Inbox", content="")
        session.add(page)
        session.commit()
        return page.id


@pytest.fixture
def make_note(session_factory, page_id):
    """Factory inserting a note on the Inbox page and returning its id."""
    from notd_core.storage.note_repository import NoteRepository

    notes = NoteRepository()

    def _make(content="", parent_note_id=None, on_page=None):
        with session_factory() as session:
            note = notes.create_note(
                session,
                page_id=on_page or page_id,
                content=content,
                parent_note_id=parent_note_id,
            )
            session.commit()
            return note.id

    return _make
