"""SQLAlchemy database models for the notd core."""
import logging

from sqlalchemy import (Boolean, CheckConstraint, Column, DateTime, ForeignKey,
                        Integer, String, Text, create_engine, event, text)
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from notd_core.config import config
from notd_core.models.schema import utc_now

logger = logging.getLogger(__name__)

# Create base class for SQLAlchemy models
Base = declarative_base()


class DBPage(Base):
    """Database model for a page."""
    __tablename__ = "pages"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    # Maintained by the "alias" trigger
    alias = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<Page(id={self.id}, name='{self.name}')>"


class DBNote(Base):
    """Database model for a note (one node of a page's outline)."""
    __tablename__ = "notes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    page_id = Column(
        Integer, ForeignKey("pages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Deleting a parent with children is refused; the store enforces it too
    parent_note_id = Column(
        Integer, ForeignKey("notes.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    content = Column(Text, nullable=False, default="")
    order_index = Column(Integer, nullable=False, default=0)
    collapsed = Column(Boolean, nullable=False, default=False)
    # Mirrors whether the effective "internal" property is "true"
    internal = Column(Boolean, nullable=False, default=False, index=True)
    # Maintained by the "favorite" trigger
    is_favorite = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<Note(id={self.id}, page_id={self.page_id})>"


class DBProperty(Base):
    """Database model for one property row.

    Exactly one of note_id / page_id is set. Owner deletion removes the
    rows through ON DELETE CASCADE.
    """
    __tablename__ = "properties"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        Integer, ForeignKey("notes.id", ondelete="CASCADE"), nullable=True, index=True
    )
    page_id = Column(
        Integer, ForeignKey("pages.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name = Column(String(255), nullable=False, index=True)
    value = Column(Text, nullable=False, default="")
    weight = Column(Integer, nullable=False, default=2)
    internal = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "(note_id IS NULL) != (page_id IS NULL)", name="property_single_owner"
        ),
    )

    def __repr__(self) -> str:
        owner = f"note_id={self.note_id}" if self.note_id else f"page_id={self.page_id}"
        return f"<Property(id={self.id}, {owner}, name='{self.name}')>"


class DBPropertyDefinition(Base):
    """Database model for a property definition."""
    __tablename__ = "property_definitions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)
    internal = Column(Boolean, nullable=False, default=False)
    auto_apply = Column(Boolean, nullable=False, default=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<PropertyDefinition(name='{self.name}', internal={self.internal})>"


def init_db(db_url=None):
    """Initialize the database with hardened configuration.

    - Foreign keys enforced on every connection (cascades and RESTRICT rely on it)
    - Transactions begun explicitly so SAVEPOINTs nest correctly under pysqlite
    - WAL journal and NORMAL sync for file databases
    - busy_timeout so concurrent writers wait instead of failing at once

    Args:
        db_url: Database URL. Defaults to ``config.get_db_url()``.

    Returns:
        The configured engine.
    """
    url = db_url or config.get_db_url()
    in_memory = url in ("sqlite://", "sqlite:///:memory:")

    if in_memory:
        # One shared connection, otherwise every checkout sees an empty database
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        # SQLite is single-writer, so a small pool is ideal
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True,
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # Stop pysqlite from issuing its own BEGIN; see do_begin below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={int(config.busy_timeout_ms)}")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)

    init_fts5(engine)

    return engine


def init_fts5(engine) -> bool:
    """Initialize the FTS5 full-text index over note content.

    The index is kept in sync entirely by SQL triggers, so nothing in the
    core has to maintain it. Returns False when the SQLite build lacks FTS5.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("""
                CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts USING fts5(
                    content,
                    content='notes',
                    content_rowid='id'
                )
            """))
            conn.execute(text("""
                CREATE TRIGGER IF NOT EXISTS notes_ai AFTER INSERT ON notes BEGIN
                    INSERT INTO notes_fts(rowid, content) VALUES (NEW.id, NEW.content);
                END
            """))
            conn.execute(text("""
                CREATE TRIGGER IF NOT EXISTS notes_ad AFTER DELETE ON notes BEGIN
                    INSERT INTO notes_fts(notes_fts, rowid, content)
                    VALUES ('delete', OLD.id, OLD.content);
                END
            """))
            conn.execute(text("""
                CREATE TRIGGER IF NOT EXISTS notes_au AFTER UPDATE OF content ON notes BEGIN
                    INSERT INTO notes_fts(notes_fts, rowid, content)
                    VALUES ('delete', OLD.id, OLD.content);
                    INSERT INTO notes_fts(rowid, content) VALUES (NEW.id, NEW.content);
                END
            """))
            conn.commit()
        return True
    except OperationalError as e:
        logger.warning(f"FTS5 unavailable, full-text index disabled: {e}")
        return False


def get_session_factory(engine=None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine)
