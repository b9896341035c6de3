"""SQLAlchemy database models for the local note store."""
from typing import Optional

from sqlalchemy import (Column, ForeignKey, Index, Integer, String, Table, Text,
                        create_engine, event, func, select)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from gitnote_sync.models.schema import generate_id, utc_now_iso

# Create base class for SQLAlchemy models
Base = declarative_base()

# Association table for tags and notes
note_tags = Table(
    "note_tags",
    Base.metadata,
    Column("note_id", String, ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", String, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    Index("idx_note_tags_note_id", "note_id"),
    Index("idx_note_tags_tag_id", "tag_id"),
)


class DBNotebook(Base):
    """Database model for a notebook."""
    __tablename__ = "notebooks"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)

    def __repr__(self) -> str:
        return f"<Notebook(id='{self.id}', name='{self.name}')>"


class DBFolder(Base):
    """Database model for a folder; deleting a folder removes its subtree."""
    __tablename__ = "folders"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    notebook_id = Column(
        String, ForeignKey("notebooks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_id = Column(
        String, ForeignKey("folders.id", ondelete="CASCADE"), nullable=True, index=True
    )
    sort_order = Column(Integer, default=0, index=True)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)

    def __repr__(self) -> str:
        return f"<Folder(id='{self.id}', name='{self.name}')>"


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    content = Column(Text, default="")
    notebook_id = Column(
        String, ForeignKey("notebooks.id", ondelete="SET NULL"), nullable=True, index=True
    )
    folder_id = Column(
        String, ForeignKey("folders.id", ondelete="CASCADE"), nullable=True, index=True
    )
    is_pinned = Column(Integer, default=0, index=True)
    is_deleted = Column(Integer, default=0)
    sort_order = Column(Integer, default=0, index=True)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tags"
    id = Column(String, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    created_at = Column(String, nullable=False)

    def __repr__(self) -> str:
        return f"<Tag(id='{self.id}', name='{self.name}')>"


class DBSyncHistory(Base):
    """One row per push or pull pass."""
    __tablename__ = "sync_history"
    id = Column(Integer, primary_key=True, autoincrement=True)
    sync_type = Column(String, nullable=False)
    status = Column(String, nullable=False)
    message = Column(Text, nullable=True)
    files_count = Column(Integer, default=0)
    synced_at = Column(String, nullable=False)


def init_db(db_url: str, default_notebook_name: Optional[str] = None) -> Engine:
    """Create the engine, the schema and the default notebook.

    Foreign keys are switched on per connection so folder deletion
    cascades. ``check_same_thread`` is disabled because scheduler timers
    run sync passes on their own threads.
    """
    engine = create_engine(db_url, connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    ensure_default_notebook(engine, default_notebook_name or "Default Notebook")
    return engine


def ensure_default_notebook(engine: Engine, name: str) -> None:
    """Insert one notebook if the store has none. Idempotent."""
    with engine.begin() as conn:
        count = conn.execute(select(func.count()).select_from(DBNotebook.__table__)).scalar()
        if not count:
            now = utc_now_iso()
            conn.execute(
                DBNotebook.__table__.insert().values(
                    id=generate_id(), name=name, created_at=now, updated_at=now
                )
            )
