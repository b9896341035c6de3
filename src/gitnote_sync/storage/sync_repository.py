"""Repository for the local entities the sync engine reads and writes.

All SQL used by the merge engine lives here, on top of the
``LocalStore`` query primitives. Soft-deleted notes are excluded at this
boundary; the engine never inspects ``is_deleted`` itself.
"""
import logging
from typing import Iterable, List, Optional

from gitnote_sync.models.schema import (
    Folder,
    Note,
    Notebook,
    NoteRecord,
    Tag,
    generate_id,
    utc_now_iso,
)
from gitnote_sync.storage.local_store import LocalStore

logger = logging.getLogger(__name__)


class SyncRepository:
    """Reads and upserts notebooks, folders, tags and notes."""

    def __init__(self, store: LocalStore):
        """Initialize the repository.

        Args:
            store: Local store exposing query_all / query_one / run.
        """
        self.store = store

    # ------------------------------------------------------------------
    # Notebooks
    # ------------------------------------------------------------------

    def list_notebooks(self) -> List[Notebook]:
        rows = self.store.query_all("SELECT * FROM notebooks ORDER BY created_at")
        return [Notebook.model_validate(r) for r in rows]

    def get_notebook(self, notebook_id: str) -> Optional[Notebook]:
        row = self.store.query_one(
            "SELECT * FROM notebooks WHERE id = :id", {"id": notebook_id}
        )
        return Notebook.model_validate(row) if row else None

    def insert_notebook(self, notebook: Notebook) -> None:
        self.store.run(
            "INSERT INTO notebooks (id, name, created_at, updated_at) "
            "VALUES (:id, :name, :created_at, :updated_at)",
            notebook.model_dump(),
        )

    def update_notebook(self, notebook: Notebook) -> None:
        self.store.run(
            "UPDATE notebooks SET name = :name, updated_at = :updated_at WHERE id = :id",
            {"id": notebook.id, "name": notebook.name, "updated_at": notebook.updated_at},
        )

    def find_or_create_notebook(self, name: str) -> str:
        """Return the id of the notebook called ``name``, creating it if absent."""
        row = self.store.query_one(
            "SELECT id FROM notebooks WHERE name = :name", {"name": name}
        )
        if row:
            return row["id"]
        now = utc_now_iso()
        notebook = Notebook(id=generate_id(), name=name, created_at=now, updated_at=now)
        self.insert_notebook(notebook)
        logger.info("Created notebook '%s' for pulled note", name)
        return notebook.id

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    def list_folders(self) -> List[Folder]:
        rows = self.store.query_all("SELECT * FROM folders ORDER BY sort_order")
        return [Folder.model_validate(r) for r in rows]

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        row = self.store.query_one(
            "SELECT * FROM folders WHERE id = :id", {"id": folder_id}
        )
        return Folder.model_validate(row) if row else None

    def insert_folder(self, folder: Folder) -> None:
        self.store.run(
            "INSERT INTO folders "
            "(id, name, notebook_id, parent_id, sort_order, created_at, updated_at) "
            "VALUES (:id, :name, :notebook_id, :parent_id, :sort_order, "
            ":created_at, :updated_at)",
            folder.model_dump(),
        )

    def update_folder(self, folder: Folder) -> None:
        self.store.run(
            "UPDATE folders SET name = :name, parent_id = :parent_id, "
            "sort_order = :sort_order, updated_at = :updated_at WHERE id = :id",
            {
                "id": folder.id,
                "name": folder.name,
                "parent_id": folder.parent_id,
                "sort_order": folder.sort_order,
                "updated_at": folder.updated_at,
            },
        )

    def find_folder(self, notebook_id: Optional[str], name: Optional[str]) -> Optional[str]:
        """Return the id of the folder named ``name`` in ``notebook_id``, if any."""
        if not notebook_id or not name:
            return None
        row = self.store.query_one(
            "SELECT id FROM folders WHERE notebook_id = :notebook_id AND name = :name "
            "ORDER BY sort_order LIMIT 1",
            {"notebook_id": notebook_id, "name": name},
        )
        return row["id"] if row else None

    def would_create_cycle(self, folder_id: str, parent_id: Optional[str]) -> bool:
        """True if making ``parent_id`` the parent of ``folder_id`` closes a loop."""
        seen = set()
        current = parent_id
        while current:
            if current == folder_id or current in seen:
                return True
            seen.add(current)
            row = self.store.query_one(
                "SELECT parent_id FROM folders WHERE id = :id", {"id": current}
            )
            current = row["parent_id"] if row else None
        return False

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def list_tags(self) -> List[Tag]:
        rows = self.store.query_all("SELECT * FROM tags ORDER BY name")
        return [Tag.model_validate(r) for r in rows]

    def get_tag(self, tag_id: str) -> Optional[Tag]:
        row = self.store.query_one("SELECT * FROM tags WHERE id = :id", {"id": tag_id})
        return Tag.model_validate(row) if row else None

    def get_tag_by_name(self, name: str) -> Optional[Tag]:
        row = self.store.query_one("SELECT * FROM tags WHERE name = :name", {"name": name})
        return Tag.model_validate(row) if row else None

    def insert_tag(self, tag: Tag) -> None:
        self.store.run(
            "INSERT INTO tags (id, name, created_at) VALUES (:id, :name, :created_at)",
            tag.model_dump(),
        )

    def update_tag(self, tag: Tag) -> None:
        self.store.run(
            "UPDATE tags SET name = :name WHERE id = :id", {"id": tag.id, "name": tag.name}
        )

    def get_or_create_tag(self, name: str) -> str:
        existing = self.get_tag_by_name(name)
        if existing:
            return existing.id
        tag = Tag(id=generate_id(), name=name, created_at=utc_now_iso())
        self.insert_tag(tag)
        return tag.id

    def set_note_tags(self, note_id: str, tag_names: Iterable[str]) -> None:
        """Replace the tag links of a note, creating missing tags by name."""
        self.store.run("DELETE FROM note_tags WHERE note_id = :note_id", {"note_id": note_id})
        for name in dict.fromkeys(n for n in tag_names if n):
            tag_id = self.get_or_create_tag(name)
            self.store.run(
                "INSERT OR IGNORE INTO note_tags (note_id, tag_id) VALUES (:note_id, :tag_id)",
                {"note_id": note_id, "tag_id": tag_id},
            )

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def get_note(self, note_id: str) -> Optional[Note]:
        row = self.store.query_one("SELECT * FROM notes WHERE id = :id", {"id": note_id})
        return Note.model_validate(row) if row else None

    def insert_note(self, note: Note) -> None:
        params = note.model_dump()
        params["is_pinned"] = int(note.is_pinned)
        params["is_deleted"] = int(note.is_deleted)
        self.store.run(
            "INSERT INTO notes (id, title, content, notebook_id, folder_id, is_pinned, "
            "is_deleted, sort_order, created_at, updated_at) "
            "VALUES (:id, :title, :content, :notebook_id, :folder_id, :is_pinned, "
            ":is_deleted, :sort_order, :created_at, :updated_at)",
            params,
        )

    def update_note_from_remote(self, note: Note) -> None:
        """Overwrite the fields a newer remote copy is authoritative for."""
        self.store.run(
            "UPDATE notes SET title = :title, content = :content, folder_id = :folder_id, "
            "is_pinned = :is_pinned, sort_order = :sort_order, updated_at = :updated_at "
            "WHERE id = :id",
            {
                "id": note.id,
                "title": note.title,
                "content": note.content,
                "folder_id": note.folder_id,
                "is_pinned": int(note.is_pinned),
                "sort_order": note.sort_order,
                "updated_at": note.updated_at,
            },
        )

    def set_note_folder(self, note_id: str, folder_id: Optional[str]) -> None:
        self.store.run(
            "UPDATE notes SET folder_id = :folder_id WHERE id = :id",
            {"id": note_id, "folder_id": folder_id},
        )

    def list_live_notes(self) -> List[NoteRecord]:
        """All non-deleted notes joined with notebook, folder and tag names."""
        rows = self.store.query_all(
            """
            SELECT n.*, nb.name AS notebook_name, f.name AS folder_name,
                   GROUP_CONCAT(t.name) AS tags
            FROM notes n
            LEFT JOIN notebooks nb ON n.notebook_id = nb.id
            LEFT JOIN folders f ON n.folder_id = f.id
            LEFT JOIN note_tags nt ON n.id = nt.note_id
            LEFT JOIN tags t ON nt.tag_id = t.id
            WHERE n.is_deleted = 0
            GROUP BY n.id
            ORDER BY n.updated_at DESC
            """
        )
        return [NoteRecord.model_validate(r) for r in rows]

    # ------------------------------------------------------------------
    # Sync history
    # ------------------------------------------------------------------

    def record_sync(self, sync_type: str, status: str, message: str, files_count: int) -> None:
        self.store.run(
            "INSERT INTO sync_history (sync_type, status, message, files_count, synced_at) "
            "VALUES (:sync_type, :status, :message, :files_count, :synced_at)",
            {
                "sync_type": sync_type,
                "status": status,
                "message": message,
                "files_count": files_count,
                "synced_at": utc_now_iso(),
            },
        )

    def list_sync_history(self, limit: int = 20) -> List[dict]:
        return self.store.query_all(
            "SELECT * FROM sync_history ORDER BY id DESC LIMIT :limit", {"limit": limit}
        )
