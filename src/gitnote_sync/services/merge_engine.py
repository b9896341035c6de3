"""Pull and push passes between the local store and the remote repository.

Pull layers remote state onto the local store: metadata by
last-write-wins on ``updated_at``, notes keyed by id from the Markdown
front matter. Push publishes the config snapshot and every live note,
then deletes remote note files whose id prefix no longer matches a live
note. Neither pass is transactional; each file write is its own remote
call.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from gitnote_sync.exceptions import ConflictError, NotFoundError, ParseError, RemoteError
from gitnote_sync.models.schema import (
    ConfigSnapshot,
    ConflictSet,
    DecodedNote,
    Folder,
    Note,
    RemoteFile,
    is_newer,
    utc_now_iso,
)
from gitnote_sync.services.conflict_service import detect_conflicts
from gitnote_sync.storage import markdown_codec
from gitnote_sync.storage.config_codec import (
    CONFIG_PATH,
    build_snapshot,
    parse_snapshot,
    read_settings,
    same_content,
    serialize_snapshot,
)
from gitnote_sync.storage.remote_store import RemoteContentStore, git_blob_sha
from gitnote_sync.storage.settings_store import SettingsStore
from gitnote_sync.storage.sync_repository import SyncRepository

logger = logging.getLogger(__name__)


@dataclass
class PullOutcome:
    new_notes: int = 0
    updated_notes: int = 0
    config_found: bool = False
    failed_files: List[str] = field(default_factory=list)


@dataclass
class PushOutcome:
    synced_files: int = 0
    written: int = 0
    deleted: int = 0
    pull: Optional[PullOutcome] = None
    conflicts: Optional[ConflictSet] = None


class MergeEngine:
    """Runs pull and push passes against one remote repository."""

    def __init__(
        self,
        remote: RemoteContentStore,
        repository: SyncRepository,
        settings: SettingsStore,
    ):
        self._remote = remote
        self._repository = repository
        self._settings = settings

    # =========================================================================
    # Snapshots
    # =========================================================================

    def local_snapshot(self) -> ConfigSnapshot:
        return build_snapshot(
            self._repository.list_notebooks(),
            self._repository.list_folders(),
            self._repository.list_tags(),
            read_settings(self._settings),
        )

    def fetch_remote_snapshot(self) -> Optional[ConfigSnapshot]:
        """The remote snapshot, or None if absent or unreadable."""
        try:
            document = self._remote.get(CONFIG_PATH)
        except NotFoundError:
            return None
        try:
            return parse_snapshot(document.content)
        except ParseError as e:
            logger.warning("Ignoring unreadable remote config: %s", e)
            return None

    # =========================================================================
    # Pull
    # =========================================================================

    def pull(self) -> PullOutcome:
        """Merge remote metadata and notes into the local store.

        Raises:
            ConflictError: If the remote snapshot conflicts with local
                metadata. Nothing local has been modified at that point.
            RemoteError: If listing or reading the remote fails outright.
        """
        outcome = PullOutcome()

        remote_snapshot = self.fetch_remote_snapshot()
        if remote_snapshot is not None:
            outcome.config_found = True
            conflicts = detect_conflicts(self.local_snapshot(), remote_snapshot)
            if not conflicts.is_empty():
                raise ConflictError(conflicts)
            self.merge_metadata(remote_snapshot)
        else:
            logger.info("No remote config snapshot; skipping metadata merge")

        for entry in self._remote.list_files(markdown_codec.NOTES_ROOT):
            if not entry.name.endswith(".md"):
                continue
            try:
                result = self._pull_note_file(entry)
            except (RemoteError, SQLAlchemyError) as e:
                # NotFoundError is a RemoteError: the file vanished mid-pass
                logger.error("Failed to pull note %s: %s", entry.path, e)
                outcome.failed_files.append(entry.path)
                continue
            if result == "new":
                outcome.new_notes += 1
            elif result == "updated":
                outcome.updated_notes += 1

        logger.info(
            "Pull finished: %d new, %d updated, %d failed",
            outcome.new_notes,
            outcome.updated_notes,
            len(outcome.failed_files),
        )
        return outcome

    def merge_metadata(self, snapshot: ConfigSnapshot) -> None:
        """Last-write-wins upsert of notebooks and folders, insert-only tags."""
        for notebook in snapshot.notebooks:
            existing = self._repository.get_notebook(notebook.id)
            if existing is None:
                self._repository.insert_notebook(notebook)
            elif is_newer(notebook.updated_at, existing.updated_at):
                self._repository.update_notebook(notebook)

        for folder in _parents_first(snapshot.folders):
            self._merge_folder(folder)

        for tag in snapshot.tags:
            if self._repository.get_tag(tag.id) is not None:
                continue
            if self._repository.get_tag_by_name(tag.name) is not None:
                logger.warning(
                    "Skipping remote tag %s: name '%s' already used locally", tag.id, tag.name
                )
                continue
            self._repository.insert_tag(tag)

    def _merge_folder(self, folder: Folder) -> None:
        existing = self._repository.get_folder(folder.id)
        if existing is not None and not is_newer(folder.updated_at, existing.updated_at):
            return
        if self._repository.get_notebook(folder.notebook_id) is None:
            logger.warning(
                "Skipping folder %s: notebook %s unknown locally", folder.id, folder.notebook_id
            )
            return

        parent_id = folder.parent_id
        if parent_id and self._repository.get_folder(parent_id) is None:
            logger.warning("Folder %s: parent %s missing, attaching to root", folder.id, parent_id)
            parent_id = None
        if existing is not None and parent_id and self._repository.would_create_cycle(
            folder.id, parent_id
        ):
            logger.warning(
                "Folder %s: remote parent %s would create a cycle, keeping local parent",
                folder.id,
                parent_id,
            )
            parent_id = existing.parent_id

        folder = folder.model_copy(update={"parent_id": parent_id})
        if existing is None:
            self._repository.insert_folder(folder)
        else:
            self._repository.update_folder(folder)

    def _pull_note_file(self, entry: RemoteFile) -> Optional[str]:
        """Apply one remote note file. Returns "new", "updated" or None."""
        document = self._remote.get(entry.path)
        decoded = markdown_codec.decode(document.content, entry.name)
        if not decoded.id:
            logger.debug("Skipping %s: no id in front matter", entry.path)
            return None

        existing = self._repository.get_note(decoded.id)
        if existing is None:
            self._insert_pulled_note(decoded)
            return "new"

        folder_id = self._repository.find_folder(existing.notebook_id, decoded.folder_name)
        if is_newer(decoded.updated_at, existing.updated_at):
            updated = existing.model_copy(
                update={
                    "title": decoded.title,
                    "content": decoded.content,
                    "is_pinned": decoded.is_pinned,
                    "sort_order": decoded.sort_order,
                    "updated_at": decoded.updated_at,
                    "folder_id": folder_id or existing.folder_id,
                }
            )
            self._repository.update_note_from_remote(updated)
            self._repository.set_note_tags(updated.id, decoded.tags)
            return "updated"

        if existing.folder_id is None and folder_id is not None:
            # Repair a note whose folder link was lost locally
            self._repository.set_note_folder(existing.id, folder_id)
            return "updated"
        return None

    def _insert_pulled_note(self, decoded: DecodedNote) -> None:
        notebook_id = self._repository.find_or_create_notebook(
            decoded.notebook_name or markdown_codec.DEFAULT_NOTEBOOK
        )
        now = utc_now_iso()
        created_at = decoded.created_at or decoded.updated_at or now
        note = Note(
            id=decoded.id,
            title=decoded.title,
            content=decoded.content,
            notebook_id=notebook_id,
            folder_id=self._repository.find_folder(notebook_id, decoded.folder_name),
            is_pinned=decoded.is_pinned,
            is_deleted=False,
            sort_order=decoded.sort_order,
            created_at=created_at,
            updated_at=decoded.updated_at or created_at,
        )
        self._repository.insert_note(note)
        if decoded.tags:
            self._repository.set_note_tags(note.id, decoded.tags)

    # =========================================================================
    # Push
    # =========================================================================

    def push(self, pull_first: bool = True) -> PushOutcome:
        """Publish local state to the remote.

        Args:
            pull_first: Run a full pull first when the remote already has
                a config snapshot, so local edits land on the latest
                remote state. A conflict found there is reported in the
                outcome and does not stop the push.

        Raises:
            RemoteError / AuthError: On a failure that aborts the pass.
        """
        outcome = PushOutcome()
        self._remote.ensure_container_exists()

        if pull_first and self._remote.get_sha(CONFIG_PATH) is not None:
            try:
                outcome.pull = self.pull()
            except ConflictError as e:
                logger.warning("Pull before push stopped on conflicts: %s", e)
                outcome.conflicts = e.conflicts

        if self.push_config():
            outcome.written += 1
        outcome.synced_files += 1

        notes = self._repository.list_live_notes()
        remote_files = [
            f for f in self._remote.list_files(markdown_codec.NOTES_ROOT) if f.name.endswith(".md")
        ]
        remote_shas: Dict[str, str] = {f.path: f.sha for f in remote_files}

        for note in notes:
            path = markdown_codec.note_path(note)
            content = markdown_codec.encode_record(note)
            current_sha = remote_shas.get(path)
            if current_sha != git_blob_sha(content):
                self._remote.put(
                    path, content, expected_sha=current_sha, message=f"Sync: {note.title}"
                )
                outcome.written += 1
            outcome.synced_files += 1

        live_prefixes = {note.id[:8] for note in notes}
        outcome.deleted = self._delete_orphans(remote_files, live_prefixes)

        logger.info(
            "Push finished: %d synced, %d written, %d deleted",
            outcome.synced_files,
            outcome.written,
            outcome.deleted,
        )
        return outcome

    def push_config(self) -> bool:
        """Write the local config snapshot. Returns False if it was already current."""
        local = self.local_snapshot()
        try:
            document = self._remote.get(CONFIG_PATH)
        except NotFoundError:
            document = None

        if document is not None:
            try:
                if same_content(local, parse_snapshot(document.content)):
                    logger.debug("Remote config unchanged; skipping write")
                    return False
            except ParseError:
                logger.warning("Overwriting unreadable remote config")

        self._remote.put(
            CONFIG_PATH,
            serialize_snapshot(local),
            expected_sha=document.sha if document else None,
            message="Update config",
        )
        return True

    def _delete_orphans(self, remote_files: List[RemoteFile], live_prefixes: Set[str]) -> int:
        """Delete remote note files whose id suffix matches no live note."""
        deleted = 0
        for entry in remote_files:
            prefix = markdown_codec.extract_id_prefix(entry.name)
            if prefix is None or prefix in live_prefixes:
                continue
            try:
                self._remote.delete(entry.path, entry.sha, message=f"Delete: {entry.name}")
                deleted += 1
            except RemoteError as e:
                logger.error("Failed to delete orphaned note %s: %s", entry.path, e)
        return deleted


def _parents_first(folders: List[Folder]) -> List[Folder]:
    """Order folders so every parent present in the list precedes its children."""
    by_id = {f.id: f for f in folders}
    ordered: List[Folder] = []
    placed: Set[str] = set()

    def place(folder: Folder, trail: Set[str]) -> None:
        if folder.id in placed or folder.id in trail:
            return
        parent = by_id.get(folder.parent_id) if folder.parent_id else None
        if parent is not None:
            place(parent, trail | {folder.id})
        placed.add(folder.id)
        ordered.append(folder)

    for folder in folders:
        place(folder, set())
    return ordered
