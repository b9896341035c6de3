"""Conflict detection and resolution for the metadata snapshot.

Detection compares the local and remote snapshots entity by entity. Any
difference in a compared field is a conflict; the pull stops before
touching the local store and the records wait for an explicit
``local``/``remote`` decision per item.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from gitnote_sync.models.schema import (
    ConfigSnapshot,
    ConflictDecision,
    ConflictSet,
    Folder,
    FolderConflict,
    Notebook,
    NotebookConflict,
    SettingConflict,
    Tag,
    TagConflict,
    utc_now_iso,
)
from gitnote_sync.storage.config_codec import SETTINGS_KEYS
from gitnote_sync.storage.settings_store import SettingsStore
from gitnote_sync.storage.sync_repository import SyncRepository

logger = logging.getLogger(__name__)

NOTEBOOK_FIELDS = ("name", "updated_at")
FOLDER_FIELDS = ("name", "parent_id", "sort_order", "updated_at")
TAG_FIELDS = ("name",)

M = TypeVar("M", bound=BaseModel)


def _paired(local: Iterable[M], remote: Iterable[M]) -> List[Tuple[M, M]]:
    """Pairs of (local, remote) entities sharing an id, in remote order."""
    by_id = {item.id: item for item in local}
    return [(by_id[r.id], r) for r in remote if r.id in by_id]


def _differs(local: BaseModel, remote: BaseModel, fields: Tuple[str, ...]) -> bool:
    return any(getattr(local, f) != getattr(remote, f) for f in fields)


def detect_conflicts(local: ConfigSnapshot, remote: ConfigSnapshot) -> ConflictSet:
    """Compare two snapshots field by field.

    Entities present on one side only are not conflicts (the merge
    inserts them). Settings conflict only when both sides define the key.
    """
    notebooks = [
        NotebookConflict(id=loc.id, local=loc, remote=rem)
        for loc, rem in _paired(local.notebooks, remote.notebooks)
        if _differs(loc, rem, NOTEBOOK_FIELDS)
    ]
    folders = [
        FolderConflict(id=loc.id, local=loc, remote=rem)
        for loc, rem in _paired(local.folders, remote.folders)
        if _differs(loc, rem, FOLDER_FIELDS)
    ]
    tags = [
        TagConflict(id=loc.id, local=loc, remote=rem)
        for loc, rem in _paired(local.tags, remote.tags)
        if _differs(loc, rem, TAG_FIELDS)
    ]
    settings = [
        SettingConflict(key=key, local=local.settings[key], remote=remote.settings[key])
        for key in remote.settings
        if local.settings.get(key) is not None
        and remote.settings[key] is not None
        and local.settings[key] != remote.settings[key]
    ]
    conflicts = ConflictSet(
        notebooks=notebooks,
        folders=folders,
        tags=tags,
        settings=settings,
        detected_at=utc_now_iso(),
    )
    if not conflicts.is_empty():
        logger.info(
            "Detected %d config conflict(s): notebooks=%s folders=%s tags=%s settings=%s",
            conflicts.count(),
            [c.id for c in notebooks],
            [c.id for c in folders],
            [c.id for c in tags],
            [c.key for c in settings],
        )
    return conflicts


class ConflictResolver:
    """Applies per-item decisions to the local store."""

    def __init__(self, repository: SyncRepository, settings: SettingsStore):
        self._repository = repository
        self._settings = settings
        self.failed: List[Tuple[str, str]] = []

    def apply(self, conflicts: ConflictSet, decisions: Iterable[ConflictDecision]) -> ConflictSet:
        """Apply ``decisions`` and return the records left undecided.

        ``remote`` writes the remote value locally (insert if the entity
        has since vanished, else update). ``local`` keeps the local value,
        which is already in place. Decisions naming no pending record are
        ignored with a warning. A remote value the local store rejects
        (for example a tag name already taken by another tag) stays
        pending and is listed in ``failed``.
        """
        chosen: Dict[Tuple[str, str], str] = {}
        for decision in decisions:
            chosen[(decision.kind, decision.id)] = decision.use
        self.failed = []

        def decide(kind: str, key: str, conflict: Any, write: Callable[[], None], left: list):
            use = chosen.pop((kind, key), None)
            if use is None:
                left.append(conflict)
                return
            if use != "remote":
                return
            try:
                write()
            except SQLAlchemyError as e:
                logger.error("Could not apply remote %s '%s': %s", kind, key, e)
                self.failed.append((kind, key))
                left.append(conflict)

        remaining_notebooks: List[NotebookConflict] = []
        for c in conflicts.notebooks:
            decide("notebook", c.id, c, lambda c=c: self._apply_notebook(c.remote),
                   remaining_notebooks)

        remaining_folders: List[FolderConflict] = []
        for c in conflicts.folders:
            decide("folder", c.id, c, lambda c=c: self._apply_folder(c.remote),
                   remaining_folders)

        remaining_tags: List[TagConflict] = []
        for c in conflicts.tags:
            decide("tag", c.id, c, lambda c=c: self._apply_tag(c.remote), remaining_tags)

        remaining_settings: List[SettingConflict] = []
        for c in conflicts.settings:
            decide("setting", c.key, c, lambda c=c: self._apply_setting(c.key, c.remote),
                   remaining_settings)

        for kind, item_id in chosen:
            logger.warning("Ignoring decision for unknown %s conflict '%s'", kind, item_id)

        return ConflictSet(
            notebooks=remaining_notebooks,
            folders=remaining_folders,
            tags=remaining_tags,
            settings=remaining_settings,
            detected_at=conflicts.detected_at,
        )

    def _apply_notebook(self, notebook: Notebook) -> None:
        if self._repository.get_notebook(notebook.id) is None:
            self._repository.insert_notebook(notebook)
        else:
            self._repository.update_notebook(notebook)

    def _apply_folder(self, folder: Folder) -> None:
        parent_id = folder.parent_id
        if parent_id and (
            self._repository.get_folder(parent_id) is None
            or self._repository.would_create_cycle(folder.id, parent_id)
        ):
            logger.warning(
                "Folder %s: remote parent %s is missing or cyclic locally, detaching",
                folder.id,
                parent_id,
            )
            parent_id = None
        folder = folder.model_copy(update={"parent_id": parent_id})
        if self._repository.get_folder(folder.id) is None:
            self._repository.insert_folder(folder)
        else:
            self._repository.update_folder(folder)

    def _apply_tag(self, tag: Tag) -> None:
        if self._repository.get_tag(tag.id) is None:
            self._repository.insert_tag(tag)
        else:
            self._repository.update_tag(tag)

    def _apply_setting(self, key: str, value: Any) -> None:
        dotted: Optional[str] = SETTINGS_KEYS.get(key)
        if dotted is None:
            logger.warning("Ignoring unknown setting '%s'", key)
            return
        self._settings.set(dotted, value)
