"""Data models for gitnote-sync."""

import datetime
import uuid
from dataclasses import dataclass
from datetime import timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Current UTC time in the fixed-width form ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

    All timestamps written by this package use this form so that plain
    string comparison and absolute-time comparison agree.
    """
    return utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC."""
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    """Parse an ISO-8601 string into an aware datetime, or None if unusable."""
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return ensure_timezone_aware(datetime.datetime.fromisoformat(text))
    except ValueError:
        return None


def is_newer(candidate: Optional[str], reference: Optional[str]) -> bool:
    """Return True if ``candidate`` is strictly later than ``reference``.

    Both sides are normalized to absolute UTC time first, so mixed offsets
    and precisions compare correctly. If either side cannot be parsed the
    comparison falls back to lexical order. A missing candidate is never
    newer; a missing reference loses to any candidate.
    """
    if not candidate:
        return False
    if not reference:
        return True
    cand_dt = parse_timestamp(candidate)
    ref_dt = parse_timestamp(reference)
    if cand_dt is not None and ref_dt is not None:
        return cand_dt > ref_dt
    return candidate > reference


def generate_id() -> str:
    """Generate a stable entity id (random UUID4)."""
    return str(uuid.uuid4())


class Notebook(BaseModel):
    """Root container for folders and notes."""

    id: str
    name: str
    created_at: str
    updated_at: str


class Folder(BaseModel):
    """A folder inside a notebook; ``parent_id`` forms a tree."""

    id: str
    name: str
    notebook_id: str
    parent_id: Optional[str] = None
    sort_order: int = 0
    created_at: str
    updated_at: str

    @field_validator("sort_order", mode="before")
    @classmethod
    def _default_sort_order(cls, v: Any) -> Any:
        return 0 if v is None else v


class Tag(BaseModel):
    """A globally unique, case-sensitive tag."""

    id: str
    name: str
    created_at: str


class Note(BaseModel):
    """A note as stored locally. Content is opaque Markdown."""

    id: str
    title: str
    content: str = ""
    notebook_id: Optional[str] = None
    folder_id: Optional[str] = None
    is_pinned: bool = False
    is_deleted: bool = False
    sort_order: int = 0
    created_at: str
    updated_at: str

    @field_validator("sort_order", mode="before")
    @classmethod
    def _default_sort_order(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("content", mode="before")
    @classmethod
    def _default_content(cls, v: Any) -> Any:
        return "" if v is None else v


class NoteRecord(Note):
    """A live note joined with its notebook name, folder name and tag names."""

    notebook_name: Optional[str] = None
    folder_name: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, v: Any) -> Any:
        # GROUP_CONCAT projection arrives as "a,b,c"
        if v is None:
            return []
        if isinstance(v, str):
            return sorted({t.strip() for t in v.split(",") if t.strip()})
        return v


class DecodedNote(BaseModel):
    """Partial note fields recovered from a remote Markdown document."""

    id: Optional[str] = None
    title: str
    content: str = ""
    notebook_name: Optional[str] = None
    folder_name: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    is_pinned: bool = False
    sort_order: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class RemoteFile(BaseModel):
    """An entry from a remote directory listing (ephemeral)."""

    name: str
    path: str
    sha: str
    kind: Literal["file", "dir"] = "file"


class RemoteDocument(BaseModel):
    """A remote file's decoded content and its content hash."""

    path: str
    content: str
    sha: str


class ConfigSnapshot(BaseModel):
    """All non-note metadata, exchanged as ``config/data.json``."""

    model_config = ConfigDict(populate_by_name=True)

    notebooks: List[Notebook] = Field(default_factory=list)
    folders: List[Folder] = Field(default_factory=list)
    tags: List[Tag] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)
    version: str = "1.0.0"
    exported_at: str = Field(default_factory=utc_now_iso, alias="exportedAt")


# ----------------------------------------------------------------------
# Conflict records
# ----------------------------------------------------------------------

ConflictKind = Literal["notebook", "folder", "tag", "setting"]


class NotebookConflict(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    local: Notebook
    remote: Notebook


class FolderConflict(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    local: Folder
    remote: Folder


class TagConflict(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    local: Tag
    remote: Tag


class SettingConflict(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    local: Any
    remote: Any


class ConflictSet(BaseModel):
    """Immutable set of conflict records detected during one pull."""

    model_config = ConfigDict(frozen=True)

    notebooks: List[NotebookConflict] = Field(default_factory=list)
    folders: List[FolderConflict] = Field(default_factory=list)
    tags: List[TagConflict] = Field(default_factory=list)
    settings: List[SettingConflict] = Field(default_factory=list)
    detected_at: Optional[str] = None

    def count(self) -> int:
        return (
            len(self.notebooks)
            + len(self.folders)
            + len(self.tags)
            + len(self.settings)
        )

    def is_empty(self) -> bool:
        return self.count() == 0


class ConflictDecision(BaseModel):
    """A user's choice for one conflict record. ``id`` is the setting key for settings."""

    model_config = ConfigDict(frozen=True)

    kind: ConflictKind
    id: str
    use: Literal["local", "remote"]


# ----------------------------------------------------------------------
# Results returned to the rest of the application
# ----------------------------------------------------------------------


@dataclass
class SyncResult:
    success: bool
    message: str
    synced_files: int = 0


@dataclass
class PullResult:
    success: bool
    message: str
    new_notes: int = 0
    updated_notes: int = 0
    conflicts: Optional[ConflictSet] = None


@dataclass
class LoginResult:
    success: bool
    user: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class ResolveResult:
    success: bool
    message: str = ""


@dataclass
class SyncStatus:
    last_sync: Optional[str]
    status: Literal["idle", "syncing", "success", "error"]
    message: str
    auto_sync_enabled: bool
    sync_interval: int
