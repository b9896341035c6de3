"""Markdown serialization for notes mirrored to the remote repository.

A note travels as a fixed-order front-matter block followed by a blank
line and the raw content. The header layout is byte-exact. It is read
back with line-anchored regexes, one field at a time, so a damaged line
only loses that field.
"""
import logging
import re
from typing import Iterable, List, Optional

from gitnote_sync.models.schema import DecodedNote, Note, NoteRecord

logger = logging.getLogger(__name__)

NOTES_ROOT = "notes"
DEFAULT_NOTEBOOK = "default"
MAX_FILENAME_LENGTH = 100

FRONT_MATTER_FIELDS = (
    "id",
    "title",
    "notebook",
    "folder",
    "tags",
    "is_pinned",
    "sort_order",
    "created_at",
    "updated_at",
)

_FRONT_MATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)(.*)\Z", re.DOTALL)
_UNSAFE_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE_RE = re.compile(r"\s+")
_ID_SUFFIX_RE = re.compile(r"_([a-f0-9]{8})\.md$")
_QUOTED_ITEM_RE = re.compile(r'"((?:[^"\\]|\\.)*)"')
_INT_RE = re.compile(r"^-?\d+")


def sanitize_file_name(name: str) -> str:
    """Make ``name`` safe as a single path segment.

    Replaces ``<>:"/\\|?*`` with ``_``, collapses whitespace runs into a
    single ``_`` and truncates to 100 characters.
    """
    name = _UNSAFE_CHARS_RE.sub("_", name)
    name = _WHITESPACE_RE.sub("_", name)
    return name[:MAX_FILENAME_LENGTH]


def note_path(note: NoteRecord) -> str:
    """Remote path ``notes/<notebook>/<title>_<id8>.md`` for a live note."""
    notebook = sanitize_file_name(note.notebook_name or DEFAULT_NOTEBOOK)
    file_name = f"{sanitize_file_name(note.title)}_{note.id[:8]}.md"
    return f"{NOTES_ROOT}/{notebook}/{file_name}"


def extract_id_prefix(file_name: str) -> Optional[str]:
    """Return the 8-hex id suffix of a note file name, or None."""
    match = _ID_SUFFIX_RE.search(file_name)
    return match.group(1) if match else None


def title_from_file_name(file_name: str) -> str:
    base = file_name.rsplit("/", 1)[-1]
    return base[:-3] if base.endswith(".md") else base


def _escape(value: str) -> str:
    return value.replace('"', '\\"')


def _unescape(value: str) -> str:
    return value.replace('\\"', '"')


def encode(
    note: Note,
    notebook_name: Optional[str],
    folder_name: Optional[str],
    tag_names: Iterable[str],
) -> str:
    """Render a note as front matter plus content.

    Only the title is escaped; every other value and the content are
    written verbatim.
    """
    tags = ", ".join(f'"{t}"' for t in tag_names)
    header = "\n".join(
        [
            "---",
            f"id: {note.id}",
            f'title: "{_escape(note.title)}"',
            f"notebook: {notebook_name or DEFAULT_NOTEBOOK}",
            f"folder: {folder_name or ''}",
            f"tags: [{tags}]",
            f"is_pinned: {int(note.is_pinned)}",
            f"sort_order: {note.sort_order}",
            f"created_at: {note.created_at}",
            f"updated_at: {note.updated_at}",
            "---",
        ]
    )
    return f"{header}\n\n{note.content}"


def encode_record(note: NoteRecord) -> str:
    """Encode a joined note record using its own notebook, folder and tag names."""
    return encode(note, note.notebook_name, note.folder_name, note.tags)


class _FrontMatter:
    """Permissive key lookup over the raw lines of a front-matter block."""

    def __init__(self, block: str):
        self._block = block

    def raw(self, key: str) -> Optional[str]:
        match = re.search(
            rf"^[ \t]*{re.escape(key)}[ \t]*:[ \t]*(.*?)[ \t]*\r?$",
            self._block,
            re.MULTILINE,
        )
        if not match:
            return None
        return match.group(1)

    def text(self, key: str) -> Optional[str]:
        """String value with optional surrounding quotes removed; empty -> None."""
        value = self.raw(key)
        if value is None:
            return None
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            # Quoted values keep their inner whitespace
            inner = value[1:-1]
            return (_unescape(inner) if value[0] == '"' else inner) or None
        if value.startswith('"'):
            # Unterminated quote: keep what follows it
            value = _unescape(value[1:])
        return value.strip() or None

    def integer(self, key: str, default: int = 0) -> int:
        value = self.text(key)
        if value is None:
            return default
        match = _INT_RE.match(value)
        if not match:
            logger.debug("Non-integer front matter value %s=%r, using %d", key, value, default)
            return default
        return int(match.group(0))

    def tag_list(self, key: str) -> List[str]:
        value = self.raw(key)
        if not value:
            return []
        value = value.strip()
        if value.startswith("[") and value.endswith("]"):
            inner = value[1:-1]
            quoted = _QUOTED_ITEM_RE.findall(inner)
            if quoted:
                return [_unescape(t).strip() for t in quoted if t.strip()]
            return [t.strip().strip("'\"") for t in inner.split(",") if t.strip()]
        return [t.strip() for t in value.split(",") if t.strip()]


def decode(document: str, file_name: str) -> DecodedNote:
    """Recover note fields from a remote document.

    Never raises: malformed or missing values fall back to defaults
    (title from the file name, ``is_pinned`` False, ``sort_order`` 0).
    A document without a front-matter block is all content.
    """
    fallback_title = title_from_file_name(file_name)
    match = _FRONT_MATTER_RE.match(document)
    if not match:
        return DecodedNote(title=fallback_title, content=document)

    fm = _FrontMatter(match.group(1))
    body = match.group(2)
    # Drop the blank separator line written by encode()
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]

    return DecodedNote(
        id=fm.text("id"),
        title=fm.text("title") or fallback_title,
        content=body,
        notebook_name=fm.text("notebook"),
        folder_name=fm.text("folder"),
        tags=fm.tag_list("tags"),
        is_pinned=fm.integer("is_pinned") != 0,
        sort_order=fm.integer("sort_order"),
        created_at=fm.text("created_at"),
        updated_at=fm.text("updated_at"),
    )
