"""Serialization of the non-note metadata snapshot (``config/data.json``)."""
import json
import logging
from typing import Any, Dict, Iterable, List

from pydantic import ValidationError as PydanticValidationError

from gitnote_sync.exceptions import ParseError
from gitnote_sync.models.schema import ConfigSnapshot, Folder, Notebook, Tag, utc_now_iso
from gitnote_sync.storage.settings_store import SettingsStore

logger = logging.getLogger(__name__)

CONFIG_PATH = "config/data.json"
SNAPSHOT_VERSION = "1.0.0"

# Exported setting name -> dotted key in the local settings store
SETTINGS_KEYS: Dict[str, str] = {
    "darkMode": "appearance.darkMode",
    "fontSize": "appearance.fontSize",
    "editorMode": "appearance.editorMode",
    "autoSave": "editor.autoSave",
}


def read_settings(settings: SettingsStore) -> Dict[str, Any]:
    """Collect the exported settings subset, omitting undefined keys."""
    values: Dict[str, Any] = {}
    for name, dotted in SETTINGS_KEYS.items():
        value = settings.get(dotted)
        if value is not None:
            values[name] = value
    return values


def build_snapshot(
    notebooks: Iterable[Notebook],
    folders: Iterable[Folder],
    tags: Iterable[Tag],
    settings: Dict[str, Any],
) -> ConfigSnapshot:
    return ConfigSnapshot(
        notebooks=list(notebooks),
        folders=list(folders),
        tags=list(tags),
        settings={k: v for k, v in settings.items() if v is not None},
        version=SNAPSHOT_VERSION,
        exported_at=utc_now_iso(),
    )


def serialize_snapshot(snapshot: ConfigSnapshot) -> str:
    """Pretty-printed JSON, two-space indent, camelCase ``exportedAt``."""
    data = snapshot.model_dump(by_alias=True)
    data["settings"] = {k: v for k, v in data["settings"].items() if v is not None}
    return json.dumps(data, indent=2, ensure_ascii=False)


def parse_snapshot(text: str, path: str = CONFIG_PATH) -> ConfigSnapshot:
    """Structural inverse of :func:`serialize_snapshot`.

    Raises:
        ParseError: If the text is not JSON or not snapshot-shaped.
    """
    try:
        return ConfigSnapshot.model_validate_json(text)
    except PydanticValidationError as e:
        raise ParseError("Malformed config snapshot", path=path, original_error=e)


def _content(snapshot: ConfigSnapshot) -> Dict[str, List[Any]]:
    data = snapshot.model_dump(exclude={"exported_at"})
    data["settings"] = {k: v for k, v in data["settings"].items() if v is not None}
    return data


def same_content(a: ConfigSnapshot, b: ConfigSnapshot) -> bool:
    """Compare two snapshots ignoring the export timestamp."""
    return _content(a) == _content(b)
