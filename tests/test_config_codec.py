"""Tests for the config snapshot codec."""

import json

import pytest

from gitnote_sync.exceptions import ParseError
from gitnote_sync.storage.config_codec import (
    SETTINGS_KEYS,
    build_snapshot,
    parse_snapshot,
    read_settings,
    same_content,
    serialize_snapshot,
)
from tests.fakes import make_folder, make_notebook, make_tag


@pytest.fixture
def snapshot():
    return build_snapshot(
        [make_notebook()],
        [make_folder(), make_folder(id="f-2", name="Child", parent_id="f-1")],
        [make_tag()],
        {"darkMode": True, "fontSize": 14, "editorMode": None},
    )


class TestSerialize:
    """Tests for the JSON layout of config/data.json."""

    def test_layout(self, snapshot):
        text = serialize_snapshot(snapshot)
        data = json.loads(text)
        assert set(data) == {"notebooks", "folders", "tags", "settings", "version", "exportedAt"}
        assert data["version"] == "1.0.0"
        assert data["settings"] == {"darkMode": True, "fontSize": 14}
        assert data["folders"][1]["parent_id"] == "f-1"
        assert text.startswith('{\n  "notebooks"')

    def test_parse_inverts_serialize(self, snapshot):
        parsed = parse_snapshot(serialize_snapshot(snapshot))
        assert parsed == snapshot

    def test_non_ascii_kept(self):
        snap = build_snapshot([make_notebook(name="笔记")], [], [], {})
        assert "笔记" in serialize_snapshot(snap)


class TestParse:
    """Tests for rejecting malformed snapshots."""

    def test_invalid_json(self):
        with pytest.raises(ParseError):
            parse_snapshot("{not json")

    def test_wrong_structure(self):
        with pytest.raises(ParseError):
            parse_snapshot('{"notebooks": [{"id": 1}]}')

    def test_missing_lists_default_empty(self):
        parsed = parse_snapshot('{"version": "1.0.0", "exportedAt": "2024-01-01T00:00:00.000Z"}')
        assert parsed.notebooks == []
        assert parsed.settings == {}


class TestSameContent:
    """Tests for the export-timestamp-insensitive comparison."""

    def test_ignores_exported_at(self, snapshot):
        other = snapshot.model_copy(update={"exported_at": "1999-01-01T00:00:00.000Z"})
        assert same_content(snapshot, other)

    def test_detects_changes(self, snapshot):
        other = snapshot.model_copy(update={"tags": []})
        assert not same_content(snapshot, other)


class TestReadSettings:
    """Tests for the exported settings subset."""

    def test_maps_dotted_keys(self, settings):
        settings.set("appearance.darkMode", False)
        settings.set("editor.autoSave", True)
        settings.set("github.accessToken", "secret")
        assert read_settings(settings) == {"darkMode": False, "autoSave": True}

    def test_known_keys(self):
        assert SETTINGS_KEYS["fontSize"] == "appearance.fontSize"
