"""Tests for the pull and push passes of the merge engine."""

import json

import pytest

from gitnote_sync.exceptions import AuthError, ConflictError
from gitnote_sync.models.schema import ConfigSnapshot
from gitnote_sync.services.merge_engine import MergeEngine
from gitnote_sync.storage.config_codec import CONFIG_PATH, build_snapshot, serialize_snapshot
from gitnote_sync.storage.markdown_codec import encode
from tests.fakes import TS_MID, TS_NEW, TS_OLD, make_folder, make_note, make_notebook, make_tag

NOTE_A = "0a1b2c3d-0000-4000-8000-000000000001"
NOTE_B = "bbbbbbbb-0000-4000-8000-000000000002"


@pytest.fixture
def engine(fake_remote, repository, settings):
    return MergeEngine(fake_remote, repository, settings)


def seed_config(remote, notebooks=(), folders=(), tags=(), settings=None):
    snapshot = build_snapshot(notebooks, folders, tags, settings or {})
    remote.seed(CONFIG_PATH, serialize_snapshot(snapshot))


def seed_note(remote, note, notebook="Work", folder=None, tags=()):
    path = f"notes/{notebook}/{note.title}_{note.id[:8]}.md"
    remote.seed(path, encode(note, notebook, folder, list(tags)))
    return path


class TestPull:
    """Tests for MergeEngine.pull."""

    def test_fresh_store_pull(self, engine, fake_remote, repository):
        """One remote notebook and one note land next to the default notebook."""
        seed_config(fake_remote, [make_notebook()])
        seed_note(fake_remote, make_note(id=NOTE_A), tags=["python"])

        outcome = engine.pull()

        assert outcome.config_found is True
        assert outcome.new_notes == 1
        assert outcome.updated_notes == 0
        assert len(repository.list_notebooks()) == 2
        note = repository.get_note(NOTE_A)
        assert note.notebook_id == "nb-1"
        assert note.is_deleted is False
        assert repository.list_live_notes()[0].tags == ["python"]

    def test_pull_without_config(self, engine, fake_remote, repository):
        """A missing config skips the metadata merge but still pulls notes."""
        seed_note(fake_remote, make_note(id=NOTE_A), notebook="Elsewhere")
        outcome = engine.pull()
        assert outcome.config_found is False
        assert outcome.new_notes == 1
        names = {nb.name for nb in repository.list_notebooks()}
        assert "Elsewhere" in names

    def test_unreadable_config_treated_as_absent(self, engine, fake_remote):
        fake_remote.seed(CONFIG_PATH, "{broken")
        assert engine.pull().config_found is False

    def test_note_without_notebook_goes_to_default(self, engine, fake_remote, repository):
        fake_remote.seed("notes/x/Loose_0a1b2c3d.md", f"---\nid: {NOTE_A}\n---\n\nhi")
        engine.pull()
        notebook = repository.get_notebook(repository.get_note(NOTE_A).notebook_id)
        assert notebook.name == "default"

    def test_file_without_id_skipped(self, engine, fake_remote, repository):
        fake_remote.seed("notes/x/Plain.md", "no front matter")
        fake_remote.seed("notes/x/data.txt", "not markdown")
        outcome = engine.pull()
        assert outcome.new_notes == 0
        assert repository.list_live_notes() == []

    def test_newer_remote_note_updates(self, engine, fake_remote, repository, default_notebook):
        repository.insert_note(make_note(id=NOTE_A, notebook_id=default_notebook.id, ts=TS_OLD))
        remote_note = make_note(id=NOTE_A, title="Remote title", content="new body", ts=TS_NEW)
        seed_note(fake_remote, remote_note, notebook=default_notebook.name, tags=["x", "y"])

        outcome = engine.pull()

        assert outcome.updated_notes == 1
        note = repository.get_note(NOTE_A)
        assert note.title == "Remote title"
        assert note.content == "new body"
        assert note.updated_at == TS_NEW
        assert repository.list_live_notes()[0].tags == ["x", "y"]

    def test_older_remote_note_ignored(self, engine, fake_remote, repository, default_notebook):
        repository.insert_note(make_note(id=NOTE_A, notebook_id=default_notebook.id, ts=TS_NEW))
        seed_note(fake_remote, make_note(id=NOTE_A, title="Stale", ts=TS_OLD))
        outcome = engine.pull()
        assert outcome.updated_notes == 0
        assert repository.get_note(NOTE_A).title == "Hello"

    def test_equal_timestamps_ignored(self, engine, fake_remote, repository, default_notebook):
        repository.insert_note(make_note(id=NOTE_A, notebook_id=default_notebook.id, ts=TS_MID))
        seed_note(fake_remote, make_note(id=NOTE_A, title="Same time", ts=TS_MID))
        assert engine.pull().updated_notes == 0

    def test_repair_missing_folder_link(self, engine, fake_remote, repository):
        """An older remote copy still restores a lost folder link."""
        repository.insert_notebook(make_notebook())
        repository.insert_folder(make_folder())
        repository.insert_note(make_note(id=NOTE_A, notebook_id="nb-1", ts=TS_NEW))
        seed_note(fake_remote, make_note(id=NOTE_A, title="Older", ts=TS_OLD), folder="Projects")

        outcome = engine.pull()

        assert outcome.updated_notes == 1
        note = repository.get_note(NOTE_A)
        assert note.folder_id == "f-1"
        assert note.title == "Hello"

    def test_newer_note_keeps_local_folder_when_unresolved(self, engine, fake_remote, repository):
        repository.insert_notebook(make_notebook())
        repository.insert_folder(make_folder())
        repository.insert_note(make_note(id=NOTE_A, notebook_id="nb-1", folder_id="f-1"))
        seed_note(fake_remote, make_note(id=NOTE_A, ts=TS_NEW), folder="Nowhere")
        engine.pull()
        assert repository.get_note(NOTE_A).folder_id == "f-1"

    def test_pull_never_deletes_local_notes(self, engine, fake_remote, repository, default_notebook):
        repository.insert_note(make_note(id=NOTE_A, notebook_id=default_notebook.id))
        seed_config(fake_remote, repository.list_notebooks())
        engine.pull()
        assert repository.get_note(NOTE_A) is not None

    def test_per_file_failure_skipped(self, engine, fake_remote, repository):
        bad = seed_note(fake_remote, make_note(id=NOTE_A, title="Bad"))
        seed_note(fake_remote, make_note(id=NOTE_B, title="Good"))
        fake_remote.fail_paths.add(bad)

        outcome = engine.pull()

        assert outcome.failed_files == [bad]
        assert outcome.new_notes == 1
        assert repository.get_note(NOTE_B) is not None

    def test_auth_error_propagates(self, engine, fake_remote, monkeypatch):
        seed_note(fake_remote, make_note(id=NOTE_A))

        def rejected(path):
            raise AuthError("GitHub rejected the access token")

        monkeypatch.setattr(fake_remote, "get", rejected)
        with pytest.raises(AuthError):
            engine.pull()


class TestConflictGating:
    """A conflicting snapshot stops the pull before any local write."""

    def test_folder_parent_id_gates_pull(self, engine, fake_remote, repository):
        repository.insert_notebook(make_notebook())
        repository.insert_folder(make_folder())
        repository.insert_folder(make_folder(id="f-2", name="Child"))
        seed_config(
            fake_remote,
            [make_notebook()],
            [make_folder(), make_folder(id="f-2", name="Child", parent_id="f-1")],
        )
        seed_note(fake_remote, make_note(id=NOTE_A))

        with pytest.raises(ConflictError) as exc:
            engine.pull()

        assert [c.id for c in exc.value.conflicts.folders] == ["f-2"]
        assert repository.get_folder("f-2").parent_id is None
        assert repository.get_note(NOTE_A) is None

    def test_setting_conflict_gates_pull(self, engine, fake_remote, settings):
        settings.set("appearance.darkMode", True)
        seed_config(fake_remote, settings={"darkMode": False})
        with pytest.raises(ConflictError) as exc:
            engine.pull()
        assert exc.value.conflicts.settings[0].key == "darkMode"


class TestMergeMetadata:
    """Last-write-wins merge of notebooks, folders and tags."""

    def test_notebook_monotonic(self, engine, repository):
        repository.insert_notebook(make_notebook(name="Current", ts=TS_MID))

        engine.merge_metadata(ConfigSnapshot(notebooks=[make_notebook(name="Older", ts=TS_OLD)]))
        assert repository.get_notebook("nb-1").name == "Current"

        engine.merge_metadata(ConfigSnapshot(notebooks=[make_notebook(name="Same", ts=TS_MID)]))
        assert repository.get_notebook("nb-1").name == "Current"

        engine.merge_metadata(ConfigSnapshot(notebooks=[make_notebook(name="Newer", ts=TS_NEW)]))
        notebook = repository.get_notebook("nb-1")
        assert notebook.name == "Newer"
        assert notebook.updated_at == TS_NEW

    def test_mixed_offsets_compare_by_absolute_time(self, engine, repository):
        repository.insert_notebook(make_notebook(name="Local", ts="2024-06-01T10:00:00.000Z"))
        # 11:00+02:00 is 09:00Z, older than local despite sorting later as text
        remote = make_notebook(name="Remote", ts="2024-06-01T11:00:00.000+02:00")
        engine.merge_metadata(ConfigSnapshot(notebooks=[remote]))
        assert repository.get_notebook("nb-1").name == "Local"

    def test_folders_inserted_parents_first(self, engine, repository):
        repository.insert_notebook(make_notebook())
        snapshot = ConfigSnapshot(
            folders=[
                make_folder(id="f-3", name="Grandchild", parent_id="f-2"),
                make_folder(id="f-2", name="Child", parent_id="f-1"),
                make_folder(id="f-1", name="Root"),
            ]
        )
        engine.merge_metadata(snapshot)
        assert repository.get_folder("f-3").parent_id == "f-2"
        assert repository.get_folder("f-2").parent_id == "f-1"

    def test_folder_with_missing_parent_attached_to_root(self, engine, repository):
        repository.insert_notebook(make_notebook())
        engine.merge_metadata(ConfigSnapshot(folders=[make_folder(id="f-5", parent_id="ghost")]))
        assert repository.get_folder("f-5").parent_id is None

    def test_folder_with_unknown_notebook_skipped(self, engine, repository):
        engine.merge_metadata(ConfigSnapshot(folders=[make_folder(notebook_id="nb-404")]))
        assert repository.get_folder("f-1") is None

    def test_folder_update_keeps_local_parent_on_cycle(self, engine, repository):
        repository.insert_notebook(make_notebook())
        repository.insert_folder(make_folder(id="f-2", name="Top"))
        repository.insert_folder(make_folder(id="f-1", name="Under", parent_id="f-2"))

        remote = make_folder(id="f-2", name="Renamed", parent_id="f-1", ts=TS_NEW)
        engine.merge_metadata(ConfigSnapshot(folders=[remote]))

        folder = repository.get_folder("f-2")
        assert folder.name == "Renamed"
        assert folder.parent_id is None

    def test_folder_older_remote_ignored(self, engine, repository):
        repository.insert_notebook(make_notebook())
        repository.insert_folder(make_folder(name="Local", ts=TS_NEW))
        engine.merge_metadata(ConfigSnapshot(folders=[make_folder(name="Remote", ts=TS_OLD)]))
        assert repository.get_folder("f-1").name == "Local"

    def test_tags_insert_only(self, engine, repository):
        repository.insert_tag(make_tag(id="t-1", name="python"))
        engine.merge_metadata(
            ConfigSnapshot(
                tags=[
                    make_tag(id="t-1", name="renamed"),
                    make_tag(id="t-2", name="python"),
                    make_tag(id="t-3", name="go"),
                ]
            )
        )
        assert repository.get_tag("t-1").name == "python"
        assert repository.get_tag("t-2") is None
        assert repository.get_tag("t-3").name == "go"


class TestPush:
    """Tests for MergeEngine.push."""

    def test_first_push_creates_repo_and_writes_everything(
        self, engine, fake_remote, repository, default_notebook
    ):
        repository.insert_note(make_note(id=NOTE_A, notebook_id=default_notebook.id, title="My Note"))
        outcome = engine.push()

        assert fake_remote.exists
        assert outcome.synced_files == 2
        assert outcome.written == 2
        assert outcome.pull is None
        path = "notes/Default_Notebook/My_Note_0a1b2c3d.md"
        assert path in fake_remote.files
        config = json.loads(fake_remote.files[CONFIG_PATH])
        assert config["notebooks"][0]["name"] == "Default Notebook"
        assert "exportedAt" in config

    def test_push_is_idempotent(self, engine, fake_remote, repository, default_notebook):
        repository.insert_note(make_note(id=NOTE_A, notebook_id=default_notebook.id))
        repository.insert_note(make_note(id=NOTE_B, title="Second", notebook_id=default_notebook.id))
        engine.push()
        fake_remote.reset_counters()

        outcome = engine.push()

        assert fake_remote.write_count == 0
        assert fake_remote.delete_count == 0
        assert outcome.written == 0
        assert outcome.synced_files == 3
        assert outcome.pull is not None
        assert outcome.pull.new_notes == 0

    def test_changed_note_rewritten(self, engine, fake_remote, repository, default_notebook):
        repository.insert_note(make_note(id=NOTE_A, notebook_id=default_notebook.id))
        engine.push(pull_first=False)
        fake_remote.reset_counters()

        repository.update_note_from_remote(
            make_note(id=NOTE_A, notebook_id=default_notebook.id, content="edited", ts=TS_NEW)
        )
        outcome = engine.push(pull_first=False)
        assert outcome.written == 1
        assert fake_remote.files["notes/Default_Notebook/Hello_0a1b2c3d.md"].endswith("edited")

    def test_deletion_reconciliation(self, engine, fake_remote, repository, default_notebook):
        repository.insert_note(make_note(id=NOTE_A, notebook_id=default_notebook.id))
        repository.insert_note(
            make_note(id=NOTE_B, notebook_id=default_notebook.id, is_deleted=True)
        )
        fake_remote.seed("notes/Default_Notebook/Hello_bbbbbbbb.md", "deleted locally")
        fake_remote.seed("notes/Old/Gone_cccccccc.md", "orphan")
        fake_remote.seed("notes/Default_Notebook/manual.md", "no id suffix")
        fake_remote.seed("README.md", "readme")

        outcome = engine.push()

        assert outcome.deleted == 2
        assert set(fake_remote.files) == {
            "README.md",
            CONFIG_PATH,
            "notes/Default_Notebook/manual.md",
            "notes/Default_Notebook/Hello_0a1b2c3d.md",
        }

    def test_failed_delete_skipped(self, engine, fake_remote, repository):
        fake_remote.seed("notes/x/A_cccccccc.md", "a")
        fake_remote.seed("notes/x/B_dddddddd.md", "b")
        fake_remote.fail_paths.add("notes/x/A_cccccccc.md")
        outcome = engine.push(pull_first=False)
        assert outcome.deleted == 1
        assert "notes/x/A_cccccccc.md" in fake_remote.files

    def test_soft_deleted_notes_not_written(self, engine, fake_remote, repository, default_notebook):
        repository.insert_note(make_note(id=NOTE_B, notebook_id=default_notebook.id, is_deleted=True))
        outcome = engine.push()
        assert outcome.synced_files == 1
        assert not any(p.startswith("notes/") for p in fake_remote.files)

    def test_pull_first_conflict_captured(self, engine, fake_remote, repository):
        repository.insert_notebook(make_notebook(name="Work"))
        seed_config(fake_remote, [make_notebook(name="Job")])

        outcome = engine.push()

        assert outcome.conflicts is not None
        assert outcome.conflicts.count() == 1
        assert outcome.synced_files == 1
        assert repository.get_notebook("nb-1").name == "Work"

    def test_push_config_skips_unchanged(self, engine, fake_remote):
        assert engine.push_config() is True
        fake_remote.reset_counters()
        assert engine.push_config() is False
        assert fake_remote.write_count == 0

    def test_push_config_overwrites_unreadable(self, engine, fake_remote):
        fake_remote.seed(CONFIG_PATH, "garbage")
        assert engine.push_config() is True
        assert json.loads(fake_remote.files[CONFIG_PATH])["version"] == "1.0.0"

    def test_round_trip_between_stores(self, fake_remote, repository, settings, tmp_path):
        """Notes pushed from one store are pulled intact into another."""
        from gitnote_sync.models.db_models import init_db
        from gitnote_sync.storage.local_store import LocalStore
        from gitnote_sync.storage.settings_store import SettingsStore
        from gitnote_sync.storage.sync_repository import SyncRepository

        repository.insert_notebook(make_notebook())
        repository.insert_note(
            make_note(id=NOTE_A, notebook_id="nb-1", title='A "quoted" title', content="x\n\ny")
        )
        repository.set_note_tags(NOTE_A, ["b", "a"])
        MergeEngine(fake_remote, repository, settings).push()

        other_store = LocalStore(init_db(f"sqlite:///{tmp_path / 'other.db'}"))
        other = SyncRepository(other_store)
        try:
            other_engine = MergeEngine(fake_remote, other, SettingsStore(tmp_path / "other.json"))
            outcome = other_engine.pull()
            assert outcome.new_notes == 1
            pulled = other.list_live_notes()[0]
            assert pulled.title == 'A "quoted" title'
            assert pulled.content == "x\n\ny"
            assert pulled.tags == ["a", "b"]
            assert pulled.notebook_id == "nb-1"
            assert pulled.notebook_name == "Work"
        finally:
            other_store.close()
