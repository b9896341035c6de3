"""Common test fixtures for gitnote-sync."""

import pytest

from gitnote_sync.config import SyncConfig
from gitnote_sync.models.db_models import init_db
from gitnote_sync.storage.local_store import LocalStore
from gitnote_sync.storage.settings_store import SettingsStore
from gitnote_sync.storage.sync_repository import SyncRepository
from tests.fakes import FakeRemoteStore


@pytest.fixture
def test_config(tmp_path):
    """Config rooted in a temp dir, with timings short enough for tests."""
    return SyncConfig(
        base_dir=tmp_path,
        api_base_url="https://api.github.test",
        repo_settle_delay=0,
        repo_settle_attempts=2,
        debounce_delay=0.05,
        followup_delay=0.05,
    )


@pytest.fixture
def local_store(test_config):
    engine = init_db(test_config.get_db_url(), test_config.default_notebook_name)
    store = LocalStore(engine)
    yield store
    store.close()


@pytest.fixture
def repository(local_store):
    return SyncRepository(local_store)


@pytest.fixture
def settings(test_config):
    return SettingsStore(test_config.get_settings_file())


@pytest.fixture
def fake_remote():
    return FakeRemoteStore()


@pytest.fixture
def default_notebook(repository):
    """The notebook init_db creates on a fresh store."""
    return repository.list_notebooks()[0]
