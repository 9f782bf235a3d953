"""Shared fixtures for couchhouse tests."""

import pytest

from couchhouse.connectors.cdc.checkpoint_store import FileCheckpointStore

from tests.fakes import RecordingSink


@pytest.fixture
def store(tmp_path):
    return FileCheckpointStore(tmp_path)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def progress_lines():
    return []


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Keep a cached Settings instance from leaking between tests."""
    import couchhouse.config.settings as settings_module
    monkeypatch.setattr(settings_module, "_settings", None)
    yield
