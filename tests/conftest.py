"""Shared fixtures for taskboard tests."""

from datetime import date
from pathlib import Path

import pytest

from taskboard.adapters import LocalSyncAdapter, RemoteSyncAdapter
from taskboard.snapshot import SqliteSnapshotStore

from .fakes import FakeChannel, FakeRowService

TODAY = date(2024, 6, 15)


@pytest.fixture()
def snapshots(tmp_path: Path) -> SqliteSnapshotStore:
    return SqliteSnapshotStore(str(tmp_path / "board.db"))


@pytest.fixture()
def local_adapter(snapshots: SqliteSnapshotStore) -> LocalSyncAdapter:
    return LocalSyncAdapter(snapshots)


@pytest.fixture()
def rows() -> FakeRowService:
    return FakeRowService()


@pytest.fixture()
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture()
def remote_adapter(rows: FakeRowService, channel: FakeChannel) -> RemoteSyncAdapter:
    return RemoteSyncAdapter(rows, channel)
