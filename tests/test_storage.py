from decimal import Decimal

import pytest

import config
import storage
from database import Database
from remote_database import RemoteDatabase
from results import ConfigurationError, DomainError, Ok, TransportError, NOT_FOUND


@pytest.fixture
def local_path(tmp_path, monkeypatch):
    path = str(tmp_path / "selected.db")
    monkeypatch.setattr(config, "LOCAL_DB_NAME", path)
    return path


def test_get_storage_by_name(local_path):
    local = storage.get_storage("local")
    assert isinstance(local, Database)
    assert local.db_name == local_path
    assert isinstance(storage.get_storage("REMOTE"), RemoteDatabase)


def test_get_storage_reads_backend_from_environment(local_path, monkeypatch):
    monkeypatch.setenv("ASSET_MANAGER_BACKEND", "local")
    assert isinstance(storage.get_storage(), Database)

    monkeypatch.delenv("ASSET_MANAGER_BACKEND")
    assert isinstance(storage.get_storage(), RemoteDatabase)


def test_unknown_backend_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        storage.get_storage("indexeddb")


def test_seed_default_layout_creates_floors_and_rooms_once(store, team):
    first = storage.seed_default_layout(store, team["id"])
    assert [f["name"] for f in first.data] == ["5º Andar", "11º Andar", "15º Andar"]

    floors = store.get_all_floors(team["id"]).data
    assert len(floors) == 3
    assert all(len(f["rooms"]) == 3 for f in floors)

    assert storage.seed_default_layout(store, team["id"]) == Ok([])
    assert len(store.get_all_floors(team["id"]).data) == 3


def test_seed_default_layout_keeps_existing_floor(store, team):
    store.add_floor({"name": "11º andar"}, team["id"])
    created = storage.seed_default_layout(store, team["id"]).data
    assert [f["name"] for f in created] == ["5º Andar", "15º Andar"]


def test_asset_stats(store, team, other_team):
    store.add_asset({"name": "A", "code": "A", "value": "100.50"}, team["id"])
    store.add_asset({"name": "B", "code": "B", "value": 20, "status": config.STATUS_MAINTENANCE}, team["id"])
    store.add_asset({"name": "C", "code": "C"}, team["id"])
    store.add_asset({"name": "D", "code": "D", "value": 999}, other_team["id"])

    stats = storage.get_asset_stats(store, team["id"]).data
    assert stats["total"] == 3
    assert stats["total_value"] == Decimal("120.50")
    assert stats["by_status"][config.STATUS_ACTIVE] == 2
    assert stats["by_status"][config.STATUS_MAINTENANCE] == 1
    assert stats["by_status"][config.STATUS_DISPOSED] == 0


def test_asset_stats_statuses_add_up_to_total(store, team):
    store.add_asset({"name": "A", "code": "A", "status": config.STATUS_DISPOSED}, team["id"])
    rejected = store.add_asset({"name": "B", "code": "B", "status": "Quebrado"}, team["id"])
    assert rejected.success is False

    stats = storage.get_asset_stats(store, team["id"]).data
    assert stats["total"] == 1
    assert sum(stats["by_status"].values()) == stats["total"]


def test_helpers_pass_failures_through():
    class Broken:
        def get_all_floors(self, team_id=None):
            return TransportError("database is locked")

        def get_all_assets(self, team_id=None):
            return TransportError("database is locked")

    assert storage.seed_default_layout(Broken(), 1) == TransportError("database is locked")
    assert storage.get_asset_stats(Broken(), 1).success is False


def test_result_envelopes():
    assert Ok([1]).to_dict() == {"success": True, "data": [1]}
    assert DomainError(NOT_FOUND, "Sala não encontrada").to_dict() == {
        "success": False,
        "error": "Sala não encontrada",
    }
    assert TransportError("boom", cause=RuntimeError("x")) == TransportError("boom")
