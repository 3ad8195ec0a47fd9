import time

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

import config
import remote_database
from remote_database import RemoteDatabase
from results import ConfigurationError, ConnectionTimeout


@pytest.fixture
def no_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    remote_database.disconnect()
    yield
    remote_database.disconnect()


def test_missing_url_is_a_configuration_error(no_url):
    with pytest.raises(ConfigurationError):
        remote_database.connect()
    assert remote_database._engine is None


def test_missing_url_propagates_from_operations(no_url):
    with pytest.raises(ConfigurationError):
        RemoteDatabase().get_all_teams()


def test_test_connection_swallows_errors(no_url, caplog):
    assert remote_database.test_connection() is False
    assert "[RemoteDB] Connection test failed" in caplog.text


def test_connect_reuses_the_engine(remote_url):
    engine = remote_database.connect()
    assert remote_database.connect() is engine
    assert remote_database.test_connection() is True


def test_slow_probe_times_out_and_is_not_cached(remote_url, monkeypatch):
    monkeypatch.setattr(config, "CONNECT_TIMEOUT_SECONDS", 0.05)
    monkeypatch.setattr(remote_database, "_probe", lambda engine: time.sleep(0.5))

    with pytest.raises(ConnectionTimeout):
        remote_database.connect()
    assert remote_database._engine is None

    monkeypatch.undo()
    monkeypatch.setenv("DATABASE_URL", remote_url)
    assert remote_database.connect() is not None


def test_failed_probe_is_not_cached(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'missing' / 'dir' / 'db.sqlite'}")
    remote_database.disconnect()

    with pytest.raises(OperationalError):
        remote_database.connect()
    assert remote_database._engine is None
    assert remote_database.test_connection() is False


def test_timeout_inside_an_operation_is_a_transport_error(remote_url, monkeypatch):
    monkeypatch.setattr(config, "CONNECT_TIMEOUT_SECONDS", 0.05)
    monkeypatch.setattr(remote_database, "_probe", lambda engine: time.sleep(0.5))

    result = RemoteDatabase().get_all_assets(1)
    assert result.success is False
    assert isinstance(result.cause, ConnectionTimeout)


def test_schema_has_tables_constraint_and_indexes(remote_db):
    inspector = inspect(remote_database.connect())
    assert {"teams", "users", "floors", "rooms", "assets"} <= set(inspector.get_table_names())

    index_names = set()
    for table in ("users", "floors", "rooms", "assets"):
        index_names.update(ix["name"] for ix in inspector.get_indexes(table))
    assert {
        "idx_users_email",
        "idx_users_team_id",
        "idx_floors_team_id",
        "idx_rooms_floor_id",
        "idx_rooms_team_id",
        "idx_assets_team_id",
        "idx_assets_code",
    } <= index_names

    uniques = inspector.get_unique_constraints("assets")
    assert any(sorted(u["column_names"]) == ["code", "team_id"] for u in uniques)


def test_initialize_schema_is_idempotent(remote_db):
    assert remote_database.initialize_schema() is True
    assert remote_database.initialize_schema() is True
    assert len(remote_db.get_all_teams().data) == len(config.DEFAULT_TEAMS)
