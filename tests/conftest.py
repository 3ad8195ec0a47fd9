import pytest

import remote_database
from database import Database
from remote_database import RemoteDatabase


@pytest.fixture
def local_db(tmp_path):
    db = Database(str(tmp_path / "local.db"))
    yield db
    db.Session.remove()
    db.engine.dispose()


@pytest.fixture
def remote_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'remote.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    remote_database.disconnect()
    yield url
    remote_database.disconnect()


@pytest.fixture
def remote_db(remote_url):
    assert remote_database.initialize_schema() is True
    return RemoteDatabase()


@pytest.fixture(params=["local", "remote"])
def store(request):
    return request.getfixturevalue(f"{request.param}_db")


@pytest.fixture
def team(store):
    return store.add_team({"name": "TI", "description": "Tecnologia"}).data


@pytest.fixture
def other_team(store):
    return store.add_team({"name": "Financeiro"}).data
