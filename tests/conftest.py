import mongomock
import pytest
from fastapi.testclient import TestClient

from catalog import create_user
from database import MongoStore, get_store
from main import app
from schemas import Song


@pytest.fixture
def store():
    return MongoStore(mongomock.MongoClient()["catalog_test"])


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(store):
    def make(username="listener", role="user"):
        return create_user(store, username, role).id
    return make


@pytest.fixture
def make_song(store):
    def make(title="Song", duration=200, genre=("pop",), language="english", status="active", artist="Artist"):
        song = Song(title=title, artist=artist, duration=duration, genre=list(genre),
                    language=language, status=status)
        return store.insert("song", song)
    return make
