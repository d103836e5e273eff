from contextlib import contextmanager

import mongomock
import pytest
from bson import ObjectId
from bson.errors import BSONError
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from database import Database
from errors import StorageError
from main import create_app

PASSWORD = "secret123"


class SnapshotDatabase(Database):
    """
    Database over mongomock, which has no transactions.

    The transaction scope snapshots every collection and restores the
    snapshot when the block raises, so rollback is observable in tests.
    """

    @contextmanager
    def transaction(self):
        snapshot = {name: list(self.db[name].find()) for name in self.db.list_collection_names()}
        try:
            yield None
        except Exception as e:
            for name in self.db.list_collection_names():
                self.db[name].delete_many({})
                for doc in snapshot.get(name, []):
                    self.db[name].insert_one(doc)
            if isinstance(e, (PyMongoError, BSONError)):
                raise StorageError()
            raise


def register(client, email, name="Test User", password=PASSWORD):
    response = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert response.status_code == 201, response.text
    return response.json()["user"]


def login(client, email, password=PASSWORD):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def db():
    return SnapshotDatabase(mongomock.MongoClient(), "shop_test")


@pytest.fixture
def client(db):
    with TestClient(create_app(db)) as c:
        yield c


@pytest.fixture
def user(client):
    account = register(client, "alice@shopmail.com", name="Alice")
    return account, login(client, "alice@shopmail.com")


@pytest.fixture
def other_user(client):
    account = register(client, "bob@shopmail.com", name="Bob")
    return account, login(client, "bob@shopmail.com")


@pytest.fixture
def admin(client, db):
    account = register(client, "admin@shopmail.com", name="Admin")
    db["user"].update_one({"_id": ObjectId(account["id"])}, {"$set": {"role": "admin"}})
    return account, login(client, "admin@shopmail.com")
