import pytest
from fastapi.testclient import TestClient

import main


class FakeCollection:
    """Equality-only stand-in for a pymongo collection."""

    def __init__(self):
        self.docs = []

    def _matches(self, doc, query):
        return all(doc.get(key) == value for key, value in query.items())

    def find(self, query=None):
        return [doc for doc in self.docs if self._matches(doc, query or {})]

    def find_one(self, query):
        found = self.find(query)
        return found[0] if found else None

    def count_documents(self, query):
        return len(self.find(query))


class FakeDB(dict):
    def __missing__(self, name):
        self[name] = FakeCollection()
        return self[name]


@pytest.fixture
def client():
    with TestClient(main.app) as c:
        yield c


# depends on client so startup seeding runs before the fake is installed
@pytest.fixture
def fake_db(client, monkeypatch):
    fake = FakeDB()
    created = []

    def fake_get_documents(collection_name, filter_dict=None, limit=None):
        return list(fake[collection_name].find(filter_dict))

    def fake_create_document(collection_name, data):
        doc = data.model_dump() if hasattr(data, "model_dump") else dict(data)
        created.append((collection_name, doc))
        return f"new-{len(created)}"

    monkeypatch.setattr(main, "db", fake)
    monkeypatch.setattr(main, "get_documents", fake_get_documents)
    monkeypatch.setattr(main, "create_document", fake_create_document)
    fake.created = created
    return fake
