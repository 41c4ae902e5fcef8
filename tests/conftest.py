import copy
from collections import defaultdict

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from main import app, get_store, hash_password
from store import UserStore


def _matches(doc, flt):
    return all(doc.get(k) == v for k, v in flt.items())


def _project(doc, projection):
    if not projection:
        return copy.deepcopy(doc)
    keep = {k for k, v in projection.items() if v}
    return {k: copy.deepcopy(v) for k, v in doc.items() if k in keep or k == "_id"}


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs

    def sort(self, key, direction=1):
        self.docs = sorted(self.docs, key=lambda d: d.get(key) or "", reverse=direction < 0)
        return self

    def limit(self, n):
        self.docs = self.docs[:n]
        return self

    def __iter__(self):
        return iter(self.docs)


class InsertResult:
    def __init__(self, inserted_id):
        self.inserted_id = inserted_id


class UpdateResult:
    def __init__(self, matched_count):
        self.matched_count = matched_count


class FakeCollection:
    """The slice of pymongo's Collection API the store uses."""

    def __init__(self):
        self.docs = []

    def find_one(self, flt=None, projection=None):
        for doc in self.docs:
            if _matches(doc, flt or {}):
                return _project(doc, projection)
        return None

    def find(self, flt=None, projection=None):
        return FakeCursor([_project(d, projection) for d in self.docs if _matches(d, flt or {})])

    def insert_one(self, doc):
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        self.docs.append(doc)
        return InsertResult(doc["_id"])

    def update_one(self, flt, update, upsert=False):
        for doc in self.docs:
            if _matches(doc, flt):
                doc.update(copy.deepcopy(update.get("$set", {})))
                return UpdateResult(1)
        if upsert:
            doc = dict(flt)
            doc.update(copy.deepcopy(update.get("$set", {})))
            self.insert_one(doc)
        return UpdateResult(0)


class FakeDatabase:
    name = "lesson-tracker-test"

    def __init__(self):
        self.collections = defaultdict(FakeCollection)

    def __getitem__(self, name):
        return self.collections[name]

    def list_collection_names(self):
        return list(self.collections)


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def store(fake_db):
    return UserStore(fake_db)


@pytest.fixture
def tutor_id(fake_db):
    result = fake_db["user"].insert_one({
        "email": "aysel@example.com",
        "name": "Aysel",
        "role": "EMPLOYEE",
        "passwordHash": hash_password("secret"),
        "lessons": [],
        "templates": {"odd": [], "even": []},
        "salaries": [],
    })
    return str(result.inserted_id)


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def lesson_doc(lesson_id, day, time="10:00", subject="SAT", students="Ali", **extra):
    doc = {"id": lesson_id, "date": day, "time": time, "subject": subject, "studentName": students, "duration": 60}
    doc.update(extra)
    return doc
