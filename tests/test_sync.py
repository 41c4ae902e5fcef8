"""Tests for the local cache, the HTTP backend and the sync policy."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from conftest import lesson_doc
from lessons import parse_lessons
from schemas import LessonSkeleton, PricingTier, Templates
from sync import (
    ApiBackend,
    LessonBackend,
    LessonRepository,
    LocalCache,
    RemoteStoreError,
    SyncPolicy,
    pricing_key,
)

LESSONS = parse_lessons([
    lesson_doc("1", "2024-12-30", notes="first", isGroupLesson=True, groupId="g1", groupDays=[1, 3, 5]),
    lesson_doc("2", "2025-01-06", subject="Kids", students="A, B"),
]).valid

TEMPLATES = Templates(odd=[LessonSkeleton(id="s1", time="10:00", subject="SAT", student_name="Ali")])


class MemoryBackend(LessonBackend):
    def __init__(self, fail=False):
        self.fail = fail
        self.lessons = []
        self.templates = Templates()
        self.pricing = {}
        self.calls = []

    def _check(self, name):
        self.calls.append(name)
        if self.fail:
            raise RemoteStoreError(f"{name} unavailable")

    def load_lessons(self):
        self._check("load_lessons")
        return [x.to_document() for x in self.lessons]

    def save_lessons(self, lessons):
        self._check("save_lessons")
        self.lessons = list(lessons)

    def load_templates(self):
        self._check("load_templates")
        return self.templates

    def save_templates(self, templates):
        self._check("save_templates")
        self.templates = templates

    def load_pricing(self, tutor_id):
        self._check("load_pricing")
        return self.pricing.get(tutor_id)

    def save_pricing(self, tutor_id, subjects):
        self._check("save_pricing")
        self.pricing[tutor_id] = subjects


@pytest.fixture
def cache(tmp_path):
    return LocalCache(tmp_path / "cache.json")


class TestLocalCache:
    def test_lessons_round_trip(self, cache):
        cache.save_lessons(LESSONS)
        assert parse_lessons(cache.load_lessons()).valid == LESSONS

    def test_key_layout(self, cache):
        cache.save_lessons(LESSONS)
        cache.save_templates(TEMPLATES)
        cache.save_pricing("t1", {"SAT": [PricingTier(min_students=1, price=9)]})
        data = json.loads(cache.path.read_text(encoding="utf-8"))
        assert sorted(data["lessons"]) == ["2024", "2025"]
        assert data["template_odd_days"][0]["studentName"] == "Ali"
        assert data["template_even_days"] == []
        assert data[pricing_key("t1")] == {"SAT": [{"minStudents": 1, "price": 9.0}]}

    def test_templates_round_trip(self, cache):
        cache.save_templates(TEMPLATES)
        assert cache.load_templates() == TEMPLATES

    def test_pricing_round_trip(self, cache):
        subjects = {"Kids": [PricingTier(min_students=1, price=4), PricingTier(min_students=2, price=6)]}
        cache.save_pricing("t1", subjects)
        assert cache.load_pricing("t1") == subjects
        assert cache.load_pricing("t2") is None

    def test_missing_file(self, cache):
        assert cache.load_lessons() == []
        assert cache.load_templates() == Templates()

    def test_unreadable_file(self, cache):
        cache.path.write_text("{not json", encoding="utf-8")
        assert cache.load_lessons() == []

    def test_legacy_flat_list(self, cache):
        cache.path.write_text(json.dumps({"lessons": [lesson_doc("9", "2025-05-05")]}), encoding="utf-8")
        assert [x.id for x in parse_lessons(cache.load_lessons()).valid] == ["9"]


class TestLessonRepository:
    def test_round_trip_drops_lessons_without_date(self, cache):
        remote = MemoryBackend()
        repo = LessonRepository(remote, cache)
        repo.save_lessons(LESSONS)
        lessons, _ = repo.load()
        assert lessons == LESSONS

        cache.path.write_text(json.dumps({"lessons": {"2025": [lesson_doc("1", "2025-01-01"), {"id": "nodate"}]}}))
        lessons, _ = LessonRepository(None, cache).load()
        assert [x.id for x in lessons] == ["1"]

    def test_load_refreshes_cache(self, cache):
        remote = MemoryBackend()
        remote.lessons = LESSONS
        remote.templates = TEMPLATES
        lessons, templates = LessonRepository(remote, cache).load()
        assert lessons == LESSONS
        assert templates == TEMPLATES
        assert parse_lessons(cache.load_lessons()).valid == LESSONS
        assert cache.load_templates() == TEMPLATES

    def test_remote_failure_falls_back_to_cache(self, cache):
        cache.save_lessons(LESSONS)
        repo = LessonRepository(MemoryBackend(fail=True), cache)
        lessons, _ = repo.load()
        assert lessons == LESSONS
        assert len(repo.notifications) == 1
        assert "using local copy" in repo.notifications[0]

    def test_failed_save_still_mirrors_locally(self, cache):
        repo = LessonRepository(MemoryBackend(fail=True), cache)
        assert repo.save_lessons(LESSONS) is False
        assert parse_lessons(cache.load_lessons()).valid == LESSONS
        assert repo.notifications

    def test_successful_save(self, cache):
        remote = MemoryBackend()
        repo = LessonRepository(remote, cache)
        assert repo.save_templates(TEMPLATES) is True
        assert remote.templates == TEMPLATES
        assert cache.load_templates() == TEMPLATES
        assert repo.notifications == []

    def test_write_order_follows_policy(self):
        order = []

        class Recording(MemoryBackend):
            def __init__(self, name):
                super().__init__()
                self.name = name

            def save_lessons(self, lessons):
                order.append(self.name)

        LessonRepository(Recording("remote"), Recording("local"), SyncPolicy.REMOTE_FIRST).save_lessons(LESSONS)
        LessonRepository(Recording("remote"), Recording("local"), SyncPolicy.LOCAL_FIRST).save_lessons(LESSONS)
        assert order == ["remote", "local", "local", "remote"]

    def test_without_remote(self, cache):
        repo = LessonRepository(None, cache)
        assert repo.save_lessons(LESSONS) is False
        assert repo.load()[0] == LESSONS

    def test_pricing(self, cache):
        remote = MemoryBackend()
        repo = LessonRepository(remote, cache)
        subjects = {"SAT": [PricingTier(min_students=1, price=12)]}
        repo.save_pricing("t1", subjects)
        assert remote.pricing["t1"] == subjects
        assert repo.load_pricing("t1") == subjects

        offline = LessonRepository(MemoryBackend(fail=True), cache)
        assert offline.load_pricing("t1") == subjects


def response(payload, status=200):
    resp = MagicMock()
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


class TestApiBackend:
    def test_load_lessons(self):
        session = MagicMock()
        session.headers = {}
        session.request.return_value = response({"lessons": [lesson_doc("1", "2025-01-01")], "templates": {}})
        backend = ApiBackend("http://api.test/", "u1", token="abc", session=session)
        assert backend.load_lessons()[0]["id"] == "1"
        session.request.assert_called_with("GET", "http://api.test/api/lessons", timeout=10, params={"userId": "u1"})
        assert session.headers["Authorization"] == "Bearer abc"

    def test_save_lessons_posts_documents(self):
        session = MagicMock()
        session.request.return_value = response({"message": "ok"})
        ApiBackend("http://api.test", "u1", session=session).save_lessons(LESSONS)
        _, kwargs = session.request.call_args
        assert kwargs["json"]["userId"] == "u1"
        assert kwargs["json"]["lessons"][1]["studentName"] == "A, B"

    def test_http_error_becomes_remote_error(self):
        session = MagicMock()
        session.request.return_value = response({"error": "boom"}, status=500)
        with pytest.raises(RemoteStoreError):
            ApiBackend("http://api.test", "u1", session=session).load_templates()

    def test_connection_error_becomes_remote_error(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(RemoteStoreError):
            ApiBackend("http://api.test", "u1", session=session).save_templates(TEMPLATES)

    def test_default_pricing_reads_as_none(self):
        session = MagicMock()
        session.request.return_value = response({"isDefault": True, "subjects": {"SAT": []}})
        assert ApiBackend("http://api.test", "u1", session=session).load_pricing("t1") is None

    def test_repository_load_reads_user_data_once(self, cache):
        session = MagicMock()
        session.request.return_value = response({
            "lessons": [lesson_doc("1", "2025-01-01")],
            "templates": TEMPLATES.to_document(),
        })
        lessons, templates = LessonRepository(ApiBackend("http://api.test", "u1", session=session), cache).load()
        assert session.request.call_count == 1
        assert [x.id for x in lessons] == ["1"]
        assert templates == TEMPLATES
