"""
Client-side lesson repository.

Two backends hold the same data: the HTTP API (remote) and a JSON file
(local cache). A ``LessonRepository`` writes to both according to its
``SyncPolicy`` and reads from the remote when it can, falling back to the
cache. Remote failures never raise out of the repository; they are logged
and collected in ``notifications``. The two writes are not atomic and the
last write wins.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import requests

from lessons import flatten_years, group_by_year, parse_lessons, parse_templates
from schemas import Lesson, PricingTier, Templates

logger = logging.getLogger(__name__)

LESSONS_KEY = "lessons"
TEMPLATE_KEYS = {"odd": "template_odd_days", "even": "template_even_days"}


def pricing_key(tutor_id: str) -> str:
    return f"teacher_pricing_{tutor_id}"


class RemoteStoreError(Exception):
    pass


class LessonBackend(ABC):
    @abstractmethod
    def load_lessons(self) -> List[Any]:
        ...

    @abstractmethod
    def save_lessons(self, lessons: List[Lesson]) -> None:
        ...

    @abstractmethod
    def load_templates(self) -> Templates:
        ...

    @abstractmethod
    def save_templates(self, templates: Templates) -> None:
        ...

    @abstractmethod
    def load_pricing(self, tutor_id: str) -> Optional[Dict[str, List[PricingTier]]]:
        ...

    @abstractmethod
    def save_pricing(self, tutor_id: str, subjects: Dict[str, List[PricingTier]]) -> None:
        ...

    def load_all(self) -> Tuple[List[Any], Templates]:
        """Raw lessons and templates in one read."""
        return self.load_lessons(), self.load_templates()


def _pricing_document(subjects: Dict[str, List[PricingTier]]) -> dict:
    return {s: [t.to_document() for t in tiers] for s, tiers in subjects.items()}


def _pricing_from_document(doc: Any) -> Optional[Dict[str, List[PricingTier]]]:
    if not isinstance(doc, dict):
        return None
    return {s: [PricingTier.model_validate(t) for t in tiers] for s, tiers in doc.items()}


class ApiBackend(LessonBackend):
    """The lesson tracker's HTTP API, for one signed-in tutor."""

    def __init__(self, base_url: str, user_id: str, token: Optional[str] = None,
                 session: Optional[requests.Session] = None, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.RequestException as e:
            raise RemoteStoreError(f"{method} {path} failed: {e}") from e
        try:
            return response.json()
        except ValueError as e:
            raise RemoteStoreError(f"{method} {path} returned invalid JSON") from e

    def _user_data(self) -> dict:
        return self._request("GET", "/api/lessons", params={"userId": self.user_id})

    def load_lessons(self) -> List[Any]:
        return self._user_data().get("lessons") or []

    def save_lessons(self, lessons: List[Lesson]) -> None:
        self._request("POST", "/api/lessons", json={
            "userId": self.user_id,
            "lessons": [lesson.to_document() for lesson in lessons],
        })

    def load_templates(self) -> Templates:
        return parse_templates(self._user_data().get("templates"))

    def load_all(self) -> Tuple[List[Any], Templates]:
        data = self._user_data()
        return data.get("lessons") or [], parse_templates(data.get("templates"))

    def save_templates(self, templates: Templates) -> None:
        self._request("POST", "/api/lessons", json={"userId": self.user_id, "templates": templates.to_document()})

    def load_pricing(self, tutor_id: str) -> Optional[Dict[str, List[PricingTier]]]:
        data = self._request("GET", f"/api/teachers/{tutor_id}/pricing")
        if data.get("isDefault"):
            return None
        return _pricing_from_document(data.get("subjects"))

    def save_pricing(self, tutor_id: str, subjects: Dict[str, List[PricingTier]]) -> None:
        self._request("PUT", f"/api/teachers/{tutor_id}/pricing", json={"subjects": _pricing_document(subjects)})


class LocalCache(LessonBackend):
    """JSON file keyed like the browser cache it replaces."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Local cache %s is unreadable: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)

    def load_lessons(self) -> List[Any]:
        return flatten_years(self._read().get(LESSONS_KEY))

    def save_lessons(self, lessons: List[Lesson]) -> None:
        self._write(LESSONS_KEY, group_by_year(lessons))

    def load_templates(self) -> Templates:
        data = self._read()
        return parse_templates({parity: data.get(key) for parity, key in TEMPLATE_KEYS.items()})

    def save_templates(self, templates: Templates) -> None:
        doc = templates.to_document()
        for parity, key in TEMPLATE_KEYS.items():
            self._write(key, doc.get(parity, []))

    def load_pricing(self, tutor_id: str) -> Optional[Dict[str, List[PricingTier]]]:
        return _pricing_from_document(self._read().get(pricing_key(tutor_id)))

    def save_pricing(self, tutor_id: str, subjects: Dict[str, List[PricingTier]]) -> None:
        self._write(pricing_key(tutor_id), _pricing_document(subjects))


class SyncPolicy(str, Enum):
    REMOTE_FIRST = "remote_first"
    LOCAL_FIRST = "local_first"


class LessonRepository:
    def __init__(self, remote: Optional[LessonBackend], local: LessonBackend,
                 policy: SyncPolicy = SyncPolicy.REMOTE_FIRST):
        self.remote = remote
        self.local = local
        self.policy = policy
        self.notifications: List[str] = []

    def _notify(self, message: str) -> None:
        logger.error(message)
        self.notifications.append(message)

    def _write(self, what: str, remote_call, local_call) -> bool:
        """Run both writes in policy order; returns whether the remote write succeeded."""
        if self.policy == SyncPolicy.LOCAL_FIRST:
            local_call(self.local)
        remote_ok = False
        if self.remote is None:
            logger.warning("No remote store configured, %s saved locally only", what)
        else:
            try:
                remote_call(self.remote)
                remote_ok = True
            except RemoteStoreError as e:
                self._notify(f"Saving {what} to the server failed: {e}")
        if self.policy == SyncPolicy.REMOTE_FIRST:
            local_call(self.local)
        return remote_ok

    def load(self) -> tuple:
        """Lessons and templates, from the server when reachable, else from the cache."""
        if self.remote is not None:
            try:
                raw_lessons, templates = self.remote.load_all()
            except RemoteStoreError as e:
                self._notify(f"Loading from the server failed, using local copy: {e}")
            else:
                lessons = parse_lessons(raw_lessons).valid
                self.local.save_lessons(lessons)
                self.local.save_templates(templates)
                return lessons, templates
        return parse_lessons(self.local.load_lessons()).valid, self.local.load_templates()

    def save_lessons(self, lessons: List[Lesson]) -> bool:
        return self._write("lessons", lambda b: b.save_lessons(lessons), lambda b: b.save_lessons(lessons))

    def save_templates(self, templates: Templates) -> bool:
        return self._write("templates", lambda b: b.save_templates(templates), lambda b: b.save_templates(templates))

    def load_pricing(self, tutor_id: str) -> Optional[Dict[str, List[PricingTier]]]:
        if self.remote is not None:
            try:
                subjects = self.remote.load_pricing(tutor_id)
            except RemoteStoreError as e:
                self._notify(f"Loading pricing from the server failed, using local copy: {e}")
            else:
                if subjects is not None:
                    self.local.save_pricing(tutor_id, subjects)
                return subjects
        return self.local.load_pricing(tutor_id)

    def save_pricing(self, tutor_id: str, subjects: Dict[str, List[PricingTier]]) -> bool:
        return self._write("pricing", lambda b: b.save_pricing(tutor_id, subjects),
                           lambda b: b.save_pricing(tutor_id, subjects))
