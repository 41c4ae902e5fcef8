"""Server-side access to tutor documents in MongoDB."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Tuple

from bson import ObjectId
from pymongo.database import Database

from database import create_document
from lessons import drop_day, drop_month, parse_lessons, parse_templates, split_corrupted
from schemas import Lesson, MonthlySalaryRecord, PricingTier, Role, TeacherPricing, Templates, User

logger = logging.getLogger(__name__)

USERS = "user"
PRICING = "teacherpricing"


class UserNotFound(Exception):
    pass


@dataclass
class UserData:
    lessons: List[Lesson] = field(default_factory=list)
    templates: Templates = field(default_factory=Templates)
    salaries: List[MonthlySalaryRecord] = field(default_factory=list)


class UserStore:
    """
    One document per tutor: lessons, templates and salaries are embedded.

    ``user_id`` arguments accept either the document's ObjectId string or
    the tutor's email; the id is tried first.
    """

    def __init__(self, database: Database):
        self.db = database

    @property
    def users(self):
        return self.db[USERS]

    def _filter(self, user_id: str) -> dict:
        if ObjectId.is_valid(user_id) and self.users.find_one({"_id": ObjectId(user_id)}, {"_id": 1}):
            return {"_id": ObjectId(user_id)}
        return {"email": user_id.strip().lower()}

    def _get(self, user_id: str) -> Tuple[dict, dict]:
        flt = self._filter(user_id)
        doc = self.users.find_one(flt)
        if not doc:
            raise UserNotFound(user_id)
        return flt, doc

    def resolve_id(self, user_id: str) -> str:
        """The ObjectId string of the user addressed by id or email."""
        return str(self._get(user_id)[1]["_id"])

    def _set(self, flt: dict, values: dict) -> None:
        values["updatedAt"] = datetime.now(timezone.utc)
        self.users.update_one(flt, {"$set": values})

    # ---- accounts ----

    def find_by_email(self, email: str) -> Optional[dict]:
        return self.users.find_one({"email": email.strip().lower()})

    def create_user(self, user: User) -> str:
        return create_document(USERS, user, database=self.db)

    def list_teachers(self) -> List[dict]:
        cursor = self.users.find({"role": Role.EMPLOYEE.value}, {"_id": 1, "name": 1, "email": 1, "role": 1})
        return [
            {"id": str(doc["_id"]), "name": doc.get("name"), "email": doc.get("email"), "role": doc.get("role")}
            for doc in cursor.sort("name", 1)
        ]

    # ---- lessons and templates ----

    def load(self, user_id: str) -> UserData:
        _, doc = self._get(user_id)
        parsed = parse_lessons(doc.get("lessons") or [])
        if parsed.quarantined:
            logger.warning("User %s has %d unreadable lessons", user_id, len(parsed.quarantined))
        salaries = [MonthlySalaryRecord.model_validate(s) for s in doc.get("salaries") or []]
        return UserData(lessons=parsed.valid, templates=parse_templates(doc.get("templates")), salaries=salaries)

    def replace_lessons(self, user_id: str, raw_lessons: list) -> List[Lesson]:
        """Overwrite the lesson list. Records that fail validation are not stored."""
        flt, doc = self._get(user_id)
        parsed = parse_lessons(raw_lessons)
        if parsed.quarantined:
            logger.error("Rejected %d of %d lessons for %s", len(parsed.quarantined), len(raw_lessons), user_id)
        lessons = self._stamp(doc, parsed.valid)
        self._set(flt, {"lessons": [lesson.to_document() for lesson in lessons]})
        return lessons

    def _stamp(self, doc: dict, lessons: List[Lesson]) -> List[Lesson]:
        teacher_id = str(doc["_id"])
        return [lesson.model_copy(update={"teacher_id": teacher_id}) for lesson in lessons]

    def _edit_lessons(self, user_id: str, edit: Callable[[List[Lesson]], List[Lesson]]) -> Tuple[int, int]:
        """
        Rewrite the readable lessons through ``edit``.

        Stored records that do not validate are written back untouched.
        Returns the readable count before and after the edit.
        """
        flt, doc = self._get(user_id)
        parsed = parse_lessons(doc.get("lessons") or [])
        lessons = self._stamp(doc, edit(parsed.valid))
        self._set(flt, {"lessons": [lesson.to_document() for lesson in lessons] + parsed.quarantined})
        return len(parsed.valid), len(lessons)

    def replace_templates(self, user_id: str, templates: Templates) -> Templates:
        flt, doc = self._get(user_id)
        teacher_id = str(doc["_id"])
        stamped = Templates(
            odd=[s.model_copy(update={"teacher_id": teacher_id}) for s in templates.odd],
            even=[s.model_copy(update={"teacher_id": teacher_id}) for s in templates.even],
        )
        self._set(flt, {"templates": stamped.to_document()})
        return stamped

    def add_lessons(self, user_id: str, new_lessons: List[Lesson]) -> List[Lesson]:
        added = list(new_lessons)
        self._edit_lessons(user_id, lambda current: current + added)
        return added

    def delete_lesson(self, user_id: str, lesson_id: str) -> bool:
        before, after = self._edit_lessons(user_id, lambda current: [x for x in current if x.id != lesson_id])
        return after != before

    def clear_day(self, user_id: str, day: date) -> int:
        before, after = self._edit_lessons(user_id, lambda current: drop_day(current, day))
        return before - after

    def clear_month(self, user_id: str, year: int, month: int) -> int:
        before, after = self._edit_lessons(user_id, lambda current: drop_month(current, year, month))
        return before - after

    def clear_corrupted(self, user_id: str) -> Tuple[int, int, Templates]:
        """Drop stored lessons that have no date; returns (cleared, kept, templates)."""
        flt, doc = self._get(user_id)
        kept, dropped = split_corrupted(doc.get("lessons") or [])
        if dropped:
            self._set(flt, {"lessons": kept})
            logger.info("Cleared %d corrupted lessons for %s", dropped, user_id)
        return dropped, len(kept), parse_templates(doc.get("templates"))

    # ---- salaries ----

    def get_salary(self, user_id: str, year: int, month: int) -> Optional[MonthlySalaryRecord]:
        for record in self.load(user_id).salaries:
            if record.year == year and record.month == month:
                return record
        return None

    def set_salary(self, user_id: str, record: MonthlySalaryRecord) -> MonthlySalaryRecord:
        flt, doc = self._get(user_id)
        salaries = [s for s in doc.get("salaries") or [] if (s.get("year"), s.get("month")) != (record.year, record.month)]
        salaries.append(record.to_document())
        self._set(flt, {"salaries": salaries})
        return record

    # ---- pricing overrides ----

    def get_pricing(self, teacher_id: str) -> Optional[TeacherPricing]:
        doc = self.db[PRICING].find_one({"teacherId": teacher_id})
        if not doc:
            return None
        doc.pop("_id", None)
        return TeacherPricing.model_validate(doc)

    def save_pricing(self, teacher_id: str, subjects: dict) -> TeacherPricing:
        teacher_id = self.resolve_id(teacher_id)
        pricing = TeacherPricing(
            teacher_id=teacher_id,
            subjects={s: [t if isinstance(t, PricingTier) else PricingTier.model_validate(t) for t in tiers]
                      for s, tiers in subjects.items()},
        )
        self.db[PRICING].update_one({"teacherId": teacher_id}, {"$set": pricing.to_document()}, upsert=True)
        return pricing
