"""Validation boundary and calendar helpers for lesson collections."""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Tuple

from pydantic import ValidationError

from schemas import Lesson, LessonSkeleton, Templates

logger = logging.getLogger(__name__)


@dataclass
class ParsedLessons:
    valid: List[Lesson] = field(default_factory=list)
    quarantined: List[Any] = field(default_factory=list)


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    where = ".".join(str(p) for p in err.get("loc", ()))
    return f"{where}: {err.get('msg')}" if where else str(err.get("msg"))


def parse_lessons(raw: Any) -> ParsedLessons:
    """Convert untyped records into lessons, quarantining anything that does not validate."""
    parsed = ParsedLessons()
    if not isinstance(raw, list):
        if raw is not None:
            logger.warning("Expected a list of lessons, got %s", type(raw).__name__)
        return parsed
    for item in raw:
        if isinstance(item, Lesson):
            parsed.valid.append(item)
            continue
        if not isinstance(item, dict):
            logger.warning("Quarantined lesson record of type %s", type(item).__name__)
            parsed.quarantined.append(item)
            continue
        try:
            parsed.valid.append(Lesson.model_validate(item))
        except ValidationError as e:
            logger.warning("Quarantined lesson %s: %s", item.get("id"), _first_error(e))
            parsed.quarantined.append(item)
    return parsed


def _parse_bucket(raw: Any, name: str) -> List[LessonSkeleton]:
    out = []
    for item in raw if isinstance(raw, list) else []:
        try:
            out.append(item if isinstance(item, LessonSkeleton) else LessonSkeleton.model_validate(item))
        except ValidationError as e:
            logger.warning("Dropped %s template lesson %s: %s", name, item.get("id") if isinstance(item, dict) else None,
                           _first_error(e))
    return out


def parse_templates(raw: Any) -> Templates:
    if not isinstance(raw, dict):
        return Templates()
    return Templates(odd=_parse_bucket(raw.get("odd"), "odd"), even=_parse_bucket(raw.get("even"), "even"))


def has_date(record: Any) -> bool:
    return isinstance(record, dict) and isinstance(record.get("date"), str) and bool(record["date"].strip())


def split_corrupted(raw: Iterable[Any]) -> Tuple[List[dict], int]:
    """Keep records carrying a date; return them with the number discarded."""
    kept, dropped = [], 0
    for record in raw or []:
        if has_date(record):
            kept.append(record)
        else:
            dropped += 1
    return kept, dropped


def lessons_on(lessons: Iterable[Lesson], day: date) -> List[Lesson]:
    iso = day.isoformat()
    return [lesson for lesson in lessons if lesson.date == iso]


def drop_day(lessons: Iterable[Lesson], day: date) -> List[Lesson]:
    iso = day.isoformat()
    return [lesson for lesson in lessons if lesson.date != iso]


def drop_month(lessons: Iterable[Lesson], year: int, month: int) -> List[Lesson]:
    prefix = f"{year:04d}-{month:02d}-"
    return [lesson for lesson in lessons if not lesson.date.startswith(prefix)]


def group_by_year(lessons: Iterable[Lesson]) -> Dict[str, List[dict]]:
    """Local cache layout: lessons keyed by calendar year."""
    by_year: Dict[str, List[dict]] = {}
    for lesson in lessons:
        by_year.setdefault(lesson.date[:4], []).append(lesson.to_document())
    return by_year


def flatten_years(data: Any) -> List[Any]:
    # Older caches stored a flat list instead of the per-year mapping.
    if isinstance(data, dict):
        return [lesson for year in sorted(data) for lesson in (data[year] or [])]
    if isinstance(data, list):
        return data
    return []
