"""
Expands odd/even weekday templates into dated lessons.

Weekdays are numbered 0=Sunday .. 6=Saturday. The odd class is Monday,
Wednesday and Friday; the even class is Tuesday, Thursday and Saturday.
A (date, time) slot is never booked twice.
"""

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from bson import ObjectId

from schemas import Lesson, LessonSkeleton, Parity

logger = logging.getLogger(__name__)

PARITY_WEEKDAYS = {
    Parity.ODD: frozenset({1, 3, 5}),
    Parity.EVEN: frozenset({2, 4, 6}),
}


class TemplateSelectionError(Exception):
    pass


def sunday_weekday(day: date) -> int:
    return (day.weekday() + 1) % 7


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def parity_days(parity: Parity, year: int, month: int) -> List[int]:
    weekdays = PARITY_WEEKDAYS[Parity(parity)]
    return [d for d in range(1, days_in_month(year, month) + 1) if sunday_weekday(date(year, month, d)) in weekdays]


def _build(skeleton: LessonSkeleton, day: date) -> Lesson:
    return Lesson(
        id=str(ObjectId()),
        date=day.isoformat(),
        time=skeleton.time,
        subject=skeleton.subject,
        student_name=skeleton.student_name,
        notes=skeleton.notes,
        duration=skeleton.duration,
    )


def expand_days(template: Sequence[LessonSkeleton], year: int, month: int, days: Iterable[int],
                existing: Iterable[Lesson] = ()) -> List[Lesson]:
    """Dated lessons for each given day-of-month, skipping occupied (date, time) slots."""
    last = days_in_month(year, month)
    taken: Set[Tuple[str, str]] = {(lesson.date, lesson.time) for lesson in existing}
    created = []
    for d in sorted(set(days)):
        if d < 1 or d > last:
            continue
        day = date(year, month, d)
        for skeleton in template:
            slot = (day.isoformat(), skeleton.time)
            if slot in taken:
                continue
            taken.add(slot)
            created.append(_build(skeleton, day))
    return created


def expand(template: Sequence[LessonSkeleton], parity: Parity, year: int, month: int,
           existing: Iterable[Lesson] = ()) -> List[Lesson]:
    return expand_days(template, year, month, parity_days(parity, year, month), existing)


class SelectionState(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    APPLYING = "applying"


@dataclass
class ApplyResult:
    added: List[Lesson] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TemplateDaySelection:
    """
    Picking individual days of the displayed month to receive a template.

    idle -> selecting (begin) -> applying (confirm) -> idle. Confirm always
    ends in idle; a failed merge is reported on the result, not raised.
    """

    def __init__(self):
        self.state = SelectionState.IDLE
        self.parity: Optional[Parity] = None
        self.year: Optional[int] = None
        self.month: Optional[int] = None
        self.selected: Set[int] = set()

    def _require(self, state: SelectionState) -> None:
        if self.state != state:
            raise TemplateSelectionError(f"expected state {state.value}, currently {self.state.value}")

    def begin(self, parity: Parity, year: int, month: int) -> None:
        self._require(SelectionState.IDLE)
        if not 1 <= month <= 12:
            raise TemplateSelectionError(f"invalid month {month}")
        self.parity = Parity(parity)
        self.year, self.month = year, month
        self.selected = set()
        self.state = SelectionState.SELECTING

    def toggle(self, day: int) -> bool:
        """Flip a day in or out of the selection; returns whether it is now selected."""
        self._require(SelectionState.SELECTING)
        if not 1 <= day <= days_in_month(self.year, self.month):
            raise TemplateSelectionError(f"day {day} is not in {self.year}-{self.month:02d}")
        if day in self.selected:
            self.selected.discard(day)
            return False
        self.selected.add(day)
        return True

    def cancel(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self.state = SelectionState.IDLE
        self.parity = None
        self.year = self.month = None
        self.selected = set()

    def confirm(self, template: Sequence[LessonSkeleton], existing: Iterable[Lesson],
                merge: Callable[[List[Lesson]], None]) -> ApplyResult:
        self._require(SelectionState.SELECTING)
        self.state = SelectionState.APPLYING
        result = ApplyResult()
        try:
            if not template:
                result.error = "No template configured"
                return result
            result.added = expand_days(template, self.year, self.month, self.selected, existing)
            merge(result.added)
        except Exception as e:
            logger.error("Applying %s template to %s-%02d failed: %s", self.parity.value, self.year, self.month, e)
            result.error = str(e) or e.__class__.__name__
        finally:
            self._reset()
        return result
