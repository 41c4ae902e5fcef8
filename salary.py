"""Monthly salary reports built from a tutor's lessons."""

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Dict, Iterable, List, Optional, Tuple

from pricing import PriceCalculator, calculate_student_count, default_calculator
from schemas import Lesson, MonthlySalaryRecord

MIDDAY = time(12, 0)


@dataclass
class BreakdownGroup:
    subject: str
    student_count: int
    lessons: List[Lesson] = field(default_factory=list)
    subtotal: float = 0

    @property
    def count(self) -> int:
        return len(self.lessons)


@dataclass
class MonthlyReport:
    year: int
    month: int
    period_start: date
    period_end: date
    total: float = 0
    count: int = 0
    breakdown: List[BreakdownGroup] = field(default_factory=list)
    actual_salary: Optional[float] = None
    student_total: int = 0
    subject_total: int = 0


def salary_period(year: int, month: int) -> Tuple[date, date]:
    if not 1 <= month <= 12:
        raise ValueError(f"invalid month {month}")
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def _midday(day: date) -> datetime:
    return datetime.combine(day, MIDDAY)


def _lesson_instant(lesson: Lesson) -> Optional[datetime]:
    try:
        return _midday(date.fromisoformat(lesson.date))
    except (TypeError, ValueError):
        return None


def lessons_in_period(lessons: Iterable[Lesson], year: int, month: int) -> List[Lesson]:
    first, last = salary_period(year, month)
    start, end = _midday(first), _midday(last)
    out = []
    for lesson in lessons:
        instant = _lesson_instant(lesson)
        if instant is not None and start <= instant <= end:
            out.append(lesson)
    return out


def aggregate(lessons: Iterable[Lesson], year: int, month: int, calculator: Optional[PriceCalculator] = None,
              tutor_id: Optional[str] = None, actual: Optional[MonthlySalaryRecord] = None) -> MonthlyReport:
    calculator = calculator or default_calculator
    first, last = salary_period(year, month)
    report = MonthlyReport(year=year, month=month, period_start=first, period_end=last)

    groups: Dict[Tuple[str, int], BreakdownGroup] = {}
    students, subjects = set(), set()
    for lesson in lessons_in_period(lessons, year, month):
        fee = calculator.price(lesson.subject, lesson.student_name, tutor_id)
        count = calculate_student_count(lesson.student_name)
        group = groups.setdefault((lesson.subject, count), BreakdownGroup(subject=lesson.subject, student_count=count))
        group.lessons.append(lesson)
        group.subtotal += fee
        report.total += fee
        report.count += 1
        subjects.add(lesson.subject)
        students.update(name.strip() for name in lesson.student_name.split(",") if name.strip())

    report.breakdown = [groups[k] for k in sorted(groups)]
    report.student_total = len(students)
    report.subject_total = len(subjects)
    if actual is not None and actual.year == year and actual.month == month:
        report.actual_salary = actual.salary
    return report
