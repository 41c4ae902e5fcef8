"""Tests for the lesson validation boundary and calendar helpers."""

from datetime import date

from conftest import lesson_doc
from lessons import (
    drop_day,
    drop_month,
    flatten_years,
    group_by_year,
    lessons_on,
    parse_lessons,
    parse_templates,
    split_corrupted,
)


class TestParseLessons:
    def test_valid_records(self):
        parsed = parse_lessons([lesson_doc("1", "2025-03-01", isGroupLesson=True, groupDays=[1, 3])])
        assert len(parsed.valid) == 1
        assert parsed.valid[0].student_name == "Ali"
        assert parsed.valid[0].group_days == [1, 3]
        assert parsed.quarantined == []

    def test_missing_or_bad_date_quarantined(self):
        raw = [
            lesson_doc("1", "2025-03-01"),
            {"id": "2", "time": "10:00", "subject": "SAT", "studentName": "A", "duration": 60},
            lesson_doc("3", "2025-02-30"),
            lesson_doc("4", "03/01/2025"),
            lesson_doc("5", ""),
        ]
        parsed = parse_lessons(raw)
        assert [x.id for x in parsed.valid] == ["1"]
        assert len(parsed.quarantined) == 4

    def test_other_field_failures_quarantined(self):
        raw = [
            lesson_doc("1", "2025-03-01", time="25:00"),
            lesson_doc("2", "2025-03-01", subject=" "),
            lesson_doc("3", "2025-03-01", students=""),
            lesson_doc("4", "2025-03-01", groupDays=[0]),
            "not a record",
        ]
        parsed = parse_lessons(raw)
        assert parsed.valid == []
        assert len(parsed.quarantined) == 5

    def test_loose_time_and_date_forms_quarantined(self):
        raw = [
            lesson_doc("1", "2025-03-01", time="9:00"),
            lesson_doc("2", "2025-03-01", time="09:5"),
            lesson_doc("3", "2025-W01-1"),
            lesson_doc("4", "2025-3-01"),
            lesson_doc("5", "2025-03-01", time="09:05"),
        ]
        parsed = parse_lessons(raw)
        assert [x.id for x in parsed.valid] == ["5"]
        assert len(parsed.quarantined) == 4

    def test_non_list_input(self):
        assert parse_lessons(None).valid == []
        assert parse_lessons({"lessons": []}).valid == []


def test_parse_templates_drops_invalid_skeletons():
    raw = {
        "odd": [{"time": "10:00", "subject": "SAT", "studentName": "A", "duration": 60},
                {"time": "bad", "subject": "SAT", "studentName": "A"}],
        "even": None,
    }
    templates = parse_templates(raw)
    assert len(templates.odd) == 1
    assert templates.even == []
    assert parse_templates("garbage").odd == []


def test_split_corrupted():
    kept, dropped = split_corrupted([lesson_doc("1", "2025-03-01"), {"id": "2"}, {"id": "3", "date": " "}])
    assert [x["id"] for x in kept] == ["1"]
    assert dropped == 2


class TestCalendarHelpers:
    lessons = parse_lessons([
        lesson_doc("1", "2025-03-01"),
        lesson_doc("2", "2025-03-01", time="12:00"),
        lesson_doc("3", "2025-03-02"),
        lesson_doc("4", "2025-04-01"),
        lesson_doc("5", "2024-12-31"),
    ]).valid

    def test_lessons_on(self):
        assert [x.id for x in lessons_on(self.lessons, date(2025, 3, 1))] == ["1", "2"]

    def test_drop_day(self):
        assert [x.id for x in drop_day(self.lessons, date(2025, 3, 1))] == ["3", "4", "5"]

    def test_drop_month(self):
        assert [x.id for x in drop_month(self.lessons, 2025, 3)] == ["4", "5"]

    def test_group_by_year(self):
        grouped = group_by_year(self.lessons)
        assert sorted(grouped) == ["2024", "2025"]
        assert [x["id"] for x in grouped["2025"]] == ["1", "2", "3", "4"]
        assert grouped["2024"][0]["studentName"] == "Ali"

    def test_flatten_years(self):
        assert [x["id"] for x in flatten_years(group_by_year(self.lessons))] == ["5", "1", "2", "3", "4"]
        assert flatten_years([{"id": "legacy"}]) == [{"id": "legacy"}]
        assert flatten_years(None) == []
