"""
Unit tests for the homework collector.
"""

from datetime import date

import pytest
from sqlalchemy import select

from mathflat_sync.collectors import HomeworkCollector
from mathflat_sync.db.models import ClassRoom, ClassSchedule, ClassStudent, Homework, Student

from payloads import worksheet_problem

FRIDAY = date(2025, 3, 14)


@pytest.fixture
def directory(scope):
    """Local classes, schedules and linked students."""
    with scope() as session:
        session.add_all([
            ClassRoom(id="c-a", name="중2 A반", is_active=True, mathflat_class_id="501"),
            ClassRoom(id="c-b", name="중2 B반", is_active=True, mathflat_class_id="502"),
            ClassRoom(id="c-c", name="중3 휴강반", is_active=False, mathflat_class_id="503"),
            ClassRoom(id="c-d", name="고1 반", is_active=True, mathflat_class_id=None),
        ])
        session.flush()
        session.add_all([
            ClassSchedule(class_id="c-a", day_of_week="금"),
            ClassSchedule(class_id="c-a", day_of_week="금"),
            ClassSchedule(class_id="c-b", day_of_week="월"),
            ClassSchedule(class_id="c-c", day_of_week="금"),
            ClassSchedule(class_id="c-d", day_of_week="금"),
            Student(id="s-1", name="김철수", mathflat_student_id="5001"),
            Student(id="s-2", name="이영희", mathflat_student_id=None),
        ])
        session.flush()
        session.add_all([
            ClassStudent(class_id="c-a", student_id="s-1"),
            ClassStudent(class_id="c-a", student_id="s-2"),
        ])


def _book(book_type="WORKSHEET", title="3월 2주차 숙제", components=()):
    return {"bookType": book_type, "bookId": 11 if book_type == "WORKSHEET" else None, "title": title,
            "components": list(components)}


def _component(homework_id, name, student_id=None, **extra):
    component = {"studentHomeworkId": homework_id, "studentName": name, "completed": False}
    if student_id:
        component["studentId"] = student_id
    component.update(extra)
    return component


@pytest.fixture
def collector(client, scope, settings):
    return HomeworkCollector(client, scope=scope, settings=settings)


def _homework(scope):
    with scope() as session:
        return {
            (h.mathflat_student_id, h.student_homework_id): h.__dict__.copy()
            for h in session.scalars(select(Homework))
        }


class TestClassResolution:
    """Tests for choosing which classes to collect."""

    def test_scheduled_classes_for_weekday(self, collector, directory):
        classes = collector.target_classes(FRIDAY)

        assert [c.id for c in classes] == ["c-a"]

    def test_explicit_class_ids_filtered_to_active(self, collector, directory):
        classes = collector.target_classes(FRIDAY, ["502", "503"])

        assert [c.mathflat_class_id for c in classes] == ["502"]

    def test_no_classes_is_reported_not_raised(self, collector, directory, upstream):
        result = collector.collect("first", date(2025, 3, 15))

        assert result.processed_classes == []
        assert len(result.errors) == 1
        assert "토" in result.errors[0]
        assert upstream.data_calls == []

    def test_collection_type_required(self, collector, directory):
        with pytest.raises(ValueError, match="collectionType"):
            collector.collect("", FRIDAY)


class TestHomeworkCollector:
    """Tests for HomeworkCollector.collect."""

    def test_student_id_resolution_order(self, collector, directory, upstream, scope):
        upstream.students = [{"id": 5003, "name": "박민수", "status": "ACTIVE"}]
        upstream.homework["501"] = [
            _book(book_type="WORKBOOK", components=[
                _component(1, "김철수", student_id=9999),
                _component(2, "이영희", student_id=5002),
                _component(3, "박민수"),
                _component(4, "최지우"),
            ]),
        ]

        collector.collect("first", FRIDAY)

        assert set(_homework(scope)) == {("5001", "1"), ("5002", "2"), ("5003", "3"), ("최지우", "4")}
        assert upstream.paths().count("/students") == 1

    def test_directory_failure_falls_back_to_names(self, collector, directory, upstream, scope):
        upstream.failures["/students"] = 500
        upstream.homework["501"] = [
            _book(book_type="WORKBOOK", components=[
                _component(1, "김철수"),
                _component(3, "박민수"),
                _component(4, "최지우"),
            ]),
        ]

        result = collector.collect("first", FRIDAY)

        assert set(_homework(scope)) == {("5001", "1"), ("박민수", "3"), ("최지우", "4")}
        assert result.processed_classes[0].error is None
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Student directory lookup failed")
        assert upstream.paths().count("/students") == 1

    def test_worksheet_problem_count_and_defaults(self, collector, directory, upstream, scope):
        upstream.homework["501"] = [
            _book(title=None, components=[_component(1, "김철수", studentBookId=7001, page="12-15")]),
        ]
        upstream.worksheet[7001] = [worksheet_problem(i, None, worksheet_problem_id=i) for i in (1, 2, 3)]

        result = collector.collect("first", FRIDAY, homework_date=date(2025, 3, 13))

        row = _homework(scope)[("5001", "1")]
        assert row["total_problems"] == 3
        assert row["worksheet_problem_ids"] == [1, 2, 3]
        assert row["title"] == "숙제"
        assert row["book_id"] == "11"
        assert row["homework_date"] == date(2025, 3, 13)
        assert row["class_id"] == "c-a"
        assert result.processed_classes[0].to_dict() == {
            "className": "중2 A반",
            "studentCount": 1,
            "homeworkCount": 1,
        }

    def test_workbook_book_id_falls_back_to_student_workbook(self, collector, directory, upstream, scope):
        upstream.homework["501"] = [
            _book(book_type="WORKBOOK", components=[_component(1, "김철수", studentWorkbookId=61, progressIdList=[4, 5])]),
        ]

        collector.collect("first", FRIDAY)

        row = _homework(scope)[("5001", "1")]
        assert row["book_id"] == "61"
        assert row["progress_id_list"] == [4, 5]
        assert row["total_problems"] is None
        assert not any(p.startswith("/student-worksheet") for p in upstream.paths())

    def test_recollection_updates_in_place(self, collector, directory, upstream, scope):
        upstream.homework["501"] = [_book(components=[_component(1, "김철수", studentBookId=7001)])]
        upstream.worksheet[7001] = [worksheet_problem(1, None)]
        collector.collect("first", FRIDAY)

        upstream.homework["501"] = [
            _book(title="수정된 숙제", components=[_component(1, "김철수", studentBookId=7001, completed=True, score=90)]),
        ]
        result = collector.collect("first", FRIDAY)

        rows = _homework(scope)
        assert len(rows) == 1
        row = rows[("5001", "1")]
        assert row["completed"] is True
        assert row["score"] == 90.0
        assert row["title"] == "수정된 숙제"
        assert result.processed_classes[0].updated == 1
        assert result.processed_classes[0].inserted == 0

    def test_failed_worksheet_lookup_keeps_stored_count(self, collector, directory, upstream, scope):
        upstream.homework["501"] = [_book(components=[_component(1, "김철수", studentBookId=7001)])]
        upstream.worksheet[7001] = [worksheet_problem(1, None), worksheet_problem(2, None)]
        collector.collect("first", FRIDAY)

        upstream.failures["/student-worksheet/assign/7001/problem"] = 500
        result = collector.collect("first", FRIDAY)

        assert _homework(scope)[("5001", "1")]["total_problems"] == 2
        assert any("7001" in e for e in result.errors)

    def test_class_failure_is_isolated(self, collector, directory, upstream, scope):
        upstream.failures["/student-history/homework/lesson-class/501"] = 500
        upstream.homework["502"] = [_book(components=[_component(7, "이영희", student_id=5002)])]

        result = collector.collect("first", FRIDAY, class_ids=["501", "502"])

        by_name = {c.class_name: c for c in result.processed_classes}
        assert by_name["중2 A반"].error is not None
        assert by_name["중2 B반"].error is None
        assert by_name["중2 B반"].homework_count == 1
        assert set(_homework(scope)) == {("5002", "7")}
        assert result.errors[0].startswith("중2 A반:")

    def test_malformed_class_payload_is_isolated(self, collector, directory, upstream, scope):
        upstream.homework["501"] = [{"bookType": "WORKSHEET", "components": ["broken"]}]
        upstream.homework["502"] = [_book(components=[_component(7, "이영희", student_id=5002)])]

        result = collector.collect("first", FRIDAY, class_ids=["501", "502"])

        assert "malformed payload" in result.processed_classes[0].error
        assert set(_homework(scope)) == {("5002", "7")}

    def test_delay_between_consecutive_calls(self, collector, directory, upstream, settings):
        upstream.homework["501"] = [
            _book(components=[
                _component(1, "김철수", studentBookId=7001),
                _component(2, "이영희", student_id=5002, studentBookId=7002),
            ]),
        ]

        collector.collect("first", FRIDAY, class_ids=["501", "502"])

        calls = upstream.data_calls
        gaps = [b.at - a.at for a, b in zip(calls, calls[1:])]
        assert len(calls) == 4
        assert min(gaps) >= settings.problem_delay_ms / 1000 - 1e-9
