"""
Capacity and schedule rules, free of I/O.

``can_enroll`` is evaluated on rows loaded under lock, right before the
conditional seat update. ``find_overlapping`` checks a batch that is not stored
yet, such as the entries of a new template. Overlap with stored lessons is
enforced in SQL by ``ledger_store.find_teacher_overlap`` with the same
half-open predicate, under the teacher row lock.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol, Union

from tutorbook.core.errors import InvalidLessonKind


class LessonLike(Protocol):
    id: int
    teacher_id: int
    start_time: datetime
    end_time: datetime
    max_students: int
    current_students: int
    deleted_at: Optional[datetime]


@dataclass(frozen=True)
class Individual:
    name = "individual"


@dataclass(frozen=True)
class Group:
    min_size: int = 4
    name = "group"


LessonKind = Union[Individual, Group]


def parse_kind(value: str, group_min_size: int = 4) -> LessonKind:
    if value == Individual.name:
        return Individual()
    if value == Group.name:
        return Group(min_size=group_min_size)
    raise InvalidLessonKind(value, 0, f"Unknown lesson kind '{value}'")


def validate_capacity(kind: LessonKind, max_students: int) -> None:
    """Raise InvalidLessonKind unless max_students fits the declared kind."""
    if isinstance(kind, Individual):
        if max_students != 1:
            raise InvalidLessonKind(
                kind.name, max_students, "Individual lessons have exactly one seat"
            )
        return
    if max_students < kind.min_size:
        raise InvalidLessonKind(
            kind.name,
            max_students,
            f"Group lessons need at least {kind.min_size} seats",
        )


def can_enroll(lesson: LessonLike) -> bool:
    """Whether one more student fits. Whether the lesson already started is the caller's call."""
    if lesson.deleted_at is not None:
        return False
    return lesson.current_students < lesson.max_students


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    # Half-open [start, end): back-to-back ranges do not overlap
    return a_start < b_end and b_start < a_end


def find_overlapping(
    lessons: Iterable[LessonLike],
    teacher_id: int,
    start: datetime,
    end: datetime,
    exclude_lesson_id: Optional[int] = None,
) -> Optional[LessonLike]:
    for lesson in lessons:
        if lesson.deleted_at is not None or lesson.teacher_id != teacher_id:
            continue
        if exclude_lesson_id is not None and lesson.id == exclude_lesson_id:
            continue
        if intervals_overlap(start, end, lesson.start_time, lesson.end_time):
            return lesson
    return None


def has_teacher_overlap(
    lessons: Iterable[LessonLike],
    teacher_id: int,
    start: datetime,
    end: datetime,
    exclude_lesson_id: Optional[int] = None,
) -> bool:
    return find_overlapping(lessons, teacher_id, start, end, exclude_lesson_id) is not None
