from __future__ import annotations

from typing import Protocol

from studyforge.models.mastery import AdaptivePerformance


class MasteryRepo(Protocol):
    async def get(
        self, course_id: str, student_email: str, topic_id: str
    ) -> AdaptivePerformance | None: ...

    async def upsert(self, record: AdaptivePerformance) -> None: ...

    async def list_for_student(
        self, course_id: str, student_email: str
    ) -> list[AdaptivePerformance]: ...

    async def list_all(self) -> list[AdaptivePerformance]: ...


class InMemoryMasteryRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[str, str, str], AdaptivePerformance] = {}

    async def get(
        self, course_id: str, student_email: str, topic_id: str
    ) -> AdaptivePerformance | None:
        return self._store.get((course_id, student_email, topic_id))

    async def upsert(self, record: AdaptivePerformance) -> None:
        self._store[record.key] = record

    async def list_for_student(
        self, course_id: str, student_email: str
    ) -> list[AdaptivePerformance]:
        return [
            r
            for r in self._store.values()
            if r.course_id == course_id and r.student_email == student_email
        ]

    async def list_all(self) -> list[AdaptivePerformance]:
        return list(self._store.values())
