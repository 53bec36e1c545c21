from __future__ import annotations

from dataclasses import replace
from typing import Protocol

from studyforge.models.submission import AssignmentSubmission, SubmissionStatus


class SubmissionRepo(Protocol):
    async def get(
        self, assignment_id: str, student_email: str
    ) -> AssignmentSubmission | None: ...

    async def get_by_id(self, submission_id: str) -> AssignmentSubmission | None: ...

    async def add(self, submission: AssignmentSubmission) -> bool:
        """Insert unless a row for (assignment_id, student_email) already exists."""
        ...

    async def compare_and_set(
        self, updated: AssignmentSubmission, expected_version: int
    ) -> AssignmentSubmission | None:
        """Write `updated` if the stored version is still expected_version.

        Returns the stored row (version bumped) or None when the write lost.
        """
        ...

    async def list_by_status(
        self, status: SubmissionStatus, limit: int = 100
    ) -> list[AssignmentSubmission]: ...


class InMemorySubmissionRepo:
    def __init__(self) -> None:
        self._by_pair: dict[tuple[str, str], AssignmentSubmission] = {}

    async def get(
        self, assignment_id: str, student_email: str
    ) -> AssignmentSubmission | None:
        return self._by_pair.get((assignment_id, student_email))

    async def get_by_id(self, submission_id: str) -> AssignmentSubmission | None:
        for s in self._by_pair.values():
            if s.id == submission_id:
                return s
        return None

    async def add(self, submission: AssignmentSubmission) -> bool:
        key = (submission.assignment_id, submission.student_email)
        if key in self._by_pair:
            return False
        self._by_pair[key] = submission
        return True

    async def compare_and_set(
        self, updated: AssignmentSubmission, expected_version: int
    ) -> AssignmentSubmission | None:
        key = (updated.assignment_id, updated.student_email)
        current = self._by_pair.get(key)
        if current is None or current.version != expected_version:
            return None
        stored = replace(updated, id=current.id, version=expected_version + 1)
        self._by_pair[key] = stored
        return stored

    async def list_by_status(
        self, status: SubmissionStatus, limit: int = 100
    ) -> list[AssignmentSubmission]:
        matches = [s for s in self._by_pair.values() if s.status == status]
        matches.sort(key=lambda s: s.submitted_at)
        return matches[:limit]
