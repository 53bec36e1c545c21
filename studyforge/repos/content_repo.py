from __future__ import annotations

from dataclasses import replace
from typing import Any, Protocol

from studyforge.models.content import ContentStatus, StudyTypeContent


class ContentRepo(Protocol):
    async def add(self, record: StudyTypeContent) -> None: ...
    async def get(self, content_id: str) -> StudyTypeContent | None: ...

    async def complete(self, content_id: str, content: Any) -> bool:
        """Generating -> Ready with the content.  False if not Generating."""
        ...

    async def fail(self, content_id: str, error: str) -> bool:
        """Generating -> Error.  False if not Generating."""
        ...

    async def list_for_course(self, course_id: str) -> list[StudyTypeContent]: ...


class InMemoryContentRepo:
    def __init__(self) -> None:
        self._store: dict[str, StudyTypeContent] = {}

    async def add(self, record: StudyTypeContent) -> None:
        self._store[record.id] = record

    async def get(self, content_id: str) -> StudyTypeContent | None:
        return self._store.get(content_id)

    async def complete(self, content_id: str, content: Any) -> bool:
        return self._finish(
            content_id, status=ContentStatus.READY, content=content, error=None
        )

    async def fail(self, content_id: str, error: str) -> bool:
        return self._finish(content_id, status=ContentStatus.ERROR, error=error)

    def _finish(self, content_id: str, **changes: Any) -> bool:
        record = self._store.get(content_id)
        if record is None or record.status != ContentStatus.GENERATING:
            return False
        self._store[content_id] = replace(record, **changes)
        return True

    async def list_for_course(self, course_id: str) -> list[StudyTypeContent]:
        items = [r for r in self._store.values() if r.course_id == course_id]
        return sorted(items, key=lambda r: r.created_at)
