from __future__ import annotations

from typing import Protocol

from studyforge.models.certificate import Certificate


class CertificateRepo(Protocol):
    async def add(self, certificate: Certificate) -> Certificate:
        """Insert unless (course_id, student_email) already has one.

        Returns the stored certificate, which is the earlier one on conflict.
        """
        ...

    async def get(self, certificate_id: str) -> Certificate | None: ...

    async def get_for(self, course_id: str, student_email: str) -> Certificate | None: ...

    async def list_for_student(self, student_email: str) -> list[Certificate]: ...


class InMemoryCertificateRepo:
    def __init__(self) -> None:
        self._by_pair: dict[tuple[str, str], Certificate] = {}

    async def add(self, certificate: Certificate) -> Certificate:
        key = (certificate.course_id, certificate.student_email)
        return self._by_pair.setdefault(key, certificate)

    async def get(self, certificate_id: str) -> Certificate | None:
        for c in self._by_pair.values():
            if c.certificate_id == certificate_id:
                return c
        return None

    async def get_for(self, course_id: str, student_email: str) -> Certificate | None:
        return self._by_pair.get((course_id, student_email))

    async def list_for_student(self, student_email: str) -> list[Certificate]:
        items = [c for c in self._by_pair.values() if c.student_email == student_email]
        return sorted(items, key=lambda c: c.issued_at)
