from __future__ import annotations

from dataclasses import replace
from typing import Protocol

from studyforge.models.leaderboard import LeaderboardEntry


class LeaderboardRepo(Protocol):
    async def get(self, student_email: str) -> LeaderboardEntry | None: ...
    async def upsert(self, entry: LeaderboardEntry) -> None: ...
    async def list_all(self) -> list[LeaderboardEntry]: ...

    async def save_ranks(
        self, ranks: dict[str, tuple[int, str | None]]
    ) -> None:
        """Persist (rank, badge) per student_email in one write."""
        ...


class InMemoryLeaderboardRepo:
    def __init__(self) -> None:
        self._store: dict[str, LeaderboardEntry] = {}

    async def get(self, student_email: str) -> LeaderboardEntry | None:
        return self._store.get(student_email)

    async def upsert(self, entry: LeaderboardEntry) -> None:
        self._store[entry.student_email] = entry

    async def list_all(self) -> list[LeaderboardEntry]:
        return list(self._store.values())

    async def save_ranks(self, ranks: dict[str, tuple[int, str | None]]) -> None:
        for email, (rank, badge) in ranks.items():
            e = self._store.get(email)
            if e is not None:
                self._store[email] = replace(e, rank=rank, badge=badge)
