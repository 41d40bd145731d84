"""Search filter builder for transcript queries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class TranscriptFilters:
    account_ids: list[int] = field(default_factory=list)
    platforms: list[str] = field(default_factory=list)
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    query: Optional[str] = None
    limit: int = 50
    offset: int = 0

    def to_sql_clauses(self) -> tuple[str, list]:
        """Return (WHERE clause fragments, parameters) for SQL queries.

        Fragments are joined with AND by the caller. The full-text
        ``query`` is handled separately by the search function.
        """
        clauses = []
        params = []

        if self.account_ids:
            placeholders = ",".join("?" for _ in self.account_ids)
            clauses.append(f"t.account_id IN ({placeholders})")
            params.extend(self.account_ids)

        if self.platforms:
            placeholders = ",".join("?" for _ in self.platforms)
            clauses.append(f"t.platform IN ({placeholders})")
            params.extend(self.platforms)

        if self.date_from:
            clauses.append("t.start_time >= ?")
            params.append(self.date_from)

        if self.date_to:
            # Compared at the bound's precision so a date-only bound covers that whole day
            clauses.append("substr(t.start_time, 1, length(?)) <= ?")
            params.extend([self.date_to, self.date_to])

        return " AND ".join(clauses) if clauses else "", params
