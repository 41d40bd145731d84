"""FTS5-based transcript search."""

from __future__ import annotations

from callsifter.search.filters import TranscriptFilters
from callsifter.storage.database import Database

_COLUMNS = """
    t.id,
    t.platform,
    t.call_id,
    t.account_id,
    a.name as account_name,
    t.title,
    t.start_time,
    t.duration,
    t.source
"""


def search_transcripts(
    db: Database,
    filters: TranscriptFilters | None = None,
) -> dict:
    """Filter transcripts and, when a query is given, full-text match them.

    Supports the FTS5 query syntax:
    - Simple queries: "pricing objection"
    - Phrase matching: '"security review"'
    - Prefix: "renew*"

    Returns {"transcripts": [...], "total_count": int}, newest first.
    """
    if filters is None:
        filters = TranscriptFilters()

    filter_clause, filter_params = filters.to_sql_clauses()

    if filters.query:
        base = """
            FROM transcripts_fts fts
            JOIN transcripts t ON t.id = fts.rowid
            LEFT JOIN accounts a ON a.id = t.account_id
            WHERE transcripts_fts MATCH ?
        """
        params = [filters.query] + filter_params
        if filter_clause:
            base += f" AND {filter_clause}"
    else:
        base = """
            FROM transcripts t
            LEFT JOIN accounts a ON a.id = t.account_id
        """
        params = list(filter_params)
        if filter_clause:
            base += f" WHERE {filter_clause}"

    total = db.conn.execute(f"SELECT COUNT(*) {base}", params).fetchone()[0]

    rows = db.conn.execute(
        f"SELECT {_COLUMNS} {base} ORDER BY t.start_time DESC LIMIT ? OFFSET ?",
        params + [filters.limit, filters.offset],
    ).fetchall()

    return {
        "transcripts": [dict(r) for r in rows],
        "total_count": total,
    }
