"""
Query store: read access to the queries a brand tracks.

Query generation and editing live elsewhere; collection only ever reads
active queries.
"""

import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.query import Query


@dataclass(frozen=True)
class QueryRecord:
    id: uuid.UUID
    brand_id: str
    customer_id: str
    text: str
    locale: Optional[str] = None
    country: Optional[str] = None
    is_active: bool = True


def _to_record(row: Query) -> QueryRecord:
    return QueryRecord(
        id=row.id,
        brand_id=row.brand_id,
        customer_id=row.customer_id,
        text=row.text,
        locale=row.locale,
        country=row.country,
        is_active=row.is_active,
    )


class SqlQueryStore:

    def __init__(self, db_session_factory):
        self._db_session_factory = db_session_factory

    def list_active_queries(self, brand_id: str, customer_id: str) -> list[QueryRecord]:
        session: Session = self._db_session_factory()
        try:
            rows = session.execute(
                select(Query)
                .where(
                    Query.brand_id == brand_id,
                    Query.customer_id == customer_id,
                    Query.is_active.is_(True),
                )
                .order_by(Query.created_at)
            ).scalars().all()
            return [_to_record(r) for r in rows]
        finally:
            session.close()

    def get_queries(self, query_ids: Iterable[uuid.UUID]) -> list[QueryRecord]:
        ids = list(query_ids)
        if not ids:
            return []
        session: Session = self._db_session_factory()
        try:
            rows = session.execute(select(Query).where(Query.id.in_(ids))).scalars().all()
            return [_to_record(r) for r in rows]
        finally:
            session.close()
