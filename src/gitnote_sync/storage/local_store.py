"""Query primitives over the local SQLite store.

The sync engine only ever talks to the local store through these three
calls. Every ``run`` commits immediately, so each write is durable on
return.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from gitnote_sync.exceptions import StoreNotInitializedError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class LocalStore:
    """Thin CRUD boundary: ``query_all``, ``query_one``, ``run``."""

    def __init__(self, engine: Engine):
        self._engine: Optional[Engine] = engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise StoreNotInitializedError()
        return self._engine

    def query_all(self, query: str, params: Optional[Mapping[str, Any]] = None) -> List[Row]:
        """Execute a SELECT and return every row as a dict."""
        with self.engine.connect() as conn:
            result = conn.execute(text(query), dict(params or {}))
            return [dict(row) for row in result.mappings()]

    def query_one(self, query: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Row]:
        """Execute a SELECT and return the first row, or None."""
        rows = self.query_all(query, params)
        return rows[0] if rows else None

    def run(self, query: str, params: Optional[Mapping[str, Any]] = None) -> int:
        """Execute a write and commit. Returns the affected row count."""
        with self.engine.begin() as conn:
            result = conn.execute(text(query), dict(params or {}))
            return result.rowcount

    def close(self) -> None:
        """Dispose of the engine; later calls raise StoreNotInitializedError."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.debug("Local store closed")
