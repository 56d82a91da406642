"""
Sequence updates for sqlsteward.

Raises sequences, identity columns included, to a minimum value so test
data inserted with hand-picked ids does not clash with generated keys.
"""

import logging
from typing import List, Sequence

from .cleaner import quote_identifier
from .connection import ConnectionPool
from ..exceptions import DatabaseError


logger = logging.getLogger(__name__)


class SequenceUpdater:
    """Sets every ascending sequence below the lowest acceptable value to that value."""

    def __init__(self, pool: ConnectionPool, schemas: Sequence[str], lowest_value: int = 1000):
        self.pool = pool
        self.schemas = list(schemas)
        self.lowest_value = lowest_value

    async def update(self) -> List[str]:
        """Returns the qualified names of the sequences that were raised."""
        # last_value is NULL until the sequence is first used
        sql = """
        SELECT schemaname, sequencename FROM pg_sequences
        WHERE schemaname = ANY($1::text[])
          AND increment_by > 0
          AND max_value >= $2
          AND COALESCE(last_value, start_value - increment_by) < $2
        ORDER BY schemaname, sequencename
        """
        updated: List[str] = []
        async with self.pool.acquire() as conn:
            try:
                async with conn.transaction():
                    for row in await conn.fetch(sql, self.schemas, self.lowest_value):
                        name = f"{quote_identifier(row['schemaname'])}.{quote_identifier(row['sequencename'])}"
                        await conn.execute("SELECT setval($1::regclass, $2, false)", name, self.lowest_value)
                        updated.append(f"{row['schemaname']}.{row['sequencename']}")
            except Exception as e:
                logger.error(f"Failed to update sequences: {e}")
                raise DatabaseError(f"Failed to update sequences: {e}", cause=e) from e

        if updated:
            logger.info(f"Raised {len(updated)} sequences to {self.lowest_value}")
        return updated
