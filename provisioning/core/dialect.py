"""
Dialect helpers for the few places that render raw SQL fragments.
"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Dialect as SADialect
from sqlalchemy.ext.asyncio import AsyncSession

PG_UNIQUE_VIOLATION = "23505"
MYSQL_DUP_ENTRY = 1062


class Dialect:
    """Thin wrapper around an SQLAlchemy dialect."""

    def __init__(self, sa_dialect: SADialect):
        self._dialect = sa_dialect

    @property
    def name(self) -> str:
        return self._dialect.name

    def quote(self, identifier: str) -> str:
        """Quote an identifier unconditionally (``user`` is reserved on some backends)."""
        return self._dialect.identifier_preparer.quote_identifier(identifier)

    def boolean_str(self, value: bool) -> str:
        literal = sa.true() if value else sa.false()
        return str(literal.compile(dialect=self._dialect))

    def is_unique_constraint_violation(self, err: BaseException) -> bool:
        integrity = _find_integrity_error(err)
        if integrity is None:
            return False
        orig = integrity.orig

        if self.name == "postgresql":
            code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
            return code == PG_UNIQUE_VIOLATION
        if self.name in ("mysql", "mariadb"):
            args = getattr(orig, "args", ())
            return bool(args) and args[0] == MYSQL_DUP_ENTRY
        if self.name == "sqlite":
            return "UNIQUE constraint failed" in str(orig)
        return False

    async def post_insert_id(self, session: AsyncSession, table: str) -> None:
        """Bring the id sequence past a row inserted with an explicit id."""
        if self.name != "postgresql":
            return
        await session.execute(
            sa.text(
                f"SELECT setval(pg_get_serial_sequence(:table, 'id'), "
                f"(SELECT MAX(id) FROM {self.quote(table)}))"
            ),
            {"table": table},
        )


def _find_integrity_error(err: BaseException | None) -> sa_exc.IntegrityError | None:
    seen = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, sa_exc.IntegrityError):
            return err
        seen.add(id(err))
        err = err.__cause__ or err.__context__
    return None
