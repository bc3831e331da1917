from typing import Any, Dict, Type

from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}

class BaseRepository:
    """
    Shared plumbing for repositories.

    Every read-decide-write that matters for correctness is expressed as a
    single conditional statement here (insert-if-absent, or UPDATE ... WHERE
    <expected state>) and judged by its rowcount.
    """

    def __init__(self, session: Session):
        self.session = session

    @property
    def dialect(self) -> str:
        return self.session.get_bind().dialect.name

    def _execute(self, stmt):
        return self.session.connection().execute(stmt)

    def _insert_ignore(self, model: Type[SQLModel], values: Dict[str, Any]) -> bool:
        """INSERT unless the primary key exists. True when this call inserted the row."""
        table = model.__table__
        dialect_insert = _DIALECT_INSERTS.get(self.dialect)
        if dialect_insert is not None:
            stmt = dialect_insert(table).values(**values).on_conflict_do_nothing()
            return self._execute(stmt).rowcount == 1

        try:
            with self.session.begin_nested():
                self._execute(insert(table).values(**values))
        except IntegrityError:
            return False
        return True

    def _update_where(self, stmt) -> bool:
        return self._execute(stmt).rowcount > 0
