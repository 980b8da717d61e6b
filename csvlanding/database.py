from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, Row, Table, bindparam, create_engine, text
from sqlalchemy.engine import URL, Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import TextClause
from sqlalchemy.orm import Session, sessionmaker

from csvlanding.csv_io import read_csv_rows
from csvlanding.errors import StoreConnectionError

Params = Mapping[str, Any] | Sequence[Mapping[str, Any]] | None


def build_engine(database_url: str | URL) -> Engine:
    connect_args: dict[str, object] = {}
    if str(database_url).startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, future=True, connect_args=connect_args)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


class Store:
    """Statement-level access to the relational store.

    A ``Store`` created from an engine runs every call in its own
    transaction. ``transaction()`` yields a ``Store`` bound to a single
    connection so a group of writes commits or rolls back together.
    """

    def __init__(self, engine: Engine, connection: Connection | None = None) -> None:
        self.engine = engine
        self._connection = connection

    @property
    def server_name(self) -> str | None:
        return self.engine.url.host

    @property
    def database_name(self) -> str | None:
        return self.engine.url.database

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def connect(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            url = self.engine.url.render_as_string(hide_password=True)
            raise StoreConnectionError(f"cannot connect to {url}: {exc}") from exc

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        if self._connection is not None:
            yield self._connection
            return
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        if self._connection is not None:
            yield self
            return
        with self.engine.begin() as conn:
            yield Store(self.engine, connection=conn)

    def quote(self, identifier: str) -> str:
        return self.engine.dialect.identifier_preparer.quote(identifier)

    def quote_table(self, table: Table | str) -> str:
        preparer = self.engine.dialect.identifier_preparer
        if isinstance(table, Table):
            return preparer.format_table(table)
        return ".".join(preparer.quote(part) for part in table.split("."))

    def execute_statement(self, statement: str | TextClause, params: Params = None) -> int:
        if isinstance(params, Sequence) and not params:
            return 0
        if isinstance(statement, str):
            statement = text(statement)
        with self._connect() as conn:
            result = conn.execute(statement, params)
            return max(result.rowcount, 0)

    def execute_query(self, statement: str, params: Mapping[str, Any] | None = None) -> list[Row]:
        with self._connect() as conn:
            return list(conn.execute(text(statement), params or {}))

    def truncate(self, table: Table) -> int:
        if self.dialect_name == "sqlite":
            return self.execute_statement(f"DELETE FROM {self.quote_table(table)}")
        return self.execute_statement(f"TRUNCATE TABLE {self.quote_table(table)}")

    def insert_rows(self, table: Table, rows: Sequence[Mapping[str, Any]]) -> int:
        if not rows:
            return 0
        columns = list(rows[0].keys())
        column_list = ", ".join(self.quote(column) for column in columns)
        value_list = ", ".join(f":{column}" for column in columns)
        statement = text(f"INSERT INTO {self.quote_table(table)} ({column_list}) VALUES ({value_list})")
        # Bind with the table column types so values like datetimes are converted per dialect.
        statement = statement.bindparams(*(bindparam(column, type_=table.c[column].type) for column in columns))
        self.execute_statement(statement, list(rows))
        return len(rows)

    def bulk_load(
        self,
        file_path: Path,
        target_table: Table,
        delimiter: str = ",",
        encoding: str = "utf-8",
    ) -> int:
        rows = read_csv_rows(file_path, delimiter=delimiter, encoding=encoding)
        with self.transaction() as tx:
            return tx.insert_rows(target_table, [row.as_params() for row in rows])
