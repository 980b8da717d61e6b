from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Engine,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    inspect,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from csvlanding.errors import SchemaError


class Base(DeclarativeBase):
    pass


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class LoadLog(Base):
    __tablename__ = "load_log"

    log_id: Mapped[int] = mapped_column("LogId", Integer, primary_key=True, autoincrement=True)
    load_start: Mapped[datetime] = mapped_column("LoadStart", DateTime)
    load_end: Mapped[datetime] = mapped_column("LoadEnd", DateTime)
    server_name: Mapped[str | None] = mapped_column("ServerName", String(128), nullable=True)
    database_name: Mapped[str | None] = mapped_column("DatabaseName", String(128), nullable=True)
    schema_name: Mapped[str | None] = mapped_column("SchemaName", String(128), nullable=True)
    table_name: Mapped[str] = mapped_column("TableName", String(128))
    staging_used: Mapped[bool] = mapped_column("StagingUsed", Boolean)
    source_file: Mapped[str] = mapped_column("SourceFile", String(512))
    rows_copied: Mapped[int | None] = mapped_column("RowsCopied", Integer, nullable=True)
    status: Mapped[str] = mapped_column("Status", String(16))
    message: Mapped[str] = mapped_column("Message", Text)


def _business_columns() -> list[Column]:
    return [
        Column("RowId", Integer, primary_key=True, autoincrement=True),
        Column("Number", String(64), nullable=False),
        Column("FirstName", String(128)),
        Column("LastName", String(128)),
        Column("CreateDate", String(64)),
    ]


@dataclass(frozen=True)
class LandingTables:
    base_name: str
    schema: str | None
    history: Table
    work: Table
    staging: Table
    errors: Table

    @property
    def all(self) -> list[Table]:
        return [self.history, self.work, self.staging, self.errors]


def landing_tables(base_name: str, schema: str | None = None) -> LandingTables:
    if not base_name or not base_name.strip():
        raise ValueError("base name is required")

    metadata = MetaData(schema=schema)
    return LandingTables(
        base_name=base_name,
        schema=schema,
        history=Table(f"{base_name}_hist", metadata, *_business_columns()),
        work=Table(f"{base_name}_work", metadata, *_business_columns()),
        staging=Table(f"{base_name}_staging", metadata, *_business_columns()),
        errors=Table(
            f"{base_name}_errors",
            metadata,
            *_business_columns(),
            Column("Reason", String(32), nullable=False),
            Column("ErrorDate", DateTime, nullable=False),
        ),
    )


def ensure_tables(engine: Engine, tables: list[Table], *, auto_create: bool) -> None:
    inspector = inspect(engine)
    missing = [table for table in tables if not inspector.has_table(table.name, schema=table.schema)]
    if not missing:
        return
    if not auto_create:
        names = ", ".join(table.fullname for table in missing)
        raise SchemaError(f"missing tables and auto-create is disabled: {names}")
    for table in missing:
        table.create(engine)


def ensure_log_table(engine: Engine) -> None:
    Base.metadata.create_all(engine, tables=[LoadLog.__table__])
