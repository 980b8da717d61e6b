from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from csvlanding.db_models import LoadLog
from csvlanding.errors import LogWriteError
from csvlanding.schemas import RunStatus


@dataclass(frozen=True)
class RunLogEntry:
    load_start: datetime
    load_end: datetime
    server_name: str | None
    database_name: str | None
    schema_name: str | None
    table_name: str
    staging_used: bool
    source_file: str
    rows_copied: int | None
    status: RunStatus
    message: str


def write_run_log(session_factory: sessionmaker[Session], entry: RunLogEntry) -> int:
    try:
        with session_factory() as db:
            row = LoadLog(
                load_start=entry.load_start,
                load_end=entry.load_end,
                server_name=entry.server_name,
                database_name=entry.database_name,
                schema_name=entry.schema_name,
                table_name=entry.table_name,
                staging_used=entry.staging_used,
                source_file=entry.source_file,
                rows_copied=entry.rows_copied,
                status=entry.status.value,
                message=entry.message,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.log_id
    except SQLAlchemyError as exc:
        raise LogWriteError(f"could not write run log entry: {exc}") from exc


def recent_runs(session_factory: sessionmaker[Session], *, limit: int = 20) -> list[LoadLog]:
    with session_factory() as db:
        stmt = select(LoadLog).order_by(LoadLog.log_id.desc()).limit(limit)
        return list(db.execute(stmt).scalars().all())
