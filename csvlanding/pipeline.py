from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from enum import Enum
import logging
from pathlib import Path
import sys

from sqlalchemy import Engine
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError

from csvlanding.classifier import classify_rows
from csvlanding.config import Settings, build_database_url
from csvlanding.database import Store, build_engine, build_session_factory
from csvlanding.db_models import LandingTables, ensure_log_table, ensure_tables, landing_tables, utc_now
from csvlanding.errors import CsvImportError, FileRelocationWarning, LoadError, LogWriteError
from csvlanding.file_ops import relocate_file, sweep_retention
from csvlanding.promotion import apply_promotion, promote, summarize
from csvlanding.run_store import RunLogEntry, write_run_log
from csvlanding.schemas import BUSINESS_COLUMNS, LoadResult, RawRow, RunCounters, RunStatus


logger = logging.getLogger(__name__)


class RunState(str, Enum):
    INIT = "Init"
    CONNECTED = "Connected"
    LANDING_PREPARED = "LandingPrepared"
    IMPORTED = "Imported"
    CLASSIFIED = "Classified"
    PROMOTED = "Promoted"
    FILE_RELOCATED = "FileRelocated"
    LOGGED = "Logged"
    DONE = "Done"
    ERROR = "ErrorState"


class LoadRunner:
    """Loads one CSV file per ``run`` call through the landing tables.

    Only one runner may target a given base name at a time: work and
    staging are truncated and rebuilt on every run.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        engine_factory: Callable[[URL], Engine] = build_engine,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.engine_factory = engine_factory
        self.clock = clock
        self.state = RunState.INIT
        self.tables: LandingTables = landing_tables(settings.base_name, settings.db_schema)

    def run(self, csv_path: Path | str) -> LoadResult:
        source = Path(csv_path)
        load_start = self.clock()
        self.state = RunState.INIT
        staging_used = self.settings.enable_staging

        try:
            engine = self.engine_factory(build_database_url(self.settings))
            store = Store(engine)
            store.connect()
        except (LoadError, SQLAlchemyError, ValueError) as exc:
            self.state = RunState.ERROR
            message = f"cannot connect: {exc}"
            logger.error("store connection failed", extra={"source_file": str(source), "error": str(exc)})
            return LoadResult(
                status=RunStatus.ERROR,
                message=message,
                source_file=source.name,
                rows_copied=None,
                load_start=load_start,
                load_end=self.clock(),
                staging_used=staging_used,
                log_written=False,
            )

        self._advance(RunState.CONNECTED)
        try:
            return self._run_connected(store, source, load_start)
        finally:
            engine.dispose()

    def _run_connected(self, store: Store, source: Path, load_start: datetime) -> LoadResult:
        session_factory = build_session_factory(store.engine)
        staging_used = self.settings.enable_staging
        counters: RunCounters | None = None

        try:
            if self.settings.auto_create_tables:
                ensure_log_table(store.engine)
            if staging_used:
                counters = self._run_staged(store, source)
                rows_copied = counters.rows_in_file
                message = summarize(counters)
            else:
                rows_copied = self._run_direct(store, source)
                message = f"Direct load into {self.tables.history.fullname}: {rows_copied} rows"
        except Exception as exc:
            failed_state = self.state
            self.state = RunState.ERROR
            logger.exception(
                "load run failed",
                extra={"source_file": str(source), "state": failed_state.value},
            )
            return self._fail(store, session_factory, source, load_start, failed_state, exc)

        warnings: list[str] = []
        relocated_to: str | None = None
        try:
            relocated_to = str(relocate_file(source, Path(self.settings.processed_dir), self.clock()))
        except FileRelocationWarning as exc:
            logger.warning("file relocation failed", extra={"source_file": str(source), "error": str(exc)})
            warnings.append(str(exc))
        self._advance(RunState.FILE_RELOCATED)
        self._sweep()

        for warning in warnings:
            message = f"{message}; warning: {warning}"

        result = LoadResult(
            status=RunStatus.SUCCESS,
            message=message,
            source_file=source.name,
            rows_copied=rows_copied,
            load_start=load_start,
            load_end=self.clock(),
            staging_used=staging_used,
            relocated_to=relocated_to,
            counters=counters,
            warnings=warnings,
        )
        return self._log(store, session_factory, result)

    def _advance(self, state: RunState) -> None:
        self.state = state
        logger.debug("run state changed", extra={"state": state.value, "base_name": self.tables.base_name})

    def _run_staged(self, store: Store, source: Path) -> RunCounters:
        tables = self.tables
        ensure_tables(store.engine, tables.all, auto_create=self.settings.auto_create_tables)

        with store.transaction() as tx:
            tx.truncate(tables.work)
            tx.truncate(tables.staging)
        self._advance(RunState.LANDING_PREPARED)

        loaded = store.bulk_load(source, tables.work)
        self._advance(RunState.IMPORTED)

        batch = self._read_landing(store)
        if len(batch) != loaded:
            raise CsvImportError(f"landing holds {len(batch)} rows but {loaded} were loaded")
        query = f"SELECT DISTINCT {store.quote('Number')} FROM {store.quote_table(tables.history)}"
        historical_keys = {row[0] for row in store.execute_query(query)}

        classifications = classify_rows(batch, historical_keys)
        result = promote(batch, classifications)
        self._advance(RunState.CLASSIFIED)

        apply_promotion(store, tables, result, error_time=self.clock())
        self._advance(RunState.PROMOTED)
        return result.counters

    def _run_direct(self, store: Store, source: Path) -> int:
        history = self.tables.history
        ensure_tables(store.engine, [history], auto_create=self.settings.auto_create_tables)

        # Truncate and load commit together so a bad file leaves history untouched.
        with store.transaction() as tx:
            if self.settings.truncate_before_load:
                tx.truncate(history)
            self._advance(RunState.LANDING_PREPARED)
            loaded = tx.bulk_load(source, history)
        self._advance(RunState.IMPORTED)
        return loaded

    def _read_landing(self, store: Store) -> list[RawRow]:
        columns = ", ".join(store.quote(column) for column in BUSINESS_COLUMNS)
        rows = store.execute_query(
            f"SELECT {columns} FROM {store.quote_table(self.tables.work)} ORDER BY {store.quote('RowId')}"
        )
        return [
            RawRow(
                number=str(number),
                first_name=first_name or "",
                last_name=last_name or "",
                create_date=create_date or "",
            )
            for number, first_name, last_name, create_date in rows
        ]

    def _sweep(self) -> None:
        retention_days = self.settings.retention_days
        if retention_days <= 0:
            return
        for directory in (self.settings.processed_dir, self.settings.error_dir):
            try:
                sweep_retention(Path(directory), retention_days)
            except OSError as exc:
                logger.warning("retention sweep failed", extra={"directory": directory, "error": str(exc)})

    def _fail(
        self,
        store: Store,
        session_factory,
        source: Path,
        load_start: datetime,
        failed_state: RunState,
        exc: Exception,
    ) -> LoadResult:
        message = f"{failed_state.value}: {exc}"
        relocated_to: str | None = None
        warnings: list[str] = []
        if source.exists():
            try:
                relocated_to = str(relocate_file(source, Path(self.settings.error_dir), self.clock()))
            except FileRelocationWarning as move_exc:
                logger.warning("file relocation failed", extra={"source_file": str(source), "error": str(move_exc)})
                warnings.append(str(move_exc))
                message = f"{message}; warning: {move_exc}"

        result = LoadResult(
            status=RunStatus.ERROR,
            message=message,
            source_file=source.name,
            rows_copied=None,
            load_start=load_start,
            load_end=self.clock(),
            staging_used=self.settings.enable_staging,
            relocated_to=relocated_to,
            warnings=warnings,
        )
        return self._log(store, session_factory, result)

    def _log(self, store: Store, session_factory, result: LoadResult) -> LoadResult:
        entry = RunLogEntry(
            load_start=result.load_start,
            load_end=result.load_end,
            server_name=store.server_name,
            database_name=store.database_name,
            schema_name=self.settings.db_schema,
            table_name=self.tables.base_name,
            staging_used=result.staging_used,
            source_file=result.source_file,
            rows_copied=result.rows_copied,
            status=result.status,
            message=result.message,
        )
        try:
            write_run_log(session_factory, entry)
        except LogWriteError as exc:
            # The run keeps its own status; the operator still needs to see this.
            logger.error("run log write failed", extra={"source_file": result.source_file, "error": str(exc)})
            print(f"run log write failed: {exc}", file=sys.stderr)
            self.state = RunState.DONE if result.status == RunStatus.SUCCESS else RunState.ERROR
            return replace(result, log_written=False)

        if result.status == RunStatus.SUCCESS:
            self._advance(RunState.LOGGED)
            self._advance(RunState.DONE)
        logger.info(
            "load run finished",
            extra={"source_file": result.source_file, "status": result.status.value, "rows_copied": result.rows_copied},
        )
        return result
