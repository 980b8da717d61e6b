from dataclasses import replace
import os
from pathlib import Path
import time

import pytest

from csvlanding.database import Store, build_session_factory
from csvlanding.errors import LogWriteError
from csvlanding.pipeline import LoadRunner, RunState
from csvlanding.run_store import recent_runs
from csvlanding.schemas import RunStatus


def count(store: Store, table: str) -> int:
    return store.execute_query(f"SELECT COUNT(*) FROM {table}")[0][0]


def numbers(store: Store, table: str) -> list[str]:
    return [row[0] for row in store.execute_query(f"SELECT Number FROM {table} ORDER BY RowId")]


def test_batch_duplicates_go_to_errors_and_history_keeps_everything(runner, store, write_csv, temp_workspace: Path) -> None:
    source = write_csv(
        "batch.csv",
        [
            ("1", "Ada", "Lovelace", "2024-01-01 09:00:00"),
            ("2", "Grace", "Hopper", "2024-01-02 09:00:00"),
            ("2", "Alan", "Turing", "2024-01-03 09:00:00"),
        ],
    )

    result = runner.run(source)

    assert result.status == RunStatus.SUCCESS
    assert result.rows_copied == 3
    assert runner.state == RunState.DONE
    assert numbers(store, "Customers_staging") == ["1"]
    assert numbers(store, "Customers_errors") == ["2", "2"]
    reasons = {row[0] for row in store.execute_query("SELECT Reason FROM Customers_errors")}
    assert reasons == {"DuplicateInBatch"}
    assert count(store, "Customers_hist") == 3
    assert count(store, "Customers_work") == 3

    assert not source.exists()
    processed = list((temp_workspace / "data" / "processed").iterdir())
    assert len(processed) == 1
    assert processed[0].name.startswith("batch_") and processed[0].suffix == ".csv"
    assert result.relocated_to == str(processed[0])


def test_key_seen_in_earlier_run_is_rejected(runner, store, write_csv) -> None:
    assert runner.run(write_csv("first.csv", [("5", "Ada", "Lovelace", "2024-01-01")])).status == RunStatus.SUCCESS
    history_before = count(store, "Customers_hist")

    result = runner.run(write_csv("second.csv", [("5", "Edsger", "Dijkstra", "2024-02-01")]))

    assert result.status == RunStatus.SUCCESS
    assert count(store, "Customers_staging") == 0
    errors = store.execute_query("SELECT Number, Reason FROM Customers_errors")
    assert [tuple(row) for row in errors] == [("5", "DuplicateVsHistory")]
    assert count(store, "Customers_hist") == history_before + 1
    assert result.counters.dups_vs_history == 1


def test_invalid_date_is_rejected(runner, store, write_csv) -> None:
    result = runner.run(write_csv("dates.csv", [("8", "Ada", "Lovelace", "not-a-date")]))

    assert result.status == RunStatus.SUCCESS
    assert count(store, "Customers_staging") == 0
    reasons = [row[0] for row in store.execute_query("SELECT Reason FROM Customers_errors")]
    assert reasons == ["InvalidDate"]
    assert result.counters.bad_date == 1


def test_staging_is_replaced_on_every_run(runner, store, write_csv) -> None:
    runner.run(write_csv("one.csv", [("1", "Ada", "Lovelace", "2024-01-01"), ("2", "Alan", "Turing", "2024-01-02")]))
    runner.run(write_csv("two.csv", [("3", "Grace", "Hopper", "2024-01-03")]))

    assert numbers(store, "Customers_staging") == ["3"]
    assert numbers(store, "Customers_work") == ["3"]
    assert count(store, "Customers_hist") == 3


def test_direct_mode_with_truncate_replaces_history(test_settings, store, write_csv) -> None:
    direct = replace(test_settings, enable_staging=False)
    seed_rows = [(str(n), "Ada", "Lovelace", "2024-01-01") for n in range(1, 11)]
    assert LoadRunner(direct).run(write_csv("seed.csv", seed_rows)).rows_copied == 10
    assert count(store, "Customers_hist") == 10

    truncating = LoadRunner(replace(direct, truncate_before_load=True))
    new_rows = [(str(n), "Grace", "Hopper", "not-a-date") for n in range(100, 104)]
    result = truncating.run(write_csv("fresh.csv", new_rows))

    assert result.status == RunStatus.SUCCESS
    assert result.rows_copied == 4
    assert result.staging_used is False
    assert numbers(store, "Customers_hist") == ["100", "101", "102", "103"]
    tables = {row[0] for row in store.execute_query("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert "Customers_staging" not in tables
    assert "Customers_errors" not in tables


def test_malformed_csv_routes_to_error_folder_and_logs(runner, store, write_csv, temp_workspace: Path) -> None:
    runner.run(write_csv("good.csv", [("1", "Ada", "Lovelace", "2024-01-01")]))
    source = write_csv("bad.csv", [("2", "Grace", "Hopper", "2024-01-02")], header=("Number", "Name", "Created"))

    result = runner.run(source)

    assert result.status == RunStatus.ERROR
    assert result.exit_code == 1
    assert result.message.startswith("LandingPrepared:")
    assert "missing columns" in result.message
    assert runner.state == RunState.ERROR
    assert not source.exists()
    moved = list((temp_workspace / "data" / "error").iterdir())
    assert [path.name.startswith("bad_") for path in moved] == [True]
    assert count(store, "Customers_hist") == 1

    runs = recent_runs(build_session_factory(store.engine))
    assert [run.status for run in runs] == ["ERROR", "SUCCESS"]
    assert runs[0].source_file == "bad.csv"
    assert runs[0].rows_copied is None
    assert runs[1].rows_copied == 1
    assert runs[1].staging_used is True
    assert runs[1].table_name == "Customers"


def test_missing_tables_without_auto_create_fail_the_run(test_settings, write_csv, temp_workspace: Path) -> None:
    runner = LoadRunner(replace(test_settings, auto_create_tables=False))
    source = write_csv("strict.csv", [("1", "Ada", "Lovelace", "2024-01-01")])

    result = runner.run(source)

    assert result.status == RunStatus.ERROR
    assert "auto-create is disabled" in result.message
    # No log table exists either, so the log write fails without changing the status.
    assert result.log_written is False
    assert (temp_workspace / "data" / "error").is_dir()


def test_unreachable_store_has_no_side_effects(test_settings, write_csv, temp_workspace: Path) -> None:
    broken = replace(test_settings, database_url=f"sqlite:///{temp_workspace / 'missing' / 'dir' / 'x.db'}")
    source = write_csv("orphan.csv", [("1", "Ada", "Lovelace", "2024-01-01")])

    result = LoadRunner(broken).run(source)

    assert result.status == RunStatus.ERROR
    assert result.message.startswith("cannot connect")
    assert result.log_written is False
    assert source.exists()
    assert not (temp_workspace / "data" / "error").exists()


def test_log_write_failure_keeps_success_status(runner, write_csv, monkeypatch, capsys) -> None:
    def failing_write(session_factory, entry):
        raise LogWriteError("log table unavailable")

    monkeypatch.setattr("csvlanding.pipeline.write_run_log", failing_write)

    result = runner.run(write_csv("ok.csv", [("1", "Ada", "Lovelace", "2024-01-01")]))

    assert result.status == RunStatus.SUCCESS
    assert result.log_written is False
    assert "log table unavailable" in capsys.readouterr().err


def test_relocation_failure_is_only_a_warning(runner, write_csv, monkeypatch) -> None:
    from csvlanding.errors import FileRelocationWarning

    def failing_move(src, dest_dir, now):
        raise FileRelocationWarning(f"could not move {src}")

    monkeypatch.setattr("csvlanding.pipeline.relocate_file", failing_move)
    source = write_csv("stuck.csv", [("1", "Ada", "Lovelace", "2024-01-01")])

    result = runner.run(source)

    assert result.status == RunStatus.SUCCESS
    assert result.relocated_to is None
    assert "warning: could not move" in result.message
    assert source.exists()


def test_failed_promotion_commits_nothing_for_the_run(runner, store, write_csv, monkeypatch, temp_workspace: Path) -> None:
    runner.run(write_csv("seed.csv", [("1", "Ada", "Lovelace", "2024-01-01")]))
    history_before = count(store, "Customers_hist")
    real_insert = Store.insert_rows

    def failing_insert(self, table, rows):
        if table.name.endswith("_hist"):
            raise RuntimeError("disk full")
        return real_insert(self, table, rows)

    monkeypatch.setattr(Store, "insert_rows", failing_insert)
    source = write_csv("next.csv", [("1", "Grace", "Hopper", "2024-01-02"), ("9", "Alan", "Turing", "bad")])

    result = runner.run(source)

    assert result.status == RunStatus.ERROR
    assert result.message == "Classified: disk full"
    assert count(store, "Customers_hist") == history_before
    assert count(store, "Customers_errors") == 0
    assert count(store, "Customers_staging") == 0
    assert [path.name.startswith("next_") for path in (temp_workspace / "data" / "error").iterdir()] == [True]
    runs = recent_runs(build_session_factory(store.engine))
    assert runs[0].status == "ERROR"
    assert runs[0].message == "Classified: disk full"


@pytest.fixture()
def west_of_utc(monkeypatch):
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def _age(path: Path, seconds: float) -> None:
    stamp = time.time() - seconds
    os.utime(path, (stamp, stamp))


def test_retention_sweep_keeps_files_inside_window(test_settings, write_csv, temp_workspace: Path, west_of_utc) -> None:
    processed = temp_workspace / "data" / "processed"
    error_dir = temp_workspace / "data" / "error"
    processed.mkdir(parents=True)
    error_dir.mkdir(parents=True)
    stale = processed / "stale.csv"
    recent = processed / "recent.csv"
    stale_error = error_dir / "stale_error.csv"
    for path in (stale, recent, stale_error):
        path.write_text("x", encoding="utf-8")
    _age(stale, 10 * 86400)
    _age(stale_error, 10 * 86400)
    _age(recent, 6 * 86400 + 20 * 3600)

    source = write_csv("export.csv", [("1", "Ada", "Lovelace", "2024-01-01")])
    _age(source, 30 * 86400)

    result = LoadRunner(replace(test_settings, retention_days=7)).run(source)

    assert result.status == RunStatus.SUCCESS
    assert result.relocated_to is not None
    assert Path(result.relocated_to).exists()
    assert recent.exists()
    assert not stale.exists()
    assert not stale_error.exists()


def test_credentials_prompt_without_terminal_cannot_connect(test_settings, write_csv, monkeypatch) -> None:
    def no_terminal(text: str = "") -> str:
        raise EOFError

    monkeypatch.setattr("builtins.input", no_terminal)
    source = write_csv("creds.csv", [("1", "Ada", "Lovelace", "2024-01-01")])

    result = LoadRunner(replace(test_settings, auth_mode="credentials")).run(source)

    assert result.status == RunStatus.ERROR
    assert result.message.startswith("cannot connect")
    assert result.log_written is False
    assert source.exists()
