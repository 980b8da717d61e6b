from collections.abc import Generator
from pathlib import Path

import pytest

from csvlanding.config import Settings
from csvlanding.database import Store, build_engine
from csvlanding.pipeline import LoadRunner
from csvlanding.schemas import CSV_HEADERS


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "data" / "inbox").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        app_name="csvlanding",
        database_url=f"sqlite:///{temp_workspace / 'test.db'}",
        db_schema=None,
        base_name="Customers",
        csv_path=None,
        enable_staging=True,
        auto_create_tables=True,
        truncate_before_load=False,
        auth_mode="integrated",
        db_username=None,
        db_password=None,
        trust_server_certificate=False,
        processed_dir=str(temp_workspace / "data" / "processed"),
        error_dir=str(temp_workspace / "data" / "error"),
        retention_days=0,
        inbox_dir=str(temp_workspace / "data" / "inbox"),
        poll_interval_minutes=5,
        log_level="INFO",
        fixture_state_path=str(temp_workspace / "fixtures" / "state.json"),
        fixture_registry_path=str(temp_workspace / "fixtures" / "registry.txt"),
        fixture_output_dir=str(temp_workspace / "data" / "inbox"),
    )


@pytest.fixture()
def runner(test_settings: Settings) -> LoadRunner:
    return LoadRunner(test_settings)


@pytest.fixture()
def store(test_settings: Settings) -> Generator[Store, None, None]:
    engine = build_engine(test_settings.database_url)
    yield Store(engine)
    engine.dispose()


@pytest.fixture()
def write_csv(temp_workspace: Path):
    def _write(name: str, rows: list[tuple[str, str, str, str]], header: tuple[str, ...] = CSV_HEADERS) -> Path:
        path = temp_workspace / "data" / "inbox" / name
        lines = [",".join(header)] + [",".join(row) for row in rows]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write
