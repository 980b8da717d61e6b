import argparse
from dataclasses import replace
from datetime import datetime
import logging
from pathlib import Path
import random

from csvlanding.config import AUTH_MODES, Settings, get_settings
from csvlanding.fixtures import generate_fixture_files, reset_state
from csvlanding.pipeline import LoadRunner
from csvlanding.scheduler import start_scheduler


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Land CSV files into history, staging and error tables")
    subparsers = parser.add_subparsers(dest="command", required=True)

    load_parser = subparsers.add_parser("load", help="load one CSV file")
    load_parser.add_argument("--csv-path", required=False, help="CSV file to load (defaults to CSV_PATH)")
    load_parser.add_argument("--base-name", required=False, help="Base name for the derived tables")
    load_parser.add_argument("--schema", required=False, help="Database schema holding the tables")
    load_parser.add_argument("--no-staging", action="store_true", help="load straight into history")
    load_parser.add_argument("--no-auto-create", action="store_true", help="fail when tables are missing")
    load_parser.add_argument("--truncate", action="store_true", help="truncate history before a direct load")
    load_parser.add_argument("--auth-mode", choices=AUTH_MODES, required=False)
    load_parser.add_argument("--trust-server-certificate", action="store_true")
    load_parser.add_argument("--processed-dir", required=False)
    load_parser.add_argument("--error-dir", required=False)
    load_parser.add_argument("--retention-days", type=int, required=False)

    generate_parser = subparsers.add_parser("generate", help="write synthetic CSV fixtures")
    generate_parser.add_argument("--files", type=int, default=1, help="number of files to write")
    generate_parser.add_argument("--records", type=int, default=100, help="rows per file")
    generate_parser.add_argument("--output-dir", required=False)
    generate_parser.add_argument("--max-age-days", type=int, default=365)
    generate_parser.add_argument("--seed", type=int, required=False, help="random seed for repeatable output")
    generate_parser.add_argument("--reset", action="store_true", help="clear uniqueness state first")

    watch_parser = subparsers.add_parser("watch", help="load inbox files on an interval")
    watch_parser.add_argument("--run-now", action="store_true", help="also sweep the inbox immediately")

    return parser.parse_args(argv)


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    overrides: dict[str, object] = {}
    if args.csv_path:
        overrides["csv_path"] = args.csv_path
    if args.base_name:
        overrides["base_name"] = args.base_name
    if args.schema:
        overrides["db_schema"] = args.schema
    if args.no_staging:
        overrides["enable_staging"] = False
    if args.no_auto_create:
        overrides["auto_create_tables"] = False
    if args.truncate:
        overrides["truncate_before_load"] = True
    if args.auth_mode:
        overrides["auth_mode"] = args.auth_mode
    if args.trust_server_certificate:
        overrides["trust_server_certificate"] = True
    if args.processed_dir:
        overrides["processed_dir"] = args.processed_dir
    if args.error_dir:
        overrides["error_dir"] = args.error_dir
    if args.retention_days is not None:
        overrides["retention_days"] = args.retention_days
    return replace(settings, **overrides)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.command == "watch":
        start_scheduler(settings, run_now=args.run_now)
        return

    if args.command == "generate":
        state_path = Path(settings.fixture_state_path)
        registry_path = Path(settings.fixture_registry_path)
        if args.reset:
            reset_state(state_path, registry_path)
        written = generate_fixture_files(
            output_dir=Path(args.output_dir or settings.fixture_output_dir),
            file_count=args.files,
            records_per_file=args.records,
            state_path=state_path,
            registry_path=registry_path,
            now=datetime.now(),
            rng=random.Random(args.seed),
            max_age_days=args.max_age_days,
        )
        for path in written:
            print(f"wrote {path}")
        return

    settings = apply_overrides(settings, args)
    if not settings.csv_path:
        raise SystemExit("a CSV path is required (--csv-path or CSV_PATH)")

    result = LoadRunner(settings).run(settings.csv_path)
    print(
        "status={status} file={file} rows={rows} message={message}".format(
            status=result.status.value,
            file=result.source_file,
            rows=result.rows_copied,
            message=result.message,
        )
    )
    if result.exit_code != 0:
        raise SystemExit(result.exit_code)


if __name__ == "__main__":
    main()
