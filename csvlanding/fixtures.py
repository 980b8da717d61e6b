"""Synthetic CSV fixtures with keys and names unique across every run
that shares the same state file."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import hashlib
import json
import logging
from pathlib import Path
import random

from csvlanding.csv_io import write_csv_rows
from csvlanding.schemas import RawRow


logger = logging.getLogger(__name__)

FIRST_NAMES = (
    "Ada", "Alan", "Barbara", "Claude", "Dennis", "Edsger", "Frances", "Grace", "Hedy", "Ivan",
    "John", "Ken", "Linus", "Margaret", "Niklaus", "Radia", "Shafi", "Tim", "Vint", "Whitfield",
)
LAST_NAMES = (
    "Allen", "Backus", "Cerf", "Dijkstra", "Engelbart", "Floyd", "Goldwasser", "Hamilton", "Hopper", "Kay",
    "Knuth", "Lamport", "Liskov", "McCarthy", "Perlman", "Ritchie", "Shannon", "Sutherland", "Thompson", "Wirth",
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class GeneratorState:
    next_number: int = 1
    used_names: set[tuple[str, str]] = field(default_factory=set)


def load_state(path: Path) -> GeneratorState:
    if not path.exists():
        return GeneratorState()
    with path.open("r", encoding="utf-8") as infile:
        payload = json.load(infile)
    return GeneratorState(
        next_number=int(payload["next_number"]),
        used_names={(first, last) for first, last in payload["used_names"]},
    )


def save_state(path: Path, state: GeneratorState) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp")
    with tmp_path.open("w", encoding="utf-8") as outfile:
        json.dump(
            {"next_number": state.next_number, "used_names": sorted([first, last] for first, last in state.used_names)},
            outfile,
            indent=2,
        )
        outfile.write("\n")
    tmp_path.replace(path)


def reset_state(state_path: Path, registry_path: Path | None = None) -> None:
    state_path.unlink(missing_ok=True)
    if registry_path is not None:
        registry_path.unlink(missing_ok=True)
    logger.info("fixture state reset", extra={"state_path": str(state_path)})


def row_hash(row: RawRow) -> str:
    joined = "|".join((row.number, row.first_name, row.last_name, row.create_date))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def _pick_name(
    state: GeneratorState,
    rng: random.Random,
    first_names: tuple[str, ...],
    last_names: tuple[str, ...],
    max_attempts: int,
) -> tuple[str, str]:
    first = last = ""
    for _ in range(max_attempts):
        first, last = rng.choice(first_names), rng.choice(last_names)
        if (first, last) not in state.used_names:
            return first, last

    # Pools exhausted or unlucky: suffix the last draw until it is unused.
    suffix = 2
    while (first, f"{last}{suffix}") in state.used_names:
        suffix += 1
    return first, f"{last}{suffix}"


def generate_rows(
    state: GeneratorState,
    count: int,
    *,
    rng: random.Random,
    now: datetime,
    max_age_days: int = 365,
    first_names: tuple[str, ...] = FIRST_NAMES,
    last_names: tuple[str, ...] = LAST_NAMES,
    max_attempts: int = 25,
) -> list[RawRow]:
    if count < 0:
        raise ValueError("count must be non-negative")
    window_seconds = max(max_age_days, 0) * 86400
    now = now.replace(microsecond=0)

    rows: list[RawRow] = []
    for _ in range(count):
        first, last = _pick_name(state, rng, first_names, last_names, max_attempts)
        state.used_names.add((first, last))
        created = now - timedelta(seconds=rng.randint(0, window_seconds))
        rows.append(
            RawRow(
                number=str(state.next_number),
                first_name=first,
                last_name=last,
                create_date=created.strftime(DATE_FORMAT),
            )
        )
        state.next_number += 1
    return rows


def generate_fixture_files(
    *,
    output_dir: Path,
    file_count: int,
    records_per_file: int,
    state_path: Path,
    registry_path: Path,
    now: datetime,
    rng: random.Random | None = None,
    max_age_days: int = 365,
    prefix: str = "customers",
) -> list[Path]:
    rng = rng or random.Random()
    state = load_state(state_path)
    stamp = now.strftime("%Y%m%d_%H%M%S")

    written: list[Path] = []
    hashes: list[str] = []
    for index in range(1, file_count + 1):
        rows = generate_rows(state, records_per_file, rng=rng, now=now, max_age_days=max_age_days)
        path = output_dir / f"{prefix}_{stamp}_{index:03d}.csv"
        counter = 1
        while path.exists():
            path = output_dir / f"{prefix}_{stamp}_{index:03d}_{counter}.csv"
            counter += 1
        write_csv_rows(path, rows)
        hashes.extend(row_hash(row) for row in rows)
        written.append(path)

    registry_path.parent.mkdir(parents=True, exist_ok=True)
    with registry_path.open("a", encoding="utf-8") as outfile:
        for digest in hashes:
            outfile.write(f"{digest}\n")
    save_state(state_path, state)

    logger.info(
        "fixture files generated",
        extra={"files": len(written), "records_per_file": records_per_file, "next_number": state.next_number},
    )
    return written
