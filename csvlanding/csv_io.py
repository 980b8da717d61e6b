import csv
from pathlib import Path

from csvlanding.errors import CsvImportError
from csvlanding.schemas import CSV_HEADERS, RawRow


def read_csv_rows(path: Path, *, delimiter: str = ",", encoding: str = "utf-8") -> list[RawRow]:
    if not path.exists():
        raise CsvImportError(f"csv file not found: {path}")

    rows: list[RawRow] = []
    try:
        # utf-8-sig strips a leading BOM from the first header.
        if encoding.lower().replace("_", "-") == "utf-8":
            encoding = "utf-8-sig"
        with path.open("r", encoding=encoding, newline="") as infile:
            reader = csv.reader(infile, delimiter=delimiter)
            header = next(reader, None)
            if header is None:
                raise CsvImportError(f"csv file has no header row: {path}")

            positions = {name.strip(): index for index, name in enumerate(header)}
            missing = [name for name in CSV_HEADERS if name not in positions]
            if missing:
                raise CsvImportError(f"csv header is missing columns {missing}: {path}")

            for line_number, values in enumerate(reader, start=2):
                if not values:
                    continue
                if len(values) != len(header):
                    raise CsvImportError(
                        f"line {line_number} has {len(values)} fields, expected {len(header)}: {path}"
                    )
                number, first_name, last_name, create_date = (values[positions[name]] for name in CSV_HEADERS)
                if not number.strip():
                    raise CsvImportError(f"line {line_number} has an empty Number: {path}")
                rows.append(RawRow(number, first_name, last_name, create_date))
    except UnicodeDecodeError as exc:
        raise CsvImportError(f"csv file is not valid {encoding}: {path}") from exc
    except csv.Error as exc:
        raise CsvImportError(f"malformed csv {path}: {exc}") from exc

    return rows


def write_csv_rows(path: Path, rows: list[RawRow]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as outfile:
        writer = csv.writer(outfile)
        writer.writerow(CSV_HEADERS)
        for row in rows:
            writer.writerow([row.number, row.first_name, row.last_name, row.create_date])
