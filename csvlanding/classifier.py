from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime

from dateutil import parser as dateparser

from csvlanding.errors import ClassificationError
from csvlanding.schemas import RawRow, RejectReason, RowClassification

# Missing date parts are filled from a fixed value so parsing never depends on today's date.
_PARSE_DEFAULT = datetime(1900, 1, 1)


def parse_create_date(value: str | None) -> datetime | None:
    if value is None or not value.strip():
        return None
    try:
        return dateparser.parse(value, default=_PARSE_DEFAULT)
    except (ValueError, OverflowError, TypeError):
        return None


def classify_rows(batch: Sequence[RawRow], historical_keys: Iterable[str]) -> list[RowClassification]:
    """Label every row in ``batch`` with the rules it violates.

    ``historical_keys`` must be the keys present in history before this run.
    Every occurrence of a key repeated inside the batch is flagged, not only
    the later ones. Output order follows ``batch``.
    """
    history = set(historical_keys)
    key_counts = Counter(row.number for row in batch)

    results: list[RowClassification] = []
    for index, row in enumerate(batch):
        if not isinstance(row, RawRow) or row.number is None:
            raise ClassificationError(f"row {index} is not a well-formed RawRow: {row!r}")

        reasons: set[RejectReason] = set()
        if key_counts[row.number] > 1:
            reasons.add(RejectReason.DUPLICATE_IN_BATCH)
        if row.number in history:
            reasons.add(RejectReason.DUPLICATE_VS_HISTORY)
        if parse_create_date(row.create_date) is None:
            reasons.add(RejectReason.INVALID_DATE)
        results.append(RowClassification(index=index, row=row, reasons=frozenset(reasons)))

    return results
