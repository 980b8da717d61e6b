from collections.abc import Sequence
from datetime import datetime
import logging

from csvlanding.database import Store
from csvlanding.db_models import LandingTables
from csvlanding.errors import ClassificationError
from csvlanding.schemas import ErrorRecord, PromotionResult, RawRow, RejectReason, RowClassification, RunCounters


logger = logging.getLogger(__name__)

# Fixed order keeps error output stable between identical runs.
REASON_ORDER = (
    RejectReason.DUPLICATE_IN_BATCH,
    RejectReason.DUPLICATE_VS_HISTORY,
    RejectReason.INVALID_DATE,
)


def promote(batch: Sequence[RawRow], classifications: Sequence[RowClassification]) -> PromotionResult:
    if len(batch) != len(classifications):
        raise ClassificationError(
            f"classification count {len(classifications)} does not match batch size {len(batch)}"
        )

    staging: list[RawRow] = []
    errors: list[ErrorRecord] = []
    reason_counts = {reason: 0 for reason in REASON_ORDER}

    for row, classification in zip(batch, classifications):
        if classification.row != row:
            raise ClassificationError(f"classification for row {classification.index} does not match the batch")
        if classification.is_valid:
            staging.append(row)
            continue
        for reason in REASON_ORDER:
            if reason in classification.reasons:
                errors.append(ErrorRecord(row=row, reason=reason))
                reason_counts[reason] += 1

    counters = RunCounters(
        rows_in_file=len(batch),
        valid_rows=len(staging),
        dups_in_file=reason_counts[RejectReason.DUPLICATE_IN_BATCH],
        dups_vs_history=reason_counts[RejectReason.DUPLICATE_VS_HISTORY],
        bad_date=reason_counts[RejectReason.INVALID_DATE],
        error_rows=len(errors),
        rejected_rows=len(batch) - len(staging),
    )
    return PromotionResult(staging=staging, errors=errors, history=list(batch), counters=counters)


def apply_promotion(store: Store, tables: LandingTables, result: PromotionResult, *, error_time: datetime) -> None:
    """Replace staging and append errors and history in one transaction."""
    with store.transaction() as tx:
        tx.truncate(tables.staging)
        tx.insert_rows(tables.staging, [row.as_params() for row in result.staging])
        tx.insert_rows(
            tables.errors,
            [
                {**error.row.as_params(), "Reason": error.reason.value, "ErrorDate": error_time}
                for error in result.errors
            ],
        )
        tx.insert_rows(tables.history, [row.as_params() for row in result.history])

    logger.info(
        "promotion applied",
        extra={
            "base_name": tables.base_name,
            "staging_rows": len(result.staging),
            "error_rows": len(result.errors),
            "history_rows": len(result.history),
        },
    )


def summarize(counters: RunCounters) -> str:
    return (
        f"Rows in file: {counters.rows_in_file}; valid: {counters.valid_rows}; "
        f"duplicates in file: {counters.dups_in_file}; duplicates vs history: {counters.dups_vs_history}; "
        f"invalid dates: {counters.bad_date}; error rows: {counters.error_rows}"
    )
