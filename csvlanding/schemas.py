from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


CSV_HEADERS = ("Number", "First Name", "Last Name", "Create Date")
BUSINESS_COLUMNS = ("Number", "FirstName", "LastName", "CreateDate")


class RejectReason(str, Enum):
    DUPLICATE_IN_BATCH = "DuplicateInBatch"
    DUPLICATE_VS_HISTORY = "DuplicateVsHistory"
    INVALID_DATE = "InvalidDate"


class RunStatus(str, Enum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


@dataclass(frozen=True)
class RawRow:
    number: str
    first_name: str
    last_name: str
    create_date: str

    def as_params(self) -> dict[str, str]:
        return {
            "Number": self.number,
            "FirstName": self.first_name,
            "LastName": self.last_name,
            "CreateDate": self.create_date,
        }


@dataclass(frozen=True)
class RowClassification:
    index: int
    row: RawRow
    reasons: frozenset[RejectReason]

    @property
    def is_valid(self) -> bool:
        return not self.reasons


@dataclass(frozen=True)
class ErrorRecord:
    row: RawRow
    reason: RejectReason


@dataclass(frozen=True)
class RunCounters:
    rows_in_file: int = 0
    valid_rows: int = 0
    dups_in_file: int = 0
    dups_vs_history: int = 0
    bad_date: int = 0
    # Errors row count (row-reason pairs) versus distinct rejected rows.
    error_rows: int = 0
    rejected_rows: int = 0


@dataclass(frozen=True)
class PromotionResult:
    staging: list[RawRow]
    errors: list[ErrorRecord]
    history: list[RawRow]
    counters: RunCounters


@dataclass(frozen=True)
class LoadResult:
    status: RunStatus
    message: str
    source_file: str
    rows_copied: int | None
    load_start: datetime
    load_end: datetime
    staging_used: bool
    relocated_to: str | None = None
    counters: RunCounters | None = None
    log_written: bool = True
    warnings: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.status == RunStatus.SUCCESS else 1
