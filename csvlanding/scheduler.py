import logging
from pathlib import Path

from apscheduler.schedulers.blocking import BlockingScheduler

from csvlanding.config import Settings
from csvlanding.pipeline import LoadRunner
from csvlanding.schemas import LoadResult, RunStatus


logger = logging.getLogger(__name__)


def load_inbox(settings: Settings, runner: LoadRunner | None = None) -> list[LoadResult]:
    inbox = Path(settings.inbox_dir)
    if not inbox.is_dir():
        logger.warning("inbox directory missing", extra={"inbox_dir": str(inbox)})
        return []

    runner = runner or LoadRunner(settings)
    results: list[LoadResult] = []
    for csv_path in sorted(inbox.glob("*.csv")):
        result = runner.run(csv_path)
        results.append(result)
        if result.status == RunStatus.ERROR:
            logger.error(
                "inbox file failed",
                extra={"source_file": result.source_file, "status": result.status.value},
            )
            continue
        logger.info(
            "inbox file loaded",
            extra={"source_file": result.source_file, "rows_copied": result.rows_copied},
        )
    return results


def start_scheduler(settings: Settings, *, run_now: bool = False) -> None:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        load_inbox,
        "interval",
        args=[settings],
        minutes=settings.poll_interval_minutes,
        id="inbox_sweep",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(
        "scheduler started",
        extra={
            "inbox_dir": settings.inbox_dir,
            "poll_interval_minutes": settings.poll_interval_minutes,
        },
    )

    if run_now:
        load_inbox(settings)

    scheduler.start()
