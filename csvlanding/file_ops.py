from datetime import datetime
import errno
import logging
import os
from pathlib import Path
import shutil
import tempfile
import time

from csvlanding.errors import FileRelocationWarning


logger = logging.getLogger(__name__)


def timestamped_name(path: Path, dest_dir: Path, now: datetime) -> Path:
    stamp = now.strftime("%Y%m%d_%H%M%S_%f")
    candidate = dest_dir / f"{path.stem}_{stamp}{path.suffix}"
    counter = 1
    while candidate.exists():
        candidate = dest_dir / f"{path.stem}_{stamp}_{counter}{path.suffix}"
        counter += 1
    return candidate


def _copy_then_unlink(src: Path, target: Path) -> None:
    # The copy is fully on disk under its final name before the source is removed.
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as outfile, src.open("rb") as infile:
            shutil.copyfileobj(infile, outfile)
            outfile.flush()
            os.fsync(outfile.fileno())
        shutil.copystat(src, tmp_path)
        os.replace(tmp_path, target)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    try:
        src.unlink()
    except OSError as exc:
        raise FileRelocationWarning(f"copied {src} to {target} but could not remove the source: {exc}") from exc


def relocate_file(src: Path, dest_dir: Path, now: datetime) -> Path:
    if not src.exists():
        raise FileRelocationWarning(f"source file no longer present: {src}")

    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        target = timestamped_name(src, dest_dir, now)
        try:
            os.replace(src, target)
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise
            _copy_then_unlink(src, target)
        # A rename keeps the old mtime; restart the retention clock on arrival.
        os.utime(target)
    except FileRelocationWarning:
        raise
    except OSError as exc:
        raise FileRelocationWarning(f"could not move {src} to {dest_dir}: {exc}") from exc

    logger.info("file relocated", extra={"source": str(src), "target": str(target)})
    return target


def sweep_retention(directory: Path, retention_days: int, *, now: float | None = None) -> list[Path]:
    """Delete files whose mtime is older than ``retention_days``.

    ``now`` is epoch seconds, defaulting to ``time.time()``, so the cutoff
    compares directly with ``st_mtime`` whatever the local timezone.
    """
    if retention_days <= 0 or not directory.is_dir():
        return []

    current = time.time() if now is None else now
    cutoff = current - retention_days * 86400
    removed: list[Path] = []
    for path in sorted(directory.iterdir()):
        try:
            if not path.is_file() or path.stat().st_mtime >= cutoff:
                continue
            path.unlink()
            removed.append(path)
        except OSError as exc:
            logger.warning("retention sweep skipped file", extra={"path": str(path), "error": str(exc)})

    if removed:
        logger.info("retention sweep removed files", extra={"directory": str(directory), "count": len(removed)})
    return removed
