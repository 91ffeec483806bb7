"""Engine log directory maintenance: listing, tailing, and size-bounded cleanup."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class LogFile(BaseModel):
    name: str
    path: str
    size: int
    modified: datetime


class CleanupReport(BaseModel):
    deleted_count: int
    freed_bytes: int
    deleted: list[str]


def list_log_files(log_dir: Path) -> list[LogFile]:
    """All ``*.log`` files under ``log_dir`` (recursive), newest first."""
    if not log_dir.is_dir():
        return []
    files: list[LogFile] = []
    for path in log_dir.rglob("*.log"):
        if not path.is_file():
            continue
        stat = path.stat()
        files.append(
            LogFile(
                name=path.relative_to(log_dir).as_posix(),
                path=str(path),
                size=stat.st_size,
                modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
            )
        )
    files.sort(key=lambda item: item.modified, reverse=True)
    return files


def read_log(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return None


def tail(path: Path, lines: int = 200) -> list[str]:
    content = read_log(path)
    if content is None or lines <= 0:
        return []
    return content.splitlines()[-lines:]


def cleanup_logs(log_dir: Path, *, max_bytes: int, protect: Path | None = None) -> CleanupReport:
    """Delete the oldest log files once the newest-first running total exceeds ``max_bytes``."""
    total = 0
    deleted: list[str] = []
    freed = 0
    protected = protect.resolve() if protect is not None else None
    for item in list_log_files(log_dir):
        total += item.size
        if total <= max_bytes:
            continue
        path = Path(item.path)
        if protected is not None and path.resolve() == protected:
            continue
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        deleted.append(item.name)
        freed += item.size

    if deleted:
        logger.info(
            "engine_logs event=cleanup deleted=%s freed_bytes=%s max_bytes=%s",
            len(deleted),
            freed,
            max_bytes,
        )
    return CleanupReport(deleted_count=len(deleted), freed_bytes=freed, deleted=deleted)
