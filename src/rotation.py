"""
Binlog Rotation Manager
Time-based rotation of the active log file to timestamped archive names.
"""

import os
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import structlog
from pydantic import BaseModel

from record_codec import encode_header

logger = structlog.get_logger()


class RotationResult(BaseModel):
    """Outcome of one rotation check."""

    created: bool
    archived_path: Optional[str] = None


class RotationManager:
    """
    Keeps the active file fresh.

    Must only run while the cross-process mutex is held: two processes racing
    through the existence check could otherwise both rotate or both create.
    """

    def __init__(
        self,
        write_dir: Path,
        saved_file_format: str,
        lifetime_seconds: int,
        suffix: str = "py",
        clock: Callable[[], float] = time.time,
    ):
        self.write_dir = Path(write_dir)
        self.saved_file_format = saved_file_format
        self.lifetime_seconds = lifetime_seconds
        self.clock = clock
        self.current_path = self.write_dir / f"current-{suffix}"
        self.marker_path = self.write_dir / f"time-{suffix}"

    def read_marker(self) -> Optional[int]:
        """Return the marker timestamp, or None if missing or corrupt."""
        try:
            return int(self.marker_path.read_text(encoding="ascii").strip())
        except (OSError, ValueError, UnicodeDecodeError):
            return None

    def _write_marker(self, now: int) -> None:
        self.marker_path.write_text(str(now), encoding="ascii")

    def _archive_path(self, now: int) -> Path:
        name = datetime.fromtimestamp(now).strftime(self.saved_file_format)
        target = self.write_dir / name
        # never clobber an existing archive
        n = 0
        while target.exists():
            n += 1
            target = self.write_dir / f"{name}.{n}"
        return target

    def is_expired(self, now: int) -> bool:
        marker = self.read_marker()
        if marker is None:
            logger.warning("rotation_marker_unreadable", marker=str(self.marker_path))
            return True
        return now >= marker + self.lifetime_seconds

    def ensure_current_file(self, now: Optional[float] = None) -> RotationResult:
        """
        Make sure the active file exists and is fresh.

        Creates the directory, marker and header on first use. Renames an
        expired active file to its archive name and refreshes the marker.
        """
        now = int(self.clock() if now is None else now)
        archived = None

        if self.current_path.exists():
            if self.is_expired(now):
                target = self._archive_path(now)
                os.rename(self.current_path, target)
                self._write_marker(now)
                archived = str(target)
                logger.info("log_rotated", archived_path=archived, marker=now)
        else:
            self.write_dir.mkdir(parents=True, exist_ok=True)
            self._write_marker(now)

        created = False
        if not self.current_path.exists():
            self.current_path.write_bytes(encode_header())
            created = True
            logger.info("log_file_created", path=str(self.current_path))

        return RotationResult(created=created, archived_path=archived)
