"""
Binlog Writer - append entry point
Appends binary event records to rotating files, safe across threads and processes.
"""

import os
import time
from pathlib import Path
from typing import Callable, Optional, Union

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

import file_lock
from kv_store import KeyValueStore, SQLiteKeyValueStore
from record_codec import UINT32_MAX, LogRecord, encode
from rotation import RotationManager
from utils import InvalidArgument, LatencyTracker, log_append
from xsemaphore import CrossProcessMutex

logger = structlog.get_logger()

StrLike = Union[str, bytes]


class LogWriterSettings(BaseSettings):
    """Writer settings from environment (BINLOG_*) or keyword arguments."""

    model_config = SettingsConfigDict(env_prefix="BINLOG_")

    write_dir: Path
    saved_file_format: str = "%Y%m%dT%H%M%S-py.saved"
    file_lifetime_seconds: int = Field(default=300, ge=0)
    file_suffix: str = Field(default="py", min_length=1)

    semaphore_id: str = Field(default="sql-log", min_length=1)
    semaphore_ttl_seconds: float = Field(default=300, gt=0)
    store_path: Optional[Path] = None

    legacy_encoding: str = "cp1251"
    fsync: bool = False

    def resolved_store_path(self) -> Path:
        if self.store_path is not None:
            return self.store_path
        # beside the log directory, so it only ever holds log files
        write_dir = self.write_dir.absolute()
        return write_dir.parent / f".{write_dir.name}.semaphores.db"


class LogWriterClient:
    """
    Append-only binary log writer.

    Each append holds the cross-process semaphore while the rotation decision
    is made and the record is written, and an exclusive flock on the active
    file while bytes go to disk.

    Without an explicit store the semaphore lives in a SQLite file next to
    ``write_dir`` (``.<dirname>.semaphores.db``); ``write_dir`` itself is only
    created by the first append.
    """

    def __init__(
        self,
        settings: LogWriterSettings,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        if store is None:
            store = SQLiteKeyValueStore(str(settings.resolved_store_path()))
        self.store = store
        self.mutex = CrossProcessMutex(
            store,
            settings.semaphore_id,
            ttl_seconds=settings.semaphore_ttl_seconds,
        )
        self.rotation = RotationManager(
            settings.write_dir,
            settings.saved_file_format,
            settings.file_lifetime_seconds,
            suffix=settings.file_suffix,
            clock=clock,
        )
        logger.info(
            "log_writer_ready",
            write_dir=str(settings.write_dir),
            semaphore=self.mutex.name,
            lifetime_s=settings.file_lifetime_seconds,
        )

    @classmethod
    def from_env(cls, **overrides) -> "LogWriterClient":
        return cls(LogWriterSettings(**overrides))

    @property
    def current_path(self) -> Path:
        return self.rotation.current_path

    def _text(self, field: str, value: StrLike) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, (bytes, bytearray)):
            try:
                return bytes(value).decode(self.settings.legacy_encoding)
            except UnicodeDecodeError as e:
                raise InvalidArgument(
                    f"{field} is not valid {self.settings.legacy_encoding}: {e}"
                ) from e
        raise InvalidArgument(f"Invalid type of {field}: {type(value).__name__}")

    def build_record(self, table: StrLike, maybe_id: Optional[int], payload: StrLike) -> LogRecord:
        """Validate append() arguments without touching the filesystem."""
        if maybe_id is not None:
            if isinstance(maybe_id, bool) or not isinstance(maybe_id, int):
                raise InvalidArgument(f"Invalid type of maybe_id: {type(maybe_id).__name__}")
            if not 0 <= maybe_id <= UINT32_MAX:
                raise InvalidArgument(f"maybe_id out of range: {maybe_id}")
        return LogRecord(
            table=self._text("table", table),
            id=maybe_id,
            payload=self._text("payload", payload),
        )

    def append(self, table: StrLike, maybe_id: Optional[int], payload: StrLike) -> None:
        """
        Append one record to the active file.

        Raises InvalidArgument before any I/O on bad input. Filesystem
        failures propagate as OSError; rotation work already done stays done.
        """
        record = self.build_record(table, maybe_id, payload)
        data = encode(record)

        tracker = LatencyTracker()
        tracker.start()
        rotated_to = None

        ticket = self.mutex.acquire()
        try:
            result = self.rotation.ensure_current_file()
            rotated_to = result.archived_path

            with open(self.current_path, "ab") as handle:
                with file_lock.locked(handle):
                    handle.write(data)
                    handle.flush()
                    if self.settings.fsync:
                        os.fsync(handle.fileno())
        except OSError as e:
            log_append(
                record.table,
                record.id is not None,
                len(data),
                tracker.elapsed_ms(),
                status="failed",
                rotated_to=rotated_to,
                failure_reason=f"{type(e).__name__}: {e}",
            )
            raise
        finally:
            self.mutex.release(ticket)

        log_append(record.table, record.id is not None, len(data), tracker.elapsed_ms(), rotated_to=rotated_to)
