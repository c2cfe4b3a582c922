#!/usr/bin/env python3
"""Content duplicate finder with two-stage fingerprinting and NDJSON logging."""

from __future__ import annotations

import argparse
import functools
import hashlib
import json
import logging
import os
import sys
import tempfile
import threading
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import xxhash
from pydantic import BaseModel
from rich.console import Console
from rich.markup import escape

MODULE_VERSION = "1.0.0"
DEFAULT_ENV = "dev"
CHUNK_SIZE = 1024 * 1024
PROGRESS_INTERVAL_SECONDS = 5.0

LOGGER_NAME = "dupes"
ENV_VAR = "DUPES_ENV"
LOG_DIR_ENV = "DUPES_LOG_DIR"
CONSOLE_LOG_LEVEL_ENV = "DUPES_CONSOLE_LOG_LEVEL"
DEFAULT_LOG_DIR = Path(__file__).resolve().parent / "logs"
GENERAL_LOG_FILENAME = "dupes.log"
GENERAL_TEXT_LOG_FILENAME = "dupes.txt"
API_LOG_FILENAME = "dupes.api.log"
API_TEXT_LOG_FILENAME = "dupes.api.txt"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 5
API_LOG_BACKUP_COUNT = 3

PRIMARY_ALGORITHM = "xxh64"
SECONDARY_ALGORITHM = "blake2b-256-keyed"
PRIMARY_DIGEST_SIZE = 8
SECONDARY_DIGEST_SIZE = 32
# Hardcoded so secondary digests stay comparable across runs and machines.
SECONDARY_KEY = bytes.fromhex(
    "E9ECA1531393D174DFEA70CC5BAA4FCE5FC599D08ECB36B9961489985A64D3AE"
)

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_TRAVERSAL = 2
EXIT_OUTPUT = 3
EXIT_INTERRUPTED = 130

STAGE_WALK = "walk"
STAGE_FINGERPRINT = "fingerprint"
STAGE_CONFIRMATION = "confirmation"


class DupesError(Exception):
    """Base class for every error the duplicate finder raises on purpose."""

    exit_code = 1


class UsageError(DupesError):
    exit_code = EXIT_USAGE


class TraversalError(DupesError):
    """The scan root is missing, not a directory, or unreadable."""

    exit_code = EXIT_TRAVERSAL

    def __init__(self, path: Union[str, Path], message: str) -> None:
        super().__init__(f"{message}: {path}")
        self.path = str(path)


class FileReadError(DupesError):
    """
    A single file could not be read.

    Recoverable: the scan skips the file and keeps going. The underlying
    `OSError` is kept on `cause` (and chained as `__cause__`).
    """

    def __init__(self, path: Union[str, Path], cause: OSError) -> None:
        super().__init__(f"Cannot read {path}: {cause}")
        self.path = str(path)
        self.cause = cause


class OutputError(DupesError):
    exit_code = EXIT_OUTPUT


def _iso_utc(timestamp: float) -> str:
    """Return ISO-8601 UTC timestamp with Z suffix."""
    dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


class NDJSONFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload = getattr(record, "log_payload", {}).copy()
        payload.setdefault("timestamp", _iso_utc(record.created))
        payload.setdefault("level", record.levelname)
        if not payload.get("message"):
            payload["message"] = record.getMessage()
        payload.setdefault("event", payload["message"])
        return json.dumps(payload, ensure_ascii=False, default=str)


class PlainTextFormatter(logging.Formatter):
    """Render log records as human-readable text."""

    def format(self, record: logging.LogRecord) -> str:
        payload = getattr(record, "log_payload", {}).copy()
        message = payload.get("message") or record.getMessage()
        event = payload.get("event") or message
        extras = {k: v for k, v in payload.items() if k not in {"event", "message"}}
        extra_str = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        base = f"{_iso_utc(record.created)} [{record.levelname}] {event}: {message}"
        return f"{base} | {extra_str}" if extra_str else base


class _ComponentFilter(logging.Filter):
    def __init__(self, *, component: str) -> None:
        super().__init__()
        self._component = component

    def filter(self, record: logging.LogRecord) -> bool:
        payload = getattr(record, "log_payload", {})
        return payload.get("component") == self._component


def _resolve_log_dir() -> Path:
    override = os.getenv(LOG_DIR_ENV)
    candidates = [Path(override).expanduser()] if override else []
    candidates += [DEFAULT_LOG_DIR, Path(tempfile.gettempdir()) / "dupes-logs"]
    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
        except OSError:
            continue
        return candidate
    raise OSError("No writable log directory available")


def _console_log_level() -> int:
    name = os.getenv(CONSOLE_LOG_LEVEL_ENV, "WARNING").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.WARNING


def _rotating_handler(
    path: Path,
    formatter: logging.Formatter,
    backup_count: int,
    component: Optional[str] = None,
) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=LOG_MAX_BYTES,
        backupCount=backup_count,
        encoding="utf-8",
        errors="backslashreplace",
        delay=True,
    )
    handler.setFormatter(formatter)
    if component:
        handler.addFilter(_ComponentFilter(component=component))
    return handler


def setup_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """
    Return the shared `dupes` logger, attaching handlers on first use.

    Records go to stderr as plain text (level from `DUPES_CONSOLE_LOG_LEVEL`)
    and to rotating NDJSON and text files under `DUPES_LOG_DIR`. Records
    whose payload has `component == "api"` are also copied to the API files.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return logger

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(_console_log_level())
    stream_handler.setFormatter(PlainTextFormatter())
    logger.addHandler(stream_handler)

    log_dir = _resolve_log_dir()
    logger.addHandler(_rotating_handler(log_dir / GENERAL_LOG_FILENAME, NDJSONFormatter(), LOG_BACKUP_COUNT))
    logger.addHandler(_rotating_handler(log_dir / GENERAL_TEXT_LOG_FILENAME, PlainTextFormatter(), LOG_BACKUP_COUNT))
    logger.addHandler(
        _rotating_handler(log_dir / API_LOG_FILENAME, NDJSONFormatter(), API_LOG_BACKUP_COUNT, component="api")
    )
    logger.addHandler(
        _rotating_handler(log_dir / API_TEXT_LOG_FILENAME, PlainTextFormatter(), API_LOG_BACKUP_COUNT, component="api")
    )
    return logger


# Fingerprinters

Fingerprinter = Callable[[str], bytes]


def compute_primary_digest(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> bytes:
    """Fast, non-cryptographic 64-bit digest of everything left in `stream`."""
    hasher = xxhash.xxh64()
    while chunk := stream.read(chunk_size):
        hasher.update(chunk)
    return hasher.digest()


def compute_secondary_digest(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> bytes:
    """Keyed BLAKE2b-256 digest of everything left in `stream`."""
    hasher = hashlib.blake2b(key=SECONDARY_KEY, digest_size=SECONDARY_DIGEST_SIZE)
    while chunk := stream.read(chunk_size):
        hasher.update(chunk)
    return hasher.digest()


def _fingerprint_file(
    path: Union[str, Path],
    compute: Callable[[BinaryIO, int], bytes],
    chunk_size: int,
) -> bytes:
    try:
        with open(path, "rb") as handle:
            return compute(handle, chunk_size)
    except OSError as exc:
        raise FileReadError(path, exc) from exc


def primary_fingerprint(path: Union[str, Path], chunk_size: int = CHUNK_SIZE) -> bytes:
    return _fingerprint_file(path, compute_primary_digest, chunk_size)


def secondary_fingerprint(path: Union[str, Path], chunk_size: int = CHUNK_SIZE) -> bytes:
    return _fingerprint_file(path, compute_secondary_digest, chunk_size)


# Data model

@dataclass(frozen=True)
class FileRecord:
    """A discovered file. `size` is optional and only used to rule out matches early."""

    path: str
    size: Optional[int] = None


class Classification(str, Enum):
    FIRST_OCCURRENCE = "first_occurrence"
    CONFIRMED_DUPLICATE = "confirmed_duplicate"
    UNCONFIRMED_CANDIDATE = "unconfirmed_candidate"
    SKIPPED = "skipped"


class BucketState(Enum):
    FIRST_OCCURRENCE = "first_occurrence"
    COLLIDED = "collided"


@dataclass
class _Bucket:
    first: FileRecord
    state: BucketState = BucketState.FIRST_OCCURRENCE


class DuplicateGroup(BaseModel):
    """Paths sharing both digests, keyed by the composite digest in hex."""

    hash: str
    files: List[str]


class SkippedFile(BaseModel):
    path: str
    stage: str
    error: str


class ScanResult(BaseModel):
    scan_id: str
    root_dir: str
    groups: List[DuplicateGroup]
    files_processed: int
    skipped: List[SkippedFile] = []
    interrupted: bool = False
    duration_ms: int = 0

    @property
    def duplicate_count(self) -> int:
        """Files beyond the first in every group."""
        return sum(len(group.files) - 1 for group in self.groups)


ReadErrorHandler = Callable[[FileReadError, str], None]


class DuplicateIndex:
    """
    Two-stage duplicate index.

    Each file gets its primary digest computed once by `observe`. A file whose
    primary digest has not been seen before only lands in the primary bucket
    map. When a later file hits the same bucket, the secondary digest is
    computed for the bucket's first file (once, then cached) and for the new
    file, and both are placed into groups keyed by
    `primary digest + secondary digest`. Only groups with two or more members
    are duplicates.

    Attributes:
        primary_calls:
          `Counter` of primary fingerprinter invocations per path.
        secondary_calls:
          `Counter` of secondary fingerprinter invocations per path.
        skipped:
          `FileReadError`s for files that could not be fingerprinted.
        confirmation_failures:
          `FileReadError`s raised while re-reading an earlier file to confirm
          a collision.
    """

    def __init__(
        self,
        primary: Fingerprinter = primary_fingerprint,
        secondary: Fingerprinter = secondary_fingerprint,
        *,
        on_error: Optional[ReadErrorHandler] = None,
    ) -> None:
        self._primary = primary
        self._secondary = secondary
        self._on_error = on_error
        self._buckets: Dict[bytes, _Bucket] = {}
        self._groups: Dict[bytes, List[str]] = {}
        # None marks a path whose secondary digest could not be computed.
        self._secondary_cache: Dict[str, Optional[bytes]] = {}
        self._classified: Dict[str, Classification] = {}
        self.primary_calls: Counter = Counter()
        self.secondary_calls: Counter = Counter()
        self.skipped: List[FileReadError] = []
        self.confirmation_failures: List[FileReadError] = []

    def observe(self, path: Union[str, Path], size: Optional[int] = None) -> Classification:
        """
        Fingerprint and classify one file.

        Observing a path a second time does no work and returns the
        classification it received the first time.
        """
        record = FileRecord(str(path), size)
        previous = self._classified.get(record.path)
        if previous is not None:
            return previous

        classification = self._classify(record)
        self._classified[record.path] = classification
        return classification

    def _classify(self, record: FileRecord) -> Classification:
        self.primary_calls[record.path] += 1
        try:
            primary = self._primary(record.path)
        except FileReadError as exc:
            self._report(exc, STAGE_FINGERPRINT)
            return Classification.SKIPPED

        bucket = self._buckets.get(primary)
        if bucket is None:
            self._buckets[primary] = _Bucket(first=record)
            return Classification.FIRST_OCCURRENCE

        bucket.state = BucketState.COLLIDED
        first = bucket.first
        if not _sizes_differ(first, record):
            first_secondary = self._cached_secondary(first.path, STAGE_CONFIRMATION)
            if first_secondary is not None:
                self._groups.setdefault(primary + first_secondary, [first.path])

        secondary = self._cached_secondary(record.path, STAGE_FINGERPRINT)
        if secondary is None:
            return Classification.SKIPPED

        members = self._groups.setdefault(primary + secondary, [])
        if record.path not in members:
            members.append(record.path)
        if len(members) > 1:
            return Classification.CONFIRMED_DUPLICATE
        return Classification.UNCONFIRMED_CANDIDATE

    def _cached_secondary(self, path: str, stage: str) -> Optional[bytes]:
        if path in self._secondary_cache:
            return self._secondary_cache[path]

        self.secondary_calls[path] += 1
        try:
            digest: Optional[bytes] = self._secondary(path)
        except FileReadError as exc:
            digest = None
            self._report(exc, stage)
        self._secondary_cache[path] = digest
        return digest

    def _report(self, exc: FileReadError, stage: str) -> None:
        if stage == STAGE_CONFIRMATION:
            self.confirmation_failures.append(exc)
        else:
            self.skipped.append(exc)
        if self._on_error is not None:
            self._on_error(exc, stage)

    def classification_of(self, path: Union[str, Path]) -> Optional[Classification]:
        return self._classified.get(str(path))

    def bucket_state(self, primary: bytes) -> Optional[BucketState]:
        bucket = self._buckets.get(primary)
        return bucket.state if bucket else None

    @property
    def collided_buckets(self) -> int:
        return sum(1 for bucket in self._buckets.values() if bucket.state is BucketState.COLLIDED)

    def candidates(self) -> Dict[str, List[str]]:
        """Every composite group, including single-member ones, keyed by hex."""
        return {key.hex(): list(paths) for key, paths in self._groups.items()}

    def groups(self) -> List[DuplicateGroup]:
        """Groups with at least two members, in the order they were created."""
        return [
            DuplicateGroup(hash=key.hex(), files=list(paths))
            for key, paths in self._groups.items()
            if len(paths) > 1
        ]


def _sizes_differ(first: FileRecord, second: FileRecord) -> bool:
    if first.size is None or second.size is None:
        return False
    return first.size != second.size


# Walker

WalkEntry = Tuple[Path, Optional[OSError]]


def walk_files(root: Union[str, Path]) -> Iterator[WalkEntry]:
    """
    Enumerate every regular file under `root`.

    Yields `(path, None)` for each regular file and `(path, error)` for a
    subdirectory or entry that could not be read. Symlinks are not followed
    and are not reported. Within a directory, entries are visited by name.

    Raises:
        TraversalError:
          `root` doesn't exist, isn't a directory, or can't be listed. Raised
          by this call, before any path is yielded.
    """
    root_path = Path(root)
    if not root_path.exists():
        raise TraversalError(root_path, "Directory not found")
    if not root_path.is_dir():
        raise TraversalError(root_path, "Path is not a directory")
    try:
        with os.scandir(root_path) as it:
            top_entries = sorted(it, key=lambda entry: entry.name)
    except OSError as exc:
        raise TraversalError(root_path, f"Cannot read directory ({exc.strerror})") from exc
    return _walk(top_entries)


def _walk(top_entries: List[os.DirEntry]) -> Iterator[WalkEntry]:
    pending: List[List[os.DirEntry]] = [top_entries]
    while pending:
        subdirs: List[Path] = []
        for entry in pending.pop():
            path = Path(entry.path)
            try:
                if entry.is_symlink():
                    continue
                if entry.is_dir():
                    subdirs.append(path)
                elif entry.is_file():
                    yield path, None
            except OSError as exc:
                yield path, exc

        listed: List[List[os.DirEntry]] = []
        for subdir in subdirs:
            try:
                with os.scandir(subdir) as it:
                    listed.append(sorted(it, key=lambda entry: entry.name))
            except OSError as exc:
                yield subdir, exc
        pending.extend(reversed(listed))


def _file_size(path: Path) -> Optional[int]:
    try:
        return path.stat().st_size
    except OSError:
        # The primary fingerprint read reports the failure.
        return None


class DupeScanner:
    """Scan a directory tree and group files with identical content."""

    def __init__(
        self,
        chunk_size: int = CHUNK_SIZE,
        *,
        primary: Optional[Fingerprinter] = None,
        secondary: Optional[Fingerprinter] = None,
        progress_interval: float = PROGRESS_INTERVAL_SECONDS,
        environment: Optional[str] = None,
        version: str = MODULE_VERSION,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be a positive number of bytes")

        self.chunk_size = chunk_size
        self.progress_interval = progress_interval
        self.env = (environment or os.getenv(ENV_VAR, DEFAULT_ENV)).lower()
        self.version = version
        self.component = "library"
        self._primary = primary or functools.partial(primary_fingerprint, chunk_size=chunk_size)
        self._secondary = secondary or functools.partial(secondary_fingerprint, chunk_size=chunk_size)
        self._last_scan_context: Optional[Dict[str, Any]] = None
        self.logger = logger or setup_logger()

    def _build_log_context(
        self,
        scan_id: str,
        root_dir: Path,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "scan_id": scan_id,
            "component": self.component,
            "version": self.version,
            "env": self.env,
            "root_dir": str(root_dir),
            "primary_hash": PRIMARY_ALGORITHM,
            "secondary_hash": SECONDARY_ALGORITHM,
            "chunk_size": self.chunk_size,
        }
        if extra:
            payload.update(extra)
        return payload

    def _log_event(
        self,
        event: str,
        level: int,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        **fields: Any,
    ) -> None:
        payload: Dict[str, Any] = {"event": event, "message": message}
        if context:
            payload.update(context)
        else:
            payload.setdefault("component", self.component)
            payload.setdefault("version", self.version)
            payload.setdefault("env", self.env)
        payload.update(fields)
        self.logger.log(level, message, extra={"log_payload": payload})

    def _resolve_context(self, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if context:
            return dict(context)
        if self._last_scan_context:
            return dict(self._last_scan_context)
        return self._build_log_context("unknown-scan", Path(""))

    @staticmethod
    def _duration_ms(start_time: float) -> int:
        return max(0, int((time.perf_counter() - start_time) * 1000))

    def scan_context(self, result: ScanResult) -> Dict[str, Any]:
        """Log context of the scan that produced `result`, for follow-up events."""
        return self._build_log_context(result.scan_id, Path(result.root_dir).resolve())

    def scan(
        self,
        directory: Union[str, Path],
        *,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[Callable[[int], None]] = None,
    ) -> ScanResult:
        """
        Walk `directory` and group every regular file by content.

        Unreadable files and subdirectories are skipped, logged and listed in
        `ScanResult.skipped`. Setting `cancel_event`, or a KeyboardInterrupt,
        stops the walk early; whatever was grouped so far is still returned,
        flagged as `interrupted`.

        Raises:
            TraversalError:
              The root directory itself can't be walked.
        """
        dir_path = Path(directory)
        scan_id = str(uuid.uuid4())
        context = self._build_log_context(scan_id, dir_path.resolve())
        self._last_scan_context = dict(context)

        try:
            entries = walk_files(dir_path)
        except TraversalError as exc:
            self._log_event(
                "scan_failed",
                logging.ERROR,
                "Scan failed",
                context,
                exception_type=exc.__class__.__name__,
                exception_msg=str(exc),
            )
            raise

        skipped: List[SkippedFile] = []

        def _on_read_error(exc: FileReadError, stage: str) -> None:
            skipped.append(SkippedFile(path=exc.path, stage=stage, error=str(exc.cause)))
            if stage == STAGE_CONFIRMATION:
                event, message = "confirmation_failed", "Could not re-read earlier file to confirm collision"
            else:
                event, message = "file_skipped_read_error", "Skipped unreadable file"
            self._log_event(
                event,
                logging.WARNING,
                message,
                context,
                file=exc.path,
                stage=stage,
                exception_type=exc.cause.__class__.__name__,
                exception_msg=str(exc.cause),
            )

        index = DuplicateIndex(self._primary, self._secondary, on_error=_on_read_error)
        files_processed = 0
        interrupted = False
        start = time.perf_counter()
        last_progress = time.monotonic()

        self._log_event("scan_started", logging.INFO, "Scan started", context)

        try:
            for path, error in entries:
                if cancel_event is not None and cancel_event.is_set():
                    interrupted = True
                    break

                if error is not None:
                    skipped.append(SkippedFile(path=str(path), stage=STAGE_WALK, error=str(error)))
                    self._log_event(
                        "directory_skipped_read_error",
                        logging.WARNING,
                        "Skipped unreadable directory entry",
                        context,
                        file=str(path),
                        exception_type=error.__class__.__name__,
                        exception_msg=str(error),
                    )
                    continue

                classification = index.observe(path, _file_size(path))
                files_processed += 1

                if classification is Classification.CONFIRMED_DUPLICATE and self.logger.isEnabledFor(logging.DEBUG):
                    self._log_event(
                        "duplicate_confirmed",
                        logging.DEBUG,
                        "Duplicate confirmed",
                        context,
                        file=str(path),
                    )

                now = time.monotonic()
                if now - last_progress >= self.progress_interval:
                    last_progress = now
                    self._log_event(
                        "directory_walk_progress",
                        logging.INFO,
                        "Directory walk progress",
                        context,
                        files_processed=files_processed,
                        duration_ms=self._duration_ms(start),
                    )
                    if progress_callback is not None:
                        progress_callback(files_processed)
        except KeyboardInterrupt:
            interrupted = True

        groups = index.groups()
        stats = self.get_duplicate_stats(groups)

        if interrupted:
            self._log_event(
                "scan_interrupted",
                logging.WARNING,
                "Scan interrupted, results are partial",
                context,
                files_processed=files_processed,
            )

        duration_ms = self._duration_ms(start)
        self._log_event(
            "scan_finished",
            logging.INFO,
            "Scan finished",
            context,
            files_processed=files_processed,
            files_skipped=len(skipped),
            collided_buckets=index.collided_buckets,
            secondary_hashes=sum(index.secondary_calls.values()),
            groups_found=stats["total_duplicate_groups"],
            total_duplicate_files=stats["total_duplicate_files"],
            wasted_size_bytes=stats["wasted_size_bytes"],
            duration_ms=duration_ms,
        )

        return ScanResult(
            scan_id=scan_id,
            root_dir=str(dir_path),
            groups=groups,
            files_processed=files_processed,
            skipped=skipped,
            interrupted=interrupted,
            duration_ms=duration_ms,
        )

    def export_results(
        self,
        groups: Sequence[DuplicateGroup],
        output_file: Union[str, Path],
        *,
        scan_context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Write groups with two or more members as a JSON array of
        `{"hash": ..., "files": [...]}` objects.

        Raises:
            OutputError:
              The report couldn't be serialized or written. `groups` is left
              untouched.
        """
        output_path = Path(output_file)
        start = time.perf_counter()
        context = self._resolve_context(scan_context)

        try:
            export_data = [group.model_dump() for group in groups if len(group.files) > 1]
            output_path.write_text(
                json.dumps(export_data, indent=2),
                encoding="utf-8",
            )
            bytes_written = output_path.stat().st_size
        except (OSError, TypeError, ValueError) as exc:
            self._log_event(
                "export_failed",
                logging.ERROR,
                "Export failed",
                context,
                output_file=str(output_path),
                exception_type=exc.__class__.__name__,
                exception_msg=str(exc),
            )
            raise OutputError(f"Cannot write JSON report to {output_path}: {exc}") from exc

        self._log_event(
            "export_completed",
            logging.INFO,
            "Export completed",
            context,
            output_file=str(output_path),
            groups_written=len(export_data),
            bytes_written=bytes_written,
            duration_ms=self._duration_ms(start),
        )

    @staticmethod
    def get_duplicate_stats(groups: Sequence[DuplicateGroup]) -> Dict[str, Any]:
        total_files = sum(len(group.files) for group in groups)
        total_groups = len(groups)
        wasted_files = total_files - total_groups if total_groups > 0 else 0

        total_size = 0
        wasted_size = 0

        for group in groups:
            if not group.files:
                continue
            try:
                file_size = Path(group.files[0]).stat().st_size
            except OSError:
                continue
            total_size += file_size * len(group.files)
            wasted_size += file_size * (len(group.files) - 1)

        return {
            "total_duplicate_groups": total_groups,
            "total_duplicate_files": total_files,
            "wasted_files": wasted_files,
            "total_size_bytes": total_size,
            "wasted_size_bytes": wasted_size,
            "wasted_size_mb": round(wasted_size / (1024 * 1024), 2),
            "wasted_size_gb": round(wasted_size / (1024 * 1024 * 1024), 2),
        }


# Console reporting and CLI

def _display(text: str) -> str:
    """Markup-escape `text`, showing undecodable file name bytes as `\\xNN`."""
    text = text.encode("utf-8", "surrogateescape").decode("utf-8", "backslashreplace")
    return escape(text)


def _default_console() -> Console:
    return Console(highlight=False, soft_wrap=True, emoji=False)


def print_report(result: ScanResult, console: Optional[Console] = None) -> None:
    """Print duplicate groups, then any skipped paths, to the console."""
    console = console or _default_console()

    if result.groups:
        console.print(f"[red]{result.duplicate_count} Files with duplicates found:[/red]")
        for group in result.groups:
            console.print(f"[blue]Hash: {group.hash}[/blue]")
            for position, path in enumerate(group.files, start=1):
                console.print(f"\t[red]{position}[/red] [yellow]{_display(path)}[/yellow]")
            console.print()
    else:
        console.print("[green]No duplicate files exist in the specified directory.[/green]")

    if result.skipped:
        console.print(f"[yellow]Skipped {len(result.skipped)} unreadable path(s):[/yellow]")
        for item in result.skipped:
            console.print(f"\t{_display(item.path)} ({item.stage}: {_display(item.error)})")

    if result.interrupted:
        console.print("[bold red]Scan interrupted, results are partial.[/bold red]")


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="dupes",
        description="Recursively search a directory for files with identical content.",
    )
    parser.add_argument(
        "-j",
        "--json",
        dest="json_file",
        metavar="PATH",
        help="also write the duplicate groups as JSON to PATH",
    )
    parser.add_argument(
        "directory",
        help="directory that will be recursively searched for duplicate files",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None, *, console: Optional[Console] = None) -> int:
    console = console or _default_console()
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except UsageError as exc:
        console.print(f"[red]Error: {_display(str(exc))}[/red]")
        console.print(escape(parser.format_usage()), end="")
        return exc.exit_code

    scanner = DupeScanner()

    def _progress(files_processed: int) -> None:
        console.print(f"Files processed: {files_processed}")

    try:
        result = scanner.scan(args.directory, progress_callback=_progress)
    except TraversalError as exc:
        console.print(f"[red]Error: {_display(str(exc))}. Please ensure the directory exists and is readable.[/red]")
        return exc.exit_code

    print_report(result, console)

    if args.json_file:
        try:
            scanner.export_results(result.groups, args.json_file)
        except OutputError as exc:
            console.print(
                f"[red]Error writing JSON file, please check permissions and that the directory exists. "
                f"({_display(str(exc))})[/red]"
            )
            return exc.exit_code

    return EXIT_INTERRUPTED if result.interrupted else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
