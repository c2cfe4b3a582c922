"""FastAPI backend that exposes the dupes scanner with NDJSON logging."""
from __future__ import annotations

import hashlib
import json
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel

from dupes import (
    LOGGER_NAME,
    DupeScanner,
    DuplicateGroup,
    OutputError,
    ScanResult,
    SkippedFile,
    TraversalError,
)

API_VERSION = "1.0.0"
API_ENV = os.getenv("DUPES_ENV", "dev")
API_COMPONENT = "api"

app = FastAPI(
    title="Dupes API",
    description="REST API that finds files with identical content using two-stage fingerprinting.",
    version=API_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_scanner = DupeScanner()
_api_logger = logging.getLogger(LOGGER_NAME)

EXPORT_DIR = Path(os.getenv("DUPES_EXPORT_DIR", Path(__file__).resolve().parent / "exports"))


def _hash_payload(payload: Dict[str, Any]) -> str:
    try:
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    except TypeError:
        encoded = repr(payload)
    return hashlib.md5(encoded.encode("utf-8")).hexdigest()[:12]


def _log_api_event(event: str, message: str, *, level: int = logging.INFO, **fields: Any) -> None:
    log_payload = {
        "event": event,
        "message": message,
        "component": API_COMPONENT,
        "version": API_VERSION,
        "env": API_ENV,
    }
    log_payload.update(fields)
    _api_logger.log(level, message, extra={"log_payload": log_payload})


def _request_fields(request: Request) -> Dict[str, Any]:
    return {
        "request_id": request.headers.get("x-request-id") or str(uuid.uuid4()),
        "route": str(request.url.path),
        "method": request.method,
    }


def _fail(fields: Dict[str, Any], start: float, status_code: int, detail: str, message: str) -> HTTPException:
    _log_api_event(
        "api_response",
        message,
        level=logging.ERROR,
        status_code=status_code,
        duration_ms=int((time.perf_counter() - start) * 1000),
        exception_type="HTTPException",
        exception_msg=detail,
        **fields,
    )
    return HTTPException(status_code=status_code, detail=detail)


class ScanRequest(BaseModel):
    path: str


class ScanRecord(BaseModel):
    timestamp: str
    scan_path: str
    result: ScanResult
    stats: Dict[str, Any]
    context: Dict[str, Any]


class ScanResponse(BaseModel):
    scan_id: str
    timestamp: str
    scan_path: str
    files_processed: int
    interrupted: bool
    groups: List[DuplicateGroup]
    skipped: List[SkippedFile]
    stats: Dict[str, Any]


_last_scan: Optional[ScanRecord] = None


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/scan", response_model=ScanResponse)
def scan_files(payload: ScanRequest, request: Request) -> ScanResponse:
    fields = _request_fields(request)
    start = time.perf_counter()

    _log_api_event(
        "api_request",
        "Scan request received",
        client_ip=request.client.host if request.client else "unknown",
        params_hash=_hash_payload(payload.model_dump()),
        **fields,
    )

    scan_path = Path(payload.path).expanduser()
    if not scan_path.exists():
        raise _fail(fields, start, 404, f"Path not found: {scan_path}", "Scan request failed")
    if not scan_path.is_dir():
        raise _fail(fields, start, 400, "Path must be a directory", "Scan request failed")

    scan_path = scan_path.resolve()
    try:
        result = _scanner.scan(scan_path)
    except TraversalError as exc:
        raise _fail(fields, start, 403, str(exc), "Scan request failed") from exc

    stats = _scanner.get_duplicate_stats(result.groups)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")

    global _last_scan
    _last_scan = ScanRecord(
        timestamp=timestamp,
        scan_path=str(scan_path),
        result=result,
        stats=stats,
        context=_scanner.scan_context(result),
    )

    _log_api_event(
        "api_response",
        "Scan request completed",
        status_code=200,
        duration_ms=int((time.perf_counter() - start) * 1000),
        scan_id=result.scan_id,
        duplicate_groups=stats["total_duplicate_groups"],
        **fields,
    )

    return ScanResponse(
        scan_id=result.scan_id,
        timestamp=timestamp,
        scan_path=str(scan_path),
        files_processed=result.files_processed,
        interrupted=result.interrupted,
        groups=result.groups,
        skipped=result.skipped,
        stats=stats,
    )


@app.get("/stats")
def get_stats(request: Request) -> Dict[str, Any]:
    fields = _request_fields(request)
    start = time.perf_counter()
    _log_api_event("api_request", "Stats request received", **fields)

    if _last_scan is None:
        raise _fail(fields, start, 404, "No scan has been executed yet", "Stats request failed")

    payload = {
        "scan_id": _last_scan.result.scan_id,
        "timestamp": _last_scan.timestamp,
        "scan_path": _last_scan.scan_path,
        "files_processed": _last_scan.result.files_processed,
        "files_skipped": len(_last_scan.result.skipped),
        "duplicate_groups": len(_last_scan.result.groups),
        "stats": _last_scan.stats,
    }

    _log_api_event(
        "api_response",
        "Stats request completed",
        status_code=200,
        duration_ms=int((time.perf_counter() - start) * 1000),
        scan_id=_last_scan.result.scan_id,
        **fields,
    )
    return payload


@app.get("/export")
def export_results(request: Request) -> FileResponse:
    fields = _request_fields(request)
    start = time.perf_counter()
    _log_api_event("api_request", "Export request received", **fields)

    record = _last_scan
    if record is None:
        raise _fail(fields, start, 404, "No scan results available to export", "Export request failed")

    file_path = EXPORT_DIR / f"duplicates_{record.timestamp}.json"
    try:
        EXPORT_DIR.mkdir(parents=True, exist_ok=True)
        _scanner.export_results(record.result.groups, output_file=file_path, scan_context=record.context)
    except (OSError, OutputError) as exc:
        raise _fail(fields, start, 500, str(exc), "Export request failed") from exc

    _log_api_event(
        "api_response",
        "Export request completed",
        status_code=200,
        duration_ms=int((time.perf_counter() - start) * 1000),
        scan_id=record.result.scan_id,
        **fields,
    )
    return FileResponse(path=file_path, media_type="application/json", filename=file_path.name)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("backend.main:app", host="0.0.0.0", port=8000, reload=True)
