"""
MobSF client module for MobDash.

Provides thin wrapper functions around the MobSF REST API using `requests`.
Every function takes the config mapping explicitly so it can be called from
scheduler threads that have no Flask application context.
"""

import io
import json
import logging
import os
from typing import Any, Callable, Dict, List, Optional

import requests
from requests import Response
from requests.exceptions import RequestException
from urllib3.fields import RequestField
from urllib3.filepost import choose_boundary

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class MobsfClientError(RuntimeError):
    """Transport or API-level failure talking to the scanning service."""

    def __init__(self, message: str, detail: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.detail = detail
        self.status_code = status_code

    def user_message(self) -> str:
        """Server-provided detail when there is one, else the generic message."""
        return self.detail or str(self)


class _ProgressBody:
    """
    Streaming multipart/form-data body for a single file field.

    The part headers and closing boundary are small byte strings; the file
    itself is read from ``stream`` in whatever block size http.client asks
    for, so the package is never copied into memory. Each read() reports
    the percentage sent so far.
    """

    def __init__(self, stream: Any, filename: str, callback: Optional[ProgressCallback], field: str = "file"):
        self.boundary = choose_boundary()
        part = RequestField(name=field, data=b"", filename=filename)
        part.make_multipart(content_type="application/octet-stream")
        head = f"--{self.boundary}\r\n".encode("latin-1") + part.render_headers().encode("utf-8")
        tail = f"\r\n--{self.boundary}--\r\n".encode("latin-1")

        # stream must be seekable; Werkzeug spools uploads to a temp file
        start = stream.tell()
        stream.seek(0, os.SEEK_END)
        self.file_size = stream.tell() - start
        stream.seek(start)

        self._parts = [io.BytesIO(head), stream, io.BytesIO(tail)]
        self._total = len(head) + self.file_size + len(tail)
        self._sent = 0
        self._callback = callback
        self._last = -1

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    def __len__(self) -> int:
        return self._total

    def read(self, size: int = -1) -> bytes:
        chunks: List[bytes] = []
        wanted = self._total - self._sent if size is None or size < 0 else size
        while wanted > 0 and self._parts:
            chunk = self._parts[0].read(wanted)
            if not chunk:
                self._parts.pop(0)
                continue
            chunks.append(chunk)
            wanted -= len(chunk)

        data = b"".join(chunks)
        self._sent += len(data)
        if self._callback is not None and self._total:
            percent = min(100, int(self._sent * 100 / self._total))
            if percent > self._last:
                self._last = percent
                self._callback(percent)
        return data


def _get_base_url(config: Dict[str, Any]) -> str:
    base_url = config.get("MOBSF_API_URL")
    if not base_url:
        raise MobsfClientError("MOBSF_API_URL is not configured")
    return base_url.rstrip("/")  # ensure no trailing slash


def _headers(config: Dict[str, Any]) -> Dict[str, str]:
    api_key = config.get("MOBSF_API_KEY")
    if not api_key:
        raise MobsfClientError("MOBSF_API_KEY is not configured")
    return {"Authorization": api_key, "X-Mobsf-Api-Key": api_key}


def _timeout(config: Dict[str, Any], key: str = "MOBSF_REQUEST_TIMEOUT") -> float:
    return float(config.get(key) or 30)


def extract_error_detail(resp: Response) -> Optional[str]:
    """
    Best-effort extraction of the service's error description.

    MobSF answers with {"error": "..."} or {"error": {"report": "..."}};
    anything else falls back to the raw body text.
    """
    try:
        body = resp.json()
    except ValueError:
        text = (resp.text or "").strip()
        return text[:500] or None

    if isinstance(body, dict):
        error = body.get("error") or body.get("message") or body.get("detail")
        if isinstance(error, dict):
            error = error.get("report") or error
        if error:
            return error if isinstance(error, str) else json.dumps(error)
        return json.dumps(body)
    return json.dumps(body)


def _raise_for_status(resp: Response) -> None:
    try:
        resp.raise_for_status()
    except RequestException as exc:
        detail = extract_error_detail(resp)
        logger.error("MobSF API HTTP error: %s (%s)", exc, detail)
        raise MobsfClientError(
            f"MobSF API HTTP error: {exc}", detail=detail, status_code=resp.status_code
        ) from exc


def _handle_response(resp: Response) -> Any:
    """
    Handle a MobSF HTTP response.

    Raises MobsfClientError on non-2xx status or JSON parsing issues.
    """
    _raise_for_status(resp)

    try:
        data = resp.json()
    except ValueError as exc:
        logger.error("MobSF API response is not valid JSON: %s", exc)
        raise MobsfClientError("MobSF API response is not valid JSON") from exc

    return data


def _post(path: str, config: Dict[str, Any], action: str, timeout_key: str = "MOBSF_REQUEST_TIMEOUT", **kwargs) -> Response:
    url = f"{_get_base_url(config)}{path}"
    headers = dict(_headers(config))
    headers.update(kwargs.pop("headers", {}))
    try:
        return requests.post(url, headers=headers, timeout=_timeout(config, timeout_key), **kwargs)
    except RequestException as exc:
        logger.error("Failed to %s: %s", action, exc)
        raise MobsfClientError(f"Failed to {action}: {exc}") from exc


def upload_file(
    stream: Any,
    filename: str,
    config: Dict[str, Any],
    progress: Optional[ProgressCallback] = None,
) -> Dict[str, Any]:
    """
    Upload an application package.

    Uses the MobSF endpoint:
    /api/v1/upload

    :param stream: Seekable binary file object to upload; it is streamed, not buffered.
    :param filename: Original file name; the service keys the scan type on its extension.
    :param config: Config mapping containing MOBSF_API_URL and MOBSF_API_KEY.
    :param progress: Called with an increasing percentage 0-100 while the body is sent.
    :return: The upload response, normally {"file_name", "hash", "scan_type"}.
    :raises MobsfClientError: on HTTP or API-level errors.
    """
    body = _ProgressBody(stream, filename, progress)

    logger.info("Uploading %s (%d bytes) to MobSF", filename, body.file_size)

    resp = _post(
        "/api/v1/upload",
        config,
        "upload file to MobSF",
        data=body,
        headers={"Content-Type": body.content_type},
    )
    data = _handle_response(resp)
    if not isinstance(data, dict):
        raise MobsfClientError("MobSF upload response malformed; expected an object")

    if progress is not None:
        progress(100)
    return data


def trigger_scan(file_hash: str, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Ask the service to analyse an uploaded package.

    Uses the MobSF endpoint:
    /api/v1/scan

    The service may keep this request open until the analysis ends, hence
    the separate MOBSF_SCAN_TIMEOUT.
    """
    logger.info("Triggering MobSF scan for hash %s", file_hash)
    resp = _post(
        "/api/v1/scan",
        config,
        "trigger MobSF scan",
        timeout_key="MOBSF_SCAN_TIMEOUT",
        data={"hash": file_hash},
    )
    return _handle_response(resp)


def get_scan_logs(file_hash: str, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fetch the live scan log for a hash.

    Uses the MobSF endpoint:
    /api/v1/scan_logs

    :return: {"logs": [{"timestamp", "status", "exception"}, ...]}
    """
    logger.debug("Fetching MobSF scan logs for hash %s", file_hash)
    resp = _post("/api/v1/scan_logs", config, "fetch MobSF scan logs", data={"hash": file_hash})
    data = _handle_response(resp)

    logs = data.get("logs", []) if isinstance(data, dict) else None
    if not isinstance(logs, list):
        logger.error("MobSF logs response malformed. 'logs' is not a list: %s", data)
        raise MobsfClientError("MobSF logs response malformed; 'logs' is not a list")
    return {"logs": logs}


def get_report_json(file_hash: str, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fetch the JSON report for a completed scan.

    Uses the MobSF endpoint:
    /api/v1/report_json
    """
    logger.info("Fetching MobSF JSON report for hash %s", file_hash)
    resp = _post("/api/v1/report_json", config, "fetch MobSF JSON report", data={"hash": file_hash})
    return _handle_response(resp)


def saved_report_path(file_hash: str, config: Dict[str, Any]) -> str:
    reports_dir = config.get("REPORTS_DIR")
    if not reports_dir:
        raise MobsfClientError("REPORTS_DIR is not configured")
    safe_name = "".join(ch for ch in file_hash if ch.isalnum())
    if not safe_name:
        raise MobsfClientError(f"Invalid file hash: {file_hash!r}")
    return os.path.join(reports_dir, f"{safe_name}.json")


def save_report_json(file_hash: str, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Read the stored scan result through the scan endpoint and keep a copy.

    Uses the MobSF endpoint:
    /api/v1/scan (re_scan=0 returns the stored result without re-analysing)

    :return: {"path": public path of the saved copy, "data": report}
    """
    logger.info("Saving MobSF JSON report for hash %s", file_hash)
    resp = _post(
        "/api/v1/scan",
        config,
        "save MobSF JSON report",
        timeout_key="MOBSF_SCAN_TIMEOUT",
        data={"hash": file_hash, "re_scan": 0},
    )
    data = _handle_response(resp)

    target = saved_report_path(file_hash, config)
    try:
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "w", encoding="utf-8") as fh:
            json.dump(data, fh)
    except OSError as exc:
        logger.error("Failed to write report copy %s: %s", target, exc)
        raise MobsfClientError(f"Failed to write report copy: {exc}") from exc

    return {"path": f"/reports/json/{file_hash}", "data": data}


def load_saved_report(file_hash: str, config: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the saved copy for a hash, or None when there is none."""
    target = saved_report_path(file_hash, config)
    if not os.path.exists(target):
        return None
    try:
        with open(target, encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, ValueError) as exc:
        logger.error("Failed to read report copy %s: %s", target, exc)
        raise MobsfClientError(f"Failed to read report copy: {exc}") from exc


def download_pdf(file_hash: str, config: Dict[str, Any]) -> bytes:
    """
    Fetch the PDF rendering of a report.

    Uses the MobSF endpoint:
    /api/v1/download_pdf
    """
    logger.info("Fetching MobSF PDF report for hash %s", file_hash)
    resp = _post(
        "/api/v1/download_pdf",
        config,
        "fetch MobSF PDF report",
        timeout_key="MOBSF_SCAN_TIMEOUT",
        data={"hash": file_hash},
    )
    _raise_for_status(resp)
    return resp.content


def list_recent_scans(config: Dict[str, Any], page: int = 1, page_size: int = 10) -> List[Dict[str, Any]]:
    """
    List previously uploaded scans.

    Uses the MobSF endpoint:
    /api/v1/scans
    """
    url = f"{_get_base_url(config)}/api/v1/scans"
    params = {"page": page, "page_size": page_size}

    try:
        resp = requests.get(url, headers=_headers(config), params=params, timeout=_timeout(config))
    except RequestException as exc:
        logger.error("Failed to list MobSF scans: %s", exc)
        raise MobsfClientError(f"Failed to list MobSF scans: {exc}") from exc

    data = _handle_response(resp)
    scans = data.get("content", []) if isinstance(data, dict) else data
    if not isinstance(scans, list):
        logger.error("MobSF scans response malformed: %s", data)
        raise MobsfClientError("MobSF scans response malformed; 'content' is not a list")
    return scans
