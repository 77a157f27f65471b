"""
Scan lifecycle controller for MobDash.

Drives upload -> trigger scan -> poll logs -> fetch report for the one
identity currently selected on the dashboard.

Work after the upload runs through a scheduler (``call_later(delay, fn)``
returning a handle with ``cancel()``). Every scheduled step captures the
session generation it was armed for; once the selected identity changes the
generation moves on and late steps or late responses are dropped. Polls are
chained, so at most one timer and one log fetch exist per session.
"""

import json
import logging
import os
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import mobsf_client
from mobsf_client import MobsfClientError
from models import LogEntry, NormalizedReport, ScanSession, ScanStatus
from normalizer import crucial_summary, first_hash, normalize

logger = logging.getLogger(__name__)


READY_KEYWORDS = (
    "generating report",
    "generating hashes",
    "generation complete",
    "completed",
    "finished",
    "saving to database",
    "saved to database",
    "saving results",
    "report generated",
)


class ScanInputError(ValueError):
    """No file or identity selected, or the file type is not accepted."""


class TimerScheduler:
    """Runs callbacks on daemon ``threading.Timer`` threads."""

    def call_later(self, delay: float, fn: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, fn)
        timer.daemon = True
        timer.start()
        return timer


def logs_indicate_ready(logs: List[Any]) -> bool:
    """Case-insensitive keyword search over the whole serialized log list."""
    joined = json.dumps(logs, default=str).lower()
    return any(keyword in joined for keyword in READY_KEYWORDS)


def _log_entry(item: Any) -> LogEntry:
    if isinstance(item, dict):
        return LogEntry(
            timestamp=str(item.get("timestamp") or ""),
            status=str(item.get("status") or json.dumps(item, default=str)),
            raw=item,
        )
    return LogEntry(timestamp="", status=str(item), raw=item)


class ScanController:
    """
    Owns the ScanSession and every transition of it.

    ``api`` is any object exposing the mobsf_client functions; the module
    itself is the default.
    """

    def __init__(self, config: Dict[str, Any], api: Any = None, scheduler: Any = None):
        self.config = config
        self.api = api if api is not None else mobsf_client
        self.scheduler = scheduler if scheduler is not None else TimerScheduler()
        self.poll_interval = float(config.get("POLL_INTERVAL_SECONDS") or 5)
        self.max_attempts = int(config.get("POLL_MAX_ATTEMPTS") or 0)

        self._lock = threading.RLock()
        self._generation = 0
        self._timer = None
        self.session = ScanSession()

    # ------------------------------------------------------------------
    # session bookkeeping
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self.session.to_dict()

    def loaded_report(self) -> Tuple[Optional[str], ScanStatus, Optional[NormalizedReport]]:
        """(hash, status, normalized report) read together under the lock."""
        with self._lock:
            return self.session.hash, self.session.status, self.session.normalized

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _release_document(self) -> None:
        if self.session.document is not None:
            logger.debug("Releasing PDF document for hash %s", self.session.hash)
            self.session.document = None

    def _new_session(self, file_hash: Optional[str] = None) -> int:
        """Cancel pending work, drop all session data and start a new generation."""
        with self._lock:
            self._cancel_timer()
            self._release_document()
            self._generation += 1
            self.session = ScanSession(hash=file_hash)
            return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _fail(self, generation: int, message: str) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
            self._cancel_timer()
            self.session.status = ScanStatus.ERROR
            self.session.last_message = message
            file_hash = self.session.hash
        logger.error("Scan session %s failed: %s", file_hash, message)

    def reset(self) -> Dict[str, Any]:
        self._new_session()
        return self.snapshot()

    def shutdown(self) -> None:
        """Stop polling and release held artifacts; the session stays readable."""
        with self._lock:
            self._cancel_timer()
            self._release_document()
            self._generation += 1

    # ------------------------------------------------------------------
    # upload path
    # ------------------------------------------------------------------

    def _check_file(self, stream: Any, filename: Optional[str]) -> None:
        if stream is None or not filename:
            raise ScanInputError("Choose an APK first.")
        allowed = tuple(self.config.get("ALLOWED_EXTENSIONS") or ())
        ext = os.path.splitext(filename)[1].lstrip(".").lower()
        if allowed and ext not in allowed:
            raise ScanInputError(
                f"Unsupported file type '.{ext}'. Allowed: {', '.join(allowed)}"
            )

    def start_upload(self, stream: Any, filename: Optional[str]) -> Dict[str, Any]:
        """
        idle -> uploading -> uploaded, then schedule the scan trigger.

        Raises ScanInputError when no usable file was given; only the
        session message changes then.
        """
        try:
            self._check_file(stream, filename)
        except ScanInputError as exc:
            with self._lock:
                self.session.last_message = str(exc)
            raise

        generation = self._new_session()
        with self._lock:
            self.session.status = ScanStatus.UPLOADING
            self.session.last_message = "Uploading..."

        def on_progress(percent: int) -> None:
            with self._lock:
                if self._is_current(generation) and percent > self.session.progress_percent:
                    self.session.progress_percent = min(100, percent)

        logger.info("Uploading %s", filename)
        try:
            response = self.api.upload_file(stream, filename, self.config, progress=on_progress)
        except MobsfClientError as exc:
            self._fail(generation, exc.user_message())
            return self.snapshot()

        file_hash = first_hash(response)
        if not file_hash:
            logger.warning("Upload response without a hash: %s", response)
            self._fail(generation, "Upload failed: the service did not return a file hash")
            return self.snapshot()

        with self._lock:
            if not self._is_current(generation):
                return self.session.to_dict()
            self.session.hash = file_hash
            self.session.status = ScanStatus.UPLOADED
            self.session.progress_percent = 100
            self.session.last_message = f"Uploaded, hash: {file_hash}"
            self._timer = self.scheduler.call_later(0, lambda: self._trigger(generation, file_hash))

        logger.info("Upload of %s finished with hash %s", filename, file_hash)
        return self.snapshot()

    def _trigger(self, generation: int, file_hash: str) -> None:
        """uploaded -> scanning, then arm the first poll."""
        with self._lock:
            if not self._is_current(generation):
                return
            self._timer = None
            self.session.status = ScanStatus.SCANNING
            self.session.last_message = "Triggering scan..."

        try:
            self.api.trigger_scan(file_hash, self.config)
        except MobsfClientError as exc:
            self._fail(generation, f"Scan trigger failed: {exc.user_message()}")
            return

        with self._lock:
            if not self._is_current(generation):
                return
            self.session.last_message = "Scan triggered, polling logs..."
            self._arm_poll(generation, file_hash)

    # ------------------------------------------------------------------
    # polling
    # ------------------------------------------------------------------

    def _arm_poll(self, generation: int, file_hash: str) -> None:
        self._cancel_timer()
        self._timer = self.scheduler.call_later(
            self.poll_interval, lambda: self._poll(generation, file_hash)
        )

    def _poll(self, generation: int, file_hash: str) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
            self._timer = None
            self.session.poll_attempts += 1
            attempt = self.session.poll_attempts

        logger.debug("Polling logs for %s (attempt %d)", file_hash, attempt)
        try:
            payload = self.api.get_scan_logs(file_hash, self.config)
        except MobsfClientError as exc:
            # the log endpoint 404s until the scan has produced output
            logger.debug("Log poll for %s failed: %s", file_hash, exc)
            with self._lock:
                if not self._is_current(generation):
                    return
                self.session.last_message = "Polling logs... (no logs yet)"
                self._continue_or_give_up(generation, file_hash, attempt)
            return

        logs = payload.get("logs") if isinstance(payload, dict) else None
        logs = logs if isinstance(logs, list) else []

        with self._lock:
            if not self._is_current(generation):
                return
            self.session.logs = [_log_entry(item) for item in logs]

            if not logs_indicate_ready(logs):
                self.session.status = ScanStatus.SCANNING
                if self.session.logs:
                    last = self.session.logs[-1]
                    if last.status:
                        self.session.last_message = last.label()
                self._continue_or_give_up(generation, file_hash, attempt)
                return

            self._cancel_timer()
            self.session.status = ScanStatus.READY
            self.session.last_message = "Scan completed, fetching JSON report..."

        logger.info("Scan for %s is ready after %d polls", file_hash, attempt)
        self._load_report(generation, file_hash)

    def _continue_or_give_up(self, generation: int, file_hash: str, attempt: int) -> None:
        if self.max_attempts and attempt >= self.max_attempts:
            self._fail(
                generation,
                f"Scan did not complete after {attempt} polls; select the scan again later",
            )
            return
        self._arm_poll(generation, file_hash)

    # ------------------------------------------------------------------
    # report
    # ------------------------------------------------------------------

    def _load_report(self, generation: int, file_hash: str) -> None:
        """Direct report fetch, falling back to save-then-read."""
        path = None
        try:
            raw = self.api.get_report_json(file_hash, self.config)
        except MobsfClientError as exc:
            logger.warning("Direct report fetch for %s failed (%s); trying save", file_hash, exc)
            try:
                saved = self.api.save_report_json(file_hash, self.config)
            except MobsfClientError as save_exc:
                self._fail(generation, f"JSON fetch failed: {save_exc.user_message()}")
                return
            raw = saved.get("data") or saved
            path = saved.get("path") or f"/reports/json/{file_hash}"

        normalized = normalize(raw)
        with self._lock:
            if not self._is_current(generation):
                return
            self.session.report = raw
            self.session.normalized = normalized
            self.session.report_path = path
            self.session.status = ScanStatus.READY
            self.session.last_message = f"Report saved: {path}" if path else "Report loaded"
        logger.info("Loaded report for %s with %d findings", file_hash, len(normalized.findings))

    def select(self, file_hash: Optional[str]) -> Dict[str, Any]:
        """
        Switch to a previously completed scan.

        Always resets the session first; no upload or scan is involved.
        """
        if not file_hash:
            with self._lock:
                self.session.last_message = "No hash selected"
            raise ScanInputError("No hash selected")

        generation = self._new_session(file_hash)
        with self._lock:
            self.session.last_message = "Loading JSON report..."
        self._load_report(generation, file_hash)
        return self.snapshot()

    def _require_hash(self) -> str:
        with self._lock:
            file_hash = self.session.hash
        if not file_hash:
            raise ScanInputError("No hash selected")
        return file_hash

    def fetch_summary(self, file_hash: Optional[str] = None) -> Dict[str, Any]:
        """
        Crucial-findings summary for the selected hash, or for any other hash.

        A hash other than the selected one is fetched on the side; the
        session and its pending poll are left alone.
        """
        with self._lock:
            selected = self.session.hash
            normalized = self.session.normalized
        if file_hash and file_hash != selected:
            normalized = None
        else:
            file_hash = self._require_hash()
        if normalized is None:
            normalized = normalize(self.api.get_report_json(file_hash, self.config))
        return crucial_summary(normalized)

    # ------------------------------------------------------------------
    # PDF document
    # ------------------------------------------------------------------

    def preview_document(self) -> bytes:
        """Fetch the PDF and keep it on the session until released."""
        file_hash = self._require_hash()
        with self._lock:
            generation = self._generation
        document = self.api.download_pdf(file_hash, self.config)
        with self._lock:
            if not self._is_current(generation):
                # superseded while downloading; never attach to the new session
                return document
            self._release_document()
            self.session.document = document
            self.session.last_message = "PDF preview loaded."
        return document

    def current_document(self) -> Optional[bytes]:
        with self._lock:
            return self.session.document

    def close_document(self) -> None:
        with self._lock:
            self._release_document()

    def download_document(self, file_hash: Optional[str] = None) -> bytes:
        """One-off PDF bytes for a download; nothing is kept."""
        file_hash = file_hash or self._require_hash()
        return self.api.download_pdf(file_hash, self.config)
