"""
Shared test fixtures and configuration.

Environment variables are set BEFORE any app imports so no test ever talks
to a real scanning service.
"""

import os
import sys
import tempfile
from unittest.mock import MagicMock

# Ensure the backend modules are importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

os.environ["MOBSF_API_URL"] = "http://mobsf.test"
os.environ["MOBSF_API_KEY"] = "test-api-key"
os.environ["REPORTS_DIR"] = os.path.join(tempfile.gettempdir(), "mobdash-test-reports")

import pytest  # noqa: E402

from config import Config  # noqa: E402
from mobsf_client import MobsfClientError  # noqa: E402
from scan_controller import ScanController  # noqa: E402


class ManualHandle:
    def __init__(self, scheduler, delay, fn):
        self.scheduler = scheduler
        self.delay = delay
        self.fn = fn
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Collects scheduled callbacks; tests run them one at a time."""

    def __init__(self):
        self.handles = []

    def call_later(self, delay, fn):
        handle = ManualHandle(self, delay, fn)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled and h.fn is not None]

    def run_next(self):
        handle = self.pending[0]
        fn, handle.fn = handle.fn, None
        fn()
        return handle


def make_api(file_hash="abc123"):
    api = MagicMock()
    api.upload_file.return_value = {"file_name": "app.apk", "hash": file_hash, "scan_type": "apk"}
    api.trigger_scan.return_value = {"status": "ok"}
    api.get_scan_logs.return_value = {"logs": [{"timestamp": "10:00:00", "status": "Unzipping"}]}
    api.get_report_json.return_value = {
        "app_name": "Demo",
        "md5": file_hash,
        "vulnerabilities": [{"title": "Hardcoded API key", "severity": "high"}],
    }
    api.save_report_json.side_effect = MobsfClientError("save not expected")
    api.download_pdf.return_value = b"%PDF-1.4 demo"
    return api


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def api():
    return make_api()


@pytest.fixture
def controller_config(tmp_path):
    return {
        "POLL_INTERVAL_SECONDS": 5,
        "POLL_MAX_ATTEMPTS": 10,
        "ALLOWED_EXTENSIONS": ("apk", "zip", "xapk", "apks", "ipa"),
        "REPORTS_DIR": str(tmp_path / "reports"),
    }


@pytest.fixture
def controller(controller_config, api, scheduler):
    return ScanController(controller_config, api=api, scheduler=scheduler)


@pytest.fixture
def test_config(tmp_path):
    class TestConfig(Config):
        TESTING = True
        REPORTS_DIR = str(tmp_path / "reports")
        POLL_MAX_ATTEMPTS = 10

    return TestConfig
