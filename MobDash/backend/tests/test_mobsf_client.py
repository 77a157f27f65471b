"""Tests for the MobSF API wrappers."""

import io
import json
from unittest.mock import MagicMock, patch

import pytest
from requests.exceptions import ConnectionError, HTTPError
from urllib3.filepost import encode_multipart_formdata

import mobsf_client
from mobsf_client import (
    MobsfClientError,
    _ProgressBody,
    download_pdf,
    extract_error_detail,
    get_report_json,
    get_scan_logs,
    list_recent_scans,
    load_saved_report,
    save_report_json,
    trigger_scan,
    upload_file,
)


def make_response(status=200, payload=None, text=None, content=b""):
    resp = MagicMock()
    resp.status_code = status
    resp.content = content
    if payload is not None:
        resp.json.return_value = payload
        resp.text = json.dumps(payload)
    else:
        resp.json.side_effect = ValueError("no json")
        resp.text = text or ""
    if status >= 400:
        resp.raise_for_status.side_effect = HTTPError(f"{status} Error")
    return resp


@pytest.fixture
def config(tmp_path):
    return {
        "MOBSF_API_URL": "http://mobsf.test/",
        "MOBSF_API_KEY": "key",
        "MOBSF_REQUEST_TIMEOUT": 30,
        "MOBSF_SCAN_TIMEOUT": 900,
        "REPORTS_DIR": str(tmp_path / "reports"),
    }


class TestConfiguration:
    def test_missing_url(self):
        with pytest.raises(MobsfClientError, match="MOBSF_API_URL"):
            trigger_scan("h", {"MOBSF_API_KEY": "key"})

    def test_missing_key(self):
        with pytest.raises(MobsfClientError, match="MOBSF_API_KEY"):
            trigger_scan("h", {"MOBSF_API_URL": "http://mobsf.test"})


class TestUpload:
    def test_posts_multipart_and_reports_progress(self, config):
        seen = []
        with patch.object(mobsf_client.requests, "post") as mock_post:
            mock_post.return_value = make_response(payload={"hash": "abc", "file_name": "app.apk"})
            data = upload_file(io.BytesIO(b"PK" * 10), "app.apk", config, progress=seen.append)

        assert data["hash"] == "abc"
        args, kwargs = mock_post.call_args
        assert args[0] == "http://mobsf.test/api/v1/upload"
        assert kwargs["headers"]["Authorization"] == "key"
        assert kwargs["headers"]["Content-Type"].startswith("multipart/form-data; boundary=")
        assert kwargs["timeout"] == 30.0
        assert isinstance(kwargs["data"], _ProgressBody)
        assert kwargs["data"].file_size == 20
        assert kwargs["headers"]["Content-Type"] == kwargs["data"].content_type
        assert seen[-1] == 100

    def test_transport_failure(self, config):
        with patch.object(mobsf_client.requests, "post", side_effect=ConnectionError("refused")):
            with pytest.raises(MobsfClientError, match="Failed to upload file to MobSF"):
                upload_file(io.BytesIO(b"x"), "app.apk", config)

    def test_server_error_detail(self, config):
        with patch.object(mobsf_client.requests, "post") as mock_post:
            mock_post.return_value = make_response(400, payload={"error": "File format not Supported!"})
            with pytest.raises(MobsfClientError) as info:
                upload_file(io.BytesIO(b"x"), "app.apk", config)
        assert info.value.detail == "File format not Supported!"
        assert info.value.status_code == 400
        assert info.value.user_message() == "File format not Supported!"


class TestProgressBody:
    def test_same_bytes_as_urllib3_encoder(self):
        content = b"PK\x03\x04" + b"x" * 5000
        body = _ProgressBody(io.BytesIO(content), "app.apk", None)
        expected, content_type = encode_multipart_formdata(
            {"file": ("app.apk", content, "application/octet-stream")},
            boundary=body.boundary,
        )
        assert body.content_type == content_type
        assert len(body) == len(expected)

        sent = b""
        while True:
            chunk = body.read(1024)
            if not chunk:
                break
            sent += chunk
        assert sent == expected
        assert b'filename="app.apk"' in sent

    def test_reads_file_in_blocks(self):
        stream = MagicMock(wraps=io.BytesIO(b"y" * 10000))
        body = _ProgressBody(stream, "app.apk", None)
        while body.read(4096):
            pass
        sizes = [c.args[0] for c in stream.read.call_args_list]
        assert sizes and max(sizes) <= 4096

    def test_increasing_percentages(self):
        seen = []
        body = _ProgressBody(io.BytesIO(b"x" * 1000), "app.apk", seen.append)
        while body.read(100):
            pass
        assert seen == sorted(set(seen))
        assert seen[-1] == 100

    def test_no_callback(self):
        body = _ProgressBody(io.BytesIO(b"abc"), "a.apk", None)
        data = body.read()
        assert b"\r\n\r\nabc\r\n--" in data
        assert body.read() == b""


class TestScanCalls:
    def test_trigger_uses_scan_timeout(self, config):
        with patch.object(mobsf_client.requests, "post") as mock_post:
            mock_post.return_value = make_response(payload={"status": "ok"})
            trigger_scan("abc", config)
        args, kwargs = mock_post.call_args
        assert args[0] == "http://mobsf.test/api/v1/scan"
        assert kwargs["data"] == {"hash": "abc"}
        assert kwargs["timeout"] == 900.0

    def test_logs(self, config):
        logs = [{"timestamp": "t", "status": "Completed"}]
        with patch.object(mobsf_client.requests, "post") as mock_post:
            mock_post.return_value = make_response(payload={"logs": logs})
            assert get_scan_logs("abc", config) == {"logs": logs}

    def test_logs_malformed(self, config):
        with patch.object(mobsf_client.requests, "post") as mock_post:
            mock_post.return_value = make_response(payload={"logs": "nope"})
            with pytest.raises(MobsfClientError, match="malformed"):
                get_scan_logs("abc", config)

    def test_report_json_invalid_body(self, config):
        with patch.object(mobsf_client.requests, "post") as mock_post:
            mock_post.return_value = make_response(text="<html>")
            with pytest.raises(MobsfClientError, match="not valid JSON"):
                get_report_json("abc", config)

    def test_pdf_bytes(self, config):
        with patch.object(mobsf_client.requests, "post") as mock_post:
            mock_post.return_value = make_response(content=b"%PDF-1.7")
            assert download_pdf("abc", config) == b"%PDF-1.7"

    def test_recent_scans(self, config):
        with patch.object(mobsf_client.requests, "get") as mock_get:
            mock_get.return_value = make_response(payload={"content": [{"MD5": "a"}], "count": 1})
            assert list_recent_scans(config, page=2, page_size=5) == [{"MD5": "a"}]
        assert mock_get.call_args.kwargs["params"] == {"page": 2, "page_size": 5}


class TestSavedReports:
    def test_save_then_load(self, config):
        with patch.object(mobsf_client.requests, "post") as mock_post:
            mock_post.return_value = make_response(payload={"app_name": "Demo"})
            saved = save_report_json("abc123", config)
        assert saved == {"path": "/reports/json/abc123", "data": {"app_name": "Demo"}}
        assert mock_post.call_args.kwargs["data"] == {"hash": "abc123", "re_scan": 0}
        assert load_saved_report("abc123", config) == {"app_name": "Demo"}

    def test_load_missing(self, config):
        assert load_saved_report("nothing", config) is None

    def test_hash_is_sanitized(self, config):
        assert mobsf_client.saved_report_path("../../etc/passwd", config).endswith("etcpasswd.json")
        with pytest.raises(MobsfClientError):
            mobsf_client.saved_report_path("../", config)


class TestErrorDetail:
    def test_nested_report_error(self):
        resp = make_response(500, payload={"error": {"report": "Report not Found"}})
        assert extract_error_detail(resp) == "Report not Found"

    def test_plain_text(self):
        resp = make_response(502, text="Bad Gateway")
        assert extract_error_detail(resp) == "Bad Gateway"

    def test_unknown_object(self):
        resp = make_response(500, payload={"oops": 1})
        assert extract_error_detail(resp) == '{"oops": 1}'
