"""Tests for the report view model."""

from models import Finding, SeverityTier
from normalizer import normalize
from remediation import recommend
from report_view import build_human_report, finding_view


class TestFindingView:
    def test_report_remediation_preferred(self):
        view = finding_view(Finding(title="Hardcoded API key", severity=SeverityTier.HIGH, remediation="Rotate it"))
        assert view["fix"] == "Rotate it"
        assert view["fix_source"] == "report"

    def test_advisor_fallback(self):
        view = finding_view(Finding(title="Hardcoded API key", severity=SeverityTier.HIGH, severity_text="high"))
        assert view["fix"] == recommend("Hardcoded API key")
        assert view["fix_source"] == "advisor"
        assert view["tier"] == "High"
        assert view["severity"] == "high"

    def test_long_text_truncated(self):
        view = finding_view(Finding(title="t", severity=SeverityTier.INFO, description="d" * 500, remediation="r" * 500))
        assert len(view["description"]) == 161
        assert len(view["fix"]) == 401


class TestBuildHumanReport:
    def test_sections_in_fixed_order(self):
        raw = {
            "vulnerabilities": [
                {"title": "a", "severity": "info"},
                {"title": "b", "severity": "warning"},
                {"title": "c", "severity": "high"},
            ]
        }
        report = build_human_report(normalize(raw))
        assert [s["tier"] for s in report["sections"]] == ["High", "Medium", "Info"]
        assert [s["count"] for s in report["sections"]] == [1, 1, 1]
        assert [c["name"] for c in report["chart"]] == ["High", "Medium", "Info"]
        assert report["summary"] == {
            "high_count": 1,
            "medium_count": 1,
            "info_count": 1,
            "score": 87,
            "band": "Low",
        }

    def test_empty_report(self):
        report = build_human_report(normalize({}))
        assert report["overview"]["hash"] == "(n/a)"
        assert report["summary"]["score"] == 100
        assert report["permissions"] == []
        assert report["malformed"] is True

    def test_permissions(self):
        raw = {"permissions": {"android.permission.ACCESS_FINE_LOCATION": {"status": "dangerous", "description": "precise location"}}}
        report = build_human_report(normalize(raw))
        assert report["permissions"] == [
            {"name": "android.permission.ACCESS_FINE_LOCATION", "info": "precise location"}
        ]
