"""View model for the human-readable report page and its JSON twin."""

from dataclasses import asdict
from typing import Any, Dict, List

from models import Finding, NormalizedReport, SeverityTier
from normalizer import short
from remediation import recommend
from risk_scoring import TIER_ORDER, classify

SEVERITY_COLORS = {
    SeverityTier.HIGH: "#e63946",
    SeverityTier.MEDIUM: "#f4c542",
    SeverityTier.INFO: "#59b5ff",
}

TIER_HEADINGS = {
    SeverityTier.HIGH: "High",
    SeverityTier.MEDIUM: "Medium",
    SeverityTier.INFO: "Other findings",
}

REMEDIATION_LENGTH = 400


def finding_view(finding: Finding) -> Dict[str, Any]:
    if finding.remediation:
        fix, fix_source = finding.remediation, "report"
    else:
        fix, fix_source = recommend(finding.title), "advisor"
    return {
        "title": finding.title,
        "tier": finding.severity.value,
        "severity": finding.severity_text,
        "description": short(finding.description),
        "path": finding.path,
        "fix": short(fix, REMEDIATION_LENGTH),
        "fix_source": fix_source,
    }


def build_human_report(report: NormalizedReport) -> Dict[str, Any]:
    classification = classify(report.findings)
    summary = classification.summary

    sections: List[Dict[str, Any]] = []
    for tier in TIER_ORDER:
        findings = classification.by_tier[tier]
        sections.append(
            {
                "tier": tier.value,
                "heading": TIER_HEADINGS[tier],
                "count": len(findings),
                "findings": [finding_view(f) for f in findings],
            }
        )

    chart = [
        {"name": tier.value, "value": len(classification.by_tier[tier]), "color": SEVERITY_COLORS[tier]}
        for tier in TIER_ORDER
    ]

    return {
        "overview": asdict(report.metadata),
        "summary": summary.to_dict(),
        "chart": chart,
        "sections": sections,
        "permissions": [
            {"name": p.name, "info": short(p.info)} for p in report.permissions
        ],
        "malformed": report.malformed,
    }
