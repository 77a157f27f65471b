# backend/risk_scoring.py

"""
Rule-based severity classification and risk scoring for MobDash.

Severity text coming from the scanning service is free-form ("high",
"warning", "secure", "critical: exported"...), so tiers are assigned by
substring rules evaluated top to bottom. The score starts at 100 and loses
points per finding, weighted by tier.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from models import Finding, ScoreSummary, SeverityTier

# Evaluated in order; the first rule with a matching fragment wins.
SEVERITY_RULES: Tuple[Tuple[Tuple[str, ...], SeverityTier], ...] = (
    (("high", "critical"), SeverityTier.HIGH),
    (("warn", "warning", "medium"), SeverityTier.MEDIUM),
)

SEVERITY_WEIGHTS: Dict[SeverityTier, int] = {
    SeverityTier.HIGH: 8,
    SeverityTier.MEDIUM: 4,
    SeverityTier.INFO: 1,
}

TIER_ORDER: Tuple[SeverityTier, ...] = (
    SeverityTier.HIGH,
    SeverityTier.MEDIUM,
    SeverityTier.INFO,
)


@dataclass
class Classification:
    by_tier: Dict[SeverityTier, List[Finding]] = field(default_factory=dict)
    summary: Optional[ScoreSummary] = None


def severity_tier(text: Optional[str]) -> SeverityTier:
    """Map free-text severity onto High / Medium / Info. Unknown text is Info."""
    sev = (text or "").lower()
    for fragments, tier in SEVERITY_RULES:
        if any(fragment in sev for fragment in fragments):
            return tier
    return SeverityTier.INFO


def compute_risk_score(high: int, medium: int, info: int) -> int:
    """
    score = max(0, 100 - (8*high + 4*medium + 1*info))

    Counts are non-negative, so only the floor needs clamping.
    """
    penalty = (
        SEVERITY_WEIGHTS[SeverityTier.HIGH] * high
        + SEVERITY_WEIGHTS[SeverityTier.MEDIUM] * medium
        + SEVERITY_WEIGHTS[SeverityTier.INFO] * info
    )
    return max(0, 100 - penalty)


def risk_band(score: int) -> str:
    """
    Band mapping (higher score means fewer issues):
      80-100 -> "Low"
      60-79  -> "Medium"
      40-59  -> "High"
      0-39   -> "Critical"
    """
    if score >= 80:
        return "Low"
    if score >= 60:
        return "Medium"
    if score >= 40:
        return "High"
    return "Critical"


def classify(findings: Iterable[Finding]) -> Classification:
    """
    Group findings by tier and score them.

    Grouping is a stable filter: findings keep their relative order inside
    each tier, duplicates included.
    """
    by_tier: Dict[SeverityTier, List[Finding]] = {tier: [] for tier in TIER_ORDER}
    for f in findings:
        by_tier[f.severity].append(f)

    high = len(by_tier[SeverityTier.HIGH])
    medium = len(by_tier[SeverityTier.MEDIUM])
    info = len(by_tier[SeverityTier.INFO])
    score = compute_risk_score(high, medium, info)

    summary = ScoreSummary(
        high_count=high,
        medium_count=medium,
        info_count=info,
        score=score,
        band=risk_band(score),
    )
    return Classification(by_tier=by_tier, summary=summary)
