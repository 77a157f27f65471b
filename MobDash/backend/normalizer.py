"""
Report normalization for MobDash.

Turns a scanning-service report of unknown shape into a NormalizedReport.
Field names differ between service versions (``app_name`` / ``APP_NAME``,
``hash`` / ``MD5`` ...), so every logical field is described by an ordered
tuple of alias keys and resolved with a single lookup helper.

Nothing in this module raises on bad input; missing data degrades to
placeholders.
"""

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from models import AppMetadata, Finding, NormalizedReport, PermissionRisk, SeverityTier
from risk_scoring import severity_tier

logger = logging.getLogger(__name__)


# field -> (alias keys in priority order, placeholder)
METADATA_FIELDS: Dict[str, Tuple[Tuple[str, ...], str]] = {
    "app_name": (("app_name", "APP_NAME", "file_name", "file"), "(unknown)"),
    "file_name": (("file_name", "FILE_NAME"), "(unknown)"),
    "size": (("size", "file_size", "apk_size"), "unknown"),
    "package_name": (("package_name", "PACKAGE_NAME"), "(unknown)"),
    "version_name": (("version_name", "VERSION_NAME"), "-"),
    "target_sdk": (("target_sdk", "TargetSdkVersion"), "-"),
    "min_sdk": (("min_sdk", "MinSdkVersion"), "-"),
    "hash": (("hash", "MD5", "md5"), "(n/a)"),
}

MANIFEST_KEYS = ("manifest_analysis", "Manifest", "manifest")
MANIFEST_FINDING_KEYS = ("manifest_findings", "findings")
API_FINDING_KEYS = ("api", "api_findings")
VULNERABILITY_KEYS = ("vulnerabilities",)
PERMISSION_KEYS = ("permissions", "Permission", "manifest_permissions")

TITLE_KEYS = ("title", "name", "check", "issue", "issue_title", "rule")
SEVERITY_KEYS = ("severity", "level", "risk")
DESCRIPTION_KEYS = ("description", "desc", "details", "message", "snippet", "detail")
PATH_KEYS = ("path", "file", "location", "component")
REMEDIATION_KEYS = (
    "remediation",
    "fix",
    "recommendation",
    "fix_recommendation",
    "remediation_text",
)
PERMISSION_STATUS_KEYS = ("status", "level", "risk", "description")

# Length of the serialized fallback title for findings without a usable name
FALLBACK_TITLE_LENGTH = 60
SNIPPET_LENGTH = 160

DANGEROUS_STATUS_RE = re.compile(r"(dangerous|danger|privileged)", re.IGNORECASE)
SENSITIVE_PERMISSION_RE = re.compile(
    r"(WRITE|RECORD|CALL|SMS|LOCATION|CAMERA|STORAGE|CONTACTS)", re.IGNORECASE
)


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, dict)):
        return len(value) > 0
    return True


def probe(source: Any, keys: Iterable[str], default: Any = None) -> Any:
    """Return the first present value among ``keys`` in ``source``, else ``default``."""
    if not isinstance(source, Mapping):
        return default
    for key in keys:
        value = source.get(key)
        if _present(value):
            return value
    return default


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return _dumps(value)
    return str(value)


def _dumps(value: Any) -> str:
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


def short(text: Any, limit: int = SNIPPET_LENGTH) -> str:
    """Truncate ``text`` to ``limit`` characters, adding an ellipsis when cut."""
    if text is None:
        return ""
    if not isinstance(text, str):
        return str(text)[:limit]
    if len(text) > limit:
        return text[:limit] + "…"
    return text


def extract_metadata(raw: Any) -> AppMetadata:
    values = {
        name: _text(probe(raw, keys, placeholder))
        for name, (keys, placeholder) in METADATA_FIELDS.items()
    }
    return AppMetadata(**values)


def _list_under(source: Any, keys: Iterable[str]) -> List[Any]:
    """First value under ``keys`` that is a list; other shapes are ignored."""
    if not isinstance(source, Mapping):
        return []
    for key in keys:
        value = source.get(key)
        if isinstance(value, list):
            return value
    return []


def _manifest_findings(raw: Any) -> List[Any]:
    manifest = probe(raw, MANIFEST_KEYS, {})
    # Some service versions return the manifest findings as a bare list
    if isinstance(manifest, list):
        return manifest
    return _list_under(manifest, MANIFEST_FINDING_KEYS)


def _keep(item: Any) -> bool:
    if item is None:
        return False
    if isinstance(item, str):
        return item.strip() != ""
    return True


def collect_candidates(raw: Any) -> List[Any]:
    """Manifest findings first, then API findings, then generic vulnerabilities."""
    candidates: List[Any] = []
    candidates.extend(_manifest_findings(raw))
    candidates.extend(_list_under(raw, API_FINDING_KEYS))
    candidates.extend(_list_under(raw, VULNERABILITY_KEYS))
    return [item for item in candidates if _keep(item)]


def normalize_finding(item: Any) -> Finding:
    """
    Map one candidate onto a Finding.

    Bare strings become the title; other primitives and dicts without a
    usable title fall back to a truncated JSON serialization.
    """
    if isinstance(item, str):
        title = item
    else:
        title = _text(probe(item, TITLE_KEYS, ""))
    if not title.strip():
        title = _dumps(item)[:FALLBACK_TITLE_LENGTH] or "(untitled finding)"

    severity_text = _text(probe(item, SEVERITY_KEYS, "")).lower() or "info"
    remediation = probe(item, REMEDIATION_KEYS)

    return Finding(
        title=title,
        severity=severity_tier(severity_text),
        description=_text(probe(item, DESCRIPTION_KEYS, "")),
        path=_text(probe(item, PATH_KEYS, "")),
        remediation=_text(remediation) if remediation is not None else None,
        severity_text=severity_text,
    )


def _permission_status(value: Any) -> str:
    if isinstance(value, str):
        return value
    return _text(probe(value, PERMISSION_STATUS_KEYS, ""))


def _permission_info(value: Any) -> str:
    if isinstance(value, str):
        return value
    description = probe(value, ("description",))
    if description is not None:
        return _text(description)
    return _dumps(value)


def extract_permission_risks(raw: Any) -> List[PermissionRisk]:
    """
    Permissions whose status reads dangerous/privileged, or whose name
    contains a sensitive fragment. Source mapping order is preserved.
    """
    perms = probe(raw, PERMISSION_KEYS, {})
    if not isinstance(perms, Mapping):
        return []

    risks: List[PermissionRisk] = []
    for name, value in perms.items():
        if not _present(value):
            continue
        name = str(name)
        status = _permission_status(value)
        if DANGEROUS_STATUS_RE.search(status) or SENSITIVE_PERMISSION_RE.search(name):
            risks.append(PermissionRisk(name=name, info=_permission_info(value)))
    return risks


def _looks_malformed(raw: Any) -> bool:
    if not isinstance(raw, Mapping):
        return True
    known_keys = set(MANIFEST_KEYS + API_FINDING_KEYS + VULNERABILITY_KEYS + PERMISSION_KEYS)
    for keys, _placeholder in METADATA_FIELDS.values():
        known_keys.update(keys)
    return not any(key in raw for key in known_keys)


def normalize(raw: Any) -> NormalizedReport:
    """
    Build a NormalizedReport from an arbitrary report payload.

    Total over any input, including ``None`` and ``{}``; ``raw`` is never
    modified.
    """
    malformed = _looks_malformed(raw)
    if malformed:
        logger.warning("Report payload has none of the expected fields; using placeholders")

    findings = [normalize_finding(item) for item in collect_candidates(raw)]
    return NormalizedReport(
        metadata=extract_metadata(raw),
        findings=findings,
        permissions=extract_permission_risks(raw),
        malformed=malformed,
    )


def crucial_summary(report: NormalizedReport) -> Dict[str, Any]:
    """
    Condensed view: every High finding plus any finding that points at a path.
    """
    items: List[Dict[str, str]] = []
    for f in report.findings:
        if f.severity is SeverityTier.HIGH or f.path:
            items.append(
                {
                    "path": f.path or f.title,
                    "snippet": short(f.description or f.title),
                }
            )
    return {"count": len(items), "findings": items}


def first_hash(payload: Any) -> Optional[str]:
    """Identity returned by the upload endpoint, probed the same way as metadata."""
    value = probe(payload, ("hash", "MD5", "md5"))
    return _text(value) if value is not None else None
