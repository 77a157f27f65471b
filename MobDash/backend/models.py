from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class SeverityTier(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    INFO = "Info"


class ScanStatus(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    SCANNING = "scanning"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class AppMetadata:
    app_name: str
    file_name: str
    size: str
    package_name: str
    version_name: str
    target_sdk: str
    min_sdk: str
    hash: str


@dataclass(frozen=True)
class Finding:
    title: str
    severity: SeverityTier
    description: str = ""
    path: str = ""
    remediation: Optional[str] = None
    # lower-cased severity text as the service reported it
    severity_text: str = "info"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


@dataclass(frozen=True)
class PermissionRisk:
    name: str
    info: str


@dataclass(frozen=True)
class NormalizedReport:
    metadata: AppMetadata
    findings: List[Finding] = field(default_factory=list)
    permissions: List[PermissionRisk] = field(default_factory=list)
    # none of the known metadata, finding or permission keys were present
    malformed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": asdict(self.metadata),
            "findings": [f.to_dict() for f in self.findings],
            "permissions": [asdict(p) for p in self.permissions],
            "malformed": self.malformed,
        }


@dataclass(frozen=True)
class ScoreSummary:
    high_count: int
    medium_count: int
    info_count: int
    score: int
    band: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LogEntry:
    timestamp: str
    status: str
    raw: Any = None

    def label(self) -> str:
        if self.timestamp:
            return f"{self.timestamp} - {self.status}"
        return self.status


@dataclass
class ScanSession:
    """
    Mutable lifecycle state for one selected identity.

    Owned by the ScanController; replaced wholesale whenever the selected
    hash changes.
    """

    hash: Optional[str] = None
    status: ScanStatus = ScanStatus.IDLE
    progress_percent: int = 0
    last_message: str = ""
    logs: List[LogEntry] = field(default_factory=list)
    poll_attempts: int = 0
    report: Optional[Dict[str, Any]] = None
    normalized: Optional[NormalizedReport] = None
    report_path: Optional[str] = None
    document: Optional[bytes] = None

    def to_dict(self, log_tail: int = 6) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "status": self.status.value,
            "progress_percent": self.progress_percent,
            "last_message": self.last_message,
            "logs": [entry.label() for entry in self.logs[-log_tail:]],
            "log_count": len(self.logs),
            "poll_attempts": self.poll_attempts,
            "has_report": self.normalized is not None,
            "report_path": self.report_path,
            "has_document": self.document is not None,
        }
