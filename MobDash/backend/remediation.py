"""
Fix suggestions for findings, keyed on the finding title.

Rules are checked top to bottom and the first match wins, so more specific
patterns must come before broader ones. The last rule matches anything.
"""

import re
from typing import List, Tuple

GENERIC_FIX = (
    "Review the flagged code or configuration against the OWASP Mobile "
    "Application Security guidelines and apply the least-privilege, "
    "secure-by-default option."
)

REMEDIATION_RULES: List[Tuple[str, str]] = [
    (
        r"hard[\s-]?coded|api[\s_-]?key|secret|password|credential|token",
        "Remove hardcoded secrets from the app. Fetch credentials at runtime "
        "from a backend, keep device-side keys in the Android Keystore, and "
        "rotate any key that has shipped in a build.",
    ),
    (
        r"debuggable",
        'Set android:debuggable="false" for release builds and let the build '
        "type control it instead of the manifest.",
    ),
    (
        r"allowbackup|backup",
        'Set android:allowBackup="false", or restrict what is backed up with '
        "fullBackupContent / dataExtractionRules.",
    ),
    (
        r"cleartext|usescleartexttraffic|http\b|insecure connection",
        "Disable cleartext traffic with a network security config and serve "
        "every endpoint over HTTPS.",
    ),
    (
        r"ssl|tls|certificate|trust ?manager|hostname ?verif|pinning",
        "Do not override certificate or hostname validation. Use the platform "
        "TrustManager and add certificate pinning for your own backends.",
    ),
    (
        r"webview|javascript ?interface|setjavascriptenabled",
        "Disable JavaScript in WebViews unless required, never expose "
        "addJavascriptInterface to untrusted content, and load only HTTPS "
        "origins you control.",
    ),
    (
        r"\becb\b|cbc|padding|cipher",
        "Use AES-GCM with a random IV per message instead of ECB or unauthenticated "
        "CBC modes.",
    ),
    (
        r"\bmd5\b|\bsha-?1\b|weak hash|weak crypto|\bdes\b|\brc4\b",
        "Replace weak algorithms (MD5, SHA-1, DES, RC4) with SHA-256 or better "
        "for hashing and AES-GCM for encryption.",
    ),
    (
        r"random",
        "Use java.security.SecureRandom for anything security relevant instead "
        "of java.util.Random or Math.random().",
    ),
    (
        r"sql|raw ?query|injection",
        "Use parameterized queries or Room instead of building SQL strings from "
        "user input.",
    ),
    (
        r"exported|intent[\s-]?filter|activity|service|receiver|provider",
        'Set android:exported="false" on components that do not need to be '
        "reachable from other apps, and guard the rest with signature-level "
        "permissions.",
    ),
    (
        r"external storage|sd ?card|world[\s-]?(readable|writable)",
        "Keep sensitive files in app-private internal storage and avoid "
        "MODE_WORLD_READABLE / MODE_WORLD_WRITEABLE.",
    ),
    (
        r"\blog|logging",
        "Strip sensitive values from log output and disable verbose logging in "
        "release builds (e.g. with R8/ProGuard rules).",
    ),
    (
        r"clipboard",
        "Avoid copying sensitive data to the clipboard, or clear it after use.",
    ),
    (
        r"root|tamper|obfuscat",
        "Add root and tamper detection and enable code shrinking/obfuscation for "
        "release builds.",
    ),
    (
        r"min ?sdk|outdated|vulnerable android version",
        "Raise minSdkVersion to a release that still receives security patches.",
    ),
    (r".*", GENERIC_FIX),
]


def recommend(title: str) -> str:
    """Return the fix text of the first rule matching ``title``."""
    text = title if isinstance(title, str) else str(title or "")
    for pattern, fix in REMEDIATION_RULES:
        if re.search(pattern, text, re.IGNORECASE):
            return fix
    return GENERIC_FIX
