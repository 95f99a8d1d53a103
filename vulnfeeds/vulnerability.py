"""Vulnerability sources, severities and the merging of per-source details."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Mapping

logger = logging.getLogger(__name__)

REJECT_MARKER = "** REJECT **"


class SourceID(str, Enum):
    """Identifier of a vulnerability data source."""

    NVD = "nvd"
    REDHAT = "redhat"
    REDHAT_OVAL = "redhat-oval"
    DEBIAN = "debian"
    UBUNTU = "ubuntu"
    CENTOS = "centos"
    ROCKY = "rocky"
    FEDORA = "fedora"
    AMAZON = "amazon"
    ORACLE_OVAL = "oracle-oval"
    SUSE_CVRF = "suse-cvrf"
    ALPINE = "alpine"
    ARCH_LINUX = "arch-linux"
    ALMA = "alma"
    CBL_MARINER = "cbl-mariner"
    PHOTON = "photon"
    RUBYSEC = "ruby-advisory-db"
    PHP_SECURITY_ADVISORIES = "php-security-advisories"
    NODEJS_SECURITY_WG = "nodejs-security-wg"
    GHSA = "ghsa"
    GLAD = "glad"
    OSV = "osv"
    WOLFI = "wolfi"
    CHAINGUARD = "chainguard"
    BITNAMI_VULNDB = "bitnami"
    K8S_VULNDB = "k8s"

    def __str__(self) -> str:
        return self.value


class Ecosystem(str, Enum):
    """Package ecosystem of a language-specific advisory."""

    UNKNOWN = "unknown"
    NPM = "npm"
    COMPOSER = "composer"
    PIP = "pip"
    RUBYGEMS = "rubygems"
    CARGO = "cargo"
    NUGET = "nuget"
    MAVEN = "maven"
    GO = "go"
    CONAN = "conan"
    ERLANG = "erlang"
    PUB = "pub"
    SWIFT = "swift"
    COCOAPODS = "cocoapods"
    BITNAMI = "bitnami"
    KUBERNETES = "k8s"

    def __str__(self) -> str:
        return self.value


class Severity(IntEnum):
    """Normalised severity; larger is worse."""

    UNKNOWN = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    def __str__(self) -> str:
        return self.name


# Order in which sources are consulted when picking a single value.
_PRIORITY: tuple[SourceID, ...] = (
    SourceID.NVD,
    SourceID.REDHAT,
    SourceID.DEBIAN,
    SourceID.UBUNTU,
    SourceID.ALPINE,
    SourceID.AMAZON,
    SourceID.ORACLE_OVAL,
    SourceID.SUSE_CVRF,
    SourceID.PHOTON,
    SourceID.ARCH_LINUX,
    SourceID.ALMA,
    SourceID.ROCKY,
    SourceID.CBL_MARINER,
    SourceID.RUBYSEC,
    SourceID.PHP_SECURITY_ADVISORIES,
    SourceID.NODEJS_SECURITY_WG,
    SourceID.GHSA,
    SourceID.GLAD,
    SourceID.OSV,
    SourceID.K8S_VULNDB,
)


def format_time(value: datetime) -> str:
    """Render a timestamp as RFC 3339 text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat().replace("+00:00", "Z")


def parse_time(text: str) -> datetime:
    """Parse RFC 3339 text into an aware timestamp."""
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


@dataclass
class CVSS:
    """CVSS vectors and scores reported by one vendor."""

    v2_vector: str = ""
    v3_vector: str = ""
    v2_score: float = 0.0
    v3_score: float = 0.0


@dataclass
class VulnerabilityDetail:
    """What one data source says about a vulnerability."""

    id: str = ""
    cvss_score: float = 0.0
    cvss_vector: str = ""
    cvss_score_v3: float = 0.0
    cvss_vector_v3: str = ""
    severity: Severity = Severity.UNKNOWN
    severity_v3: Severity = Severity.UNKNOWN
    cwe_ids: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    title: str = ""
    description: str = ""
    published_date: datetime | None = None
    last_modified_date: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON form; empty fields are left out."""
        pairs = {
            "ID": self.id,
            "CvssScore": self.cvss_score,
            "CvssVector": self.cvss_vector,
            "CvssScoreV3": self.cvss_score_v3,
            "CvssVectorV3": self.cvss_vector_v3,
            "Severity": int(self.severity),
            "SeverityV3": int(self.severity_v3),
            "CweIDs": list(self.cwe_ids),
            "References": list(self.references),
            "Title": self.title,
            "Description": self.description,
            "PublishedDate": format_time(self.published_date) if self.published_date else None,
            "LastModifiedDate": (
                format_time(self.last_modified_date) if self.last_modified_date else None
            ),
        }
        return {key: value for key, value in pairs.items() if value}

    @classmethod
    def from_dict(cls, data: Any) -> VulnerabilityDetail:
        """Build from the JSON form; raises ValueError on a malformed document."""
        if not isinstance(data, Mapping):
            raise ValueError("vulnerability detail must be a JSON object")
        published = data.get("PublishedDate")
        modified = data.get("LastModifiedDate")
        return cls(
            id=str(data.get("ID", "")),
            cvss_score=float(data.get("CvssScore", 0)),
            cvss_vector=str(data.get("CvssVector", "")),
            cvss_score_v3=float(data.get("CvssScoreV3", 0)),
            cvss_vector_v3=str(data.get("CvssVectorV3", "")),
            severity=Severity(int(data.get("Severity", 0))),
            severity_v3=Severity(int(data.get("SeverityV3", 0))),
            cwe_ids=list(data.get("CweIDs") or []),
            references=list(data.get("References") or []),
            title=str(data.get("Title", "")),
            description=str(data.get("Description", "")),
            published_date=parse_time(published) if published else None,
            last_modified_date=parse_time(modified) if modified else None,
        )


@dataclass
class Vulnerability:
    """A vulnerability merged from all of its sources."""

    title: str = ""
    description: str = ""
    severity: str = ""
    cwe_ids: list[str] = field(default_factory=list)
    vendor_severity: dict[str, Severity] = field(default_factory=dict)
    cvss: dict[str, CVSS] = field(default_factory=dict)
    references: list[str] = field(default_factory=list)
    published_date: datetime | None = None
    last_modified_date: datetime | None = None


Details = Mapping[str, VulnerabilityDetail]


class Vulnerabilities:
    """Reads vulnerability details from a store and merges them."""

    def __init__(self, store: Any) -> None:
        self._store = store

    def get_details(self, vuln_id: str) -> dict[str, VulnerabilityDetail] | None:
        """Per-source details of a vulnerability, or None if there are none."""
        try:
            details = self._store.get_vulnerability_detail(vuln_id)
        except ValueError as exc:
            logger.warning("Failed to get vulnerability detail: %s", exc)
            return None
        return details or None

    def is_rejected(self, details: Details) -> bool:
        """True if any prioritised source marks the vulnerability as rejected."""
        return any(
            REJECT_MARKER in detail.description for _, detail in _prioritised(details)
        )

    def normalize(self, details: Details) -> Vulnerability:
        """Merge per-source details into one vulnerability."""
        nvd = details.get(SourceID.NVD)
        return Vulnerability(
            title=_first(details, lambda d: d.title, ""),
            description=_first(details, lambda d: d.description, ""),
            severity=_severity(details).name,
            cwe_ids=list(_first(details, lambda d: d.cwe_ids, [])),
            vendor_severity=_vendor_severity(details),
            cvss=_cvss(details),
            references=_references(details),
            published_date=nvd.published_date if nvd else None,
            last_modified_date=nvd.last_modified_date if nvd else None,
        )


def _prioritised(details: Details):
    for source in _PRIORITY:
        detail = details.get(source)
        if detail is not None:
            yield source, detail


def _first(details: Details, pick, default):
    for _, detail in _prioritised(details):
        value = pick(detail)
        if value:
            return value
    return default


def _cvss(details: Details) -> dict[str, CVSS]:
    result = {}
    for vendor, d in details.items():
        no_v2 = not d.cvss_vector or d.cvss_score == 0
        no_v3 = not d.cvss_vector_v3 or d.cvss_score_v3 == 0
        if no_v2 and no_v3:
            continue
        result[vendor] = CVSS(
            v2_vector=d.cvss_vector,
            v3_vector=d.cvss_vector_v3,
            v2_score=d.cvss_score,
            v3_score=d.cvss_score_v3,
        )
    return result


def _vendor_severity(details: Details) -> dict[str, Severity]:
    result = {}
    for vendor, d in details.items():
        if d.severity_v3 != Severity.UNKNOWN:
            result[vendor] = d.severity_v3
        elif d.severity != Severity.UNKNOWN:
            result[vendor] = d.severity
        elif d.cvss_score_v3 > 0:
            result[vendor] = score_to_severity(d.cvss_score_v3)
        elif d.cvss_score > 0:
            result[vendor] = score_to_severity(d.cvss_score)
    return result


def _severity(details: Details) -> Severity:
    for _, d in _prioritised(details):
        if d.cvss_score_v3 > 0:
            return score_to_severity(d.cvss_score_v3)
        if d.cvss_score > 0:
            return score_to_severity(d.cvss_score)
        if d.severity_v3 != Severity.UNKNOWN:
            return d.severity_v3
        if d.severity != Severity.UNKNOWN:
            return d.severity
    return Severity.UNKNOWN


def _references(details: Details) -> list[str]:
    references: set[str] = set()
    for source, d in _prioritised(details):
        # Amazon carries unrelated references.
        if source == SourceID.AMAZON:
            continue
        for ref in d.references:
            references.update(ref.strip().split("\n"))
    return sorted(references)


def score_to_severity(score: float) -> Severity:
    """Map a CVSS score onto a severity."""
    if score >= 9.0:
        return Severity.CRITICAL
    if score >= 7.0:
        return Severity.HIGH
    if score >= 4.0:
        return Severity.MEDIUM
    if score > 0.0:
        return Severity.LOW
    return Severity.UNKNOWN


def normalize_pkg_name(ecosystem: str, pkg_name: str) -> str:
    """Bring a package name into the canonical form of its ecosystem."""
    if ecosystem == Ecosystem.PIP:
        # Distribution names are case-insensitive; '-' and '_' are equivalent.
        return pkg_name.lower().replace("_", "-")
    if ecosystem == Ecosystem.SWIFT:
        return pkg_name.removeprefix("https://").removesuffix(".git")
    if ecosystem in (Ecosystem.NUGET, Ecosystem.GO, Ecosystem.COCOAPODS):
        return pkg_name
    return pkg_name.lower()