"""SUSE and openSUSE CVRF advisories."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping

from .store import Advisory, DataSource, Store, walk_json
from .vulnerability import Severity, SourceID, VulnerabilityDetail

logger = logging.getLogger(__name__)

PLATFORM_OPENSUSE_FORMAT = "openSUSE Leap {}"
PLATFORM_SUSE_LINUX_FORMAT = "SUSE Linux Enterprise {}"
OPENSUSE_SOURCE_NAME = "opensuse-cvrf"

SUSE_DIR = Path("cvrf", "suse")

SOURCE = DataSource(
    id=SourceID.SUSE_CVRF,
    name="SUSE CVRF",
    url="https://ftp.suse.com/pub/projects/security/cvrf/",
)

_VERSION = re.compile(
    r"^v?\d+(\.\d+)*(-[0-9A-Za-z.-]+)?(\+[0-9A-Za-z.-]+)?$"
)
_INTEGER = re.compile(r"^[+-]?\d+$")

_THREAT_SEVERITY = {
    "low": Severity.LOW,
    "moderate": Severity.MEDIUM,
    "important": Severity.HIGH,
    "critical": Severity.CRITICAL,
}


class Distribution(Enum):
    SUSE_ENTERPRISE_LINUX = 0
    OPENSUSE = 1


@dataclass
class Relationship:
    """Links a package build to the product it belongs to."""

    product_reference: str = ""
    relates_to_product_reference: str = ""
    relation_type: str = ""


@dataclass
class AffectedPackage:
    """A package with its fixed version on one platform."""

    os_ver: str
    name: str
    fixed_version: str


def _mapping(data: Any, key: str) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{key!r} must be a JSON object")
    return value


def _objects(data: Any, key: str) -> list[Mapping[str, Any]]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, Mapping) for v in value):
        raise ValueError(f"{key!r} must be a list of JSON objects")
    return value


def _string(data: Any, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key!r} must be a string")
    return value


@dataclass
class SuseCvrf:
    """The parts of a CVRF document that are stored."""

    title: str = ""
    tracking_id: str = ""
    description: str = ""
    relationships: list[Relationship] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    threat_severities: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> SuseCvrf:
        """Build from the JSON form; raises ValueError on a malformed document."""
        if not isinstance(data, Mapping):
            raise ValueError("CVRF document must be a JSON object")
        notes = _objects(data, "Notes")
        description = next(
            (
                _string(note, "Text")
                for note in notes
                if _string(note, "Type") == "General" and _string(note, "Title") == "Details"
            ),
            "",
        )
        relationships = [
            Relationship(
                product_reference=_string(rel, "ProductReference"),
                relates_to_product_reference=_string(rel, "RelatesToProductReference"),
                relation_type=_string(rel, "RelationType"),
            )
            for rel in _objects(_mapping(data, "ProductTree"), "Relationships")
        ]
        severities = [
            _string(threat, "Severity")
            for vuln in _objects(data, "Vulnerabilities")
            for threat in _objects(vuln, "Threats")
        ]
        return cls(
            title=_string(data, "Title"),
            tracking_id=_string(_mapping(data, "Tracking"), "ID"),
            description=description,
            relationships=relationships,
            references=[_string(ref, "URL") for ref in _objects(data, "References")],
            threat_severities=severities,
        )


def _decode(text: str) -> SuseCvrf:
    try:
        return SuseCvrf.from_dict(json.loads(text))
    except ValueError as exc:
        raise ValueError(f"failed to decode SUSE CVRF JSON: {exc}") from exc


def get_affected_packages(relationships: Iterable[Relationship]) -> list[AffectedPackage]:
    """Packages of the relationships whose product maps onto a known platform."""
    packages = []
    for rel in relationships:
        os_ver = get_os_version(rel.relates_to_product_reference)
        if not os_ver:
            continue
        name, version = split_pkg_name(rel.product_reference)
        packages.append(AffectedPackage(os_ver=os_ver, name=name, fixed_version=version))
    return packages


def get_os_version(platform_name: str) -> str:
    """Platform bucket name for a CVRF product name, or "" if it is not tracked."""
    if "SUSE Manager" in platform_name:
        return ""
    if platform_name.startswith("openSUSE Leap"):
        words = platform_name.split(" ")
        if len(words) < 3:
            logger.info("invalid version: %s", platform_name)
            return ""
        if not _VERSION.match(words[2]):
            logger.info("invalid version: %s", platform_name)
            return ""
        return PLATFORM_OPENSUSE_FORMAT.format(words[2])
    if "SUSE Linux Enterprise" in platform_name:
        if platform_name.startswith(
            ("SUSE Linux Enterprise Storage", "SUSE Linux Enterprise Micro")
        ):
            return ""
        words = platform_name.replace("-", " ").split()
        numbers: list[str] = []
        for word in reversed(words[1:]):
            candidate = word.removeprefix("SP")
            if not _INTEGER.match(candidate):
                continue
            numbers.append(str(int(candidate)))
            if len(numbers) == 2:
                break
        if not numbers:
            logger.info("failed to detect version: %s", platform_name)
            return ""
        if len(numbers) == 1:
            return PLATFORM_SUSE_LINUX_FORMAT.format(numbers[0])
        return PLATFORM_SUSE_LINUX_FORMAT.format(f"{numbers[1]}.{numbers[0]}")
    return ""


def split_pkg_name(pkg_name: str) -> tuple[str, str]:
    """Split "name-version-release" into (name, "version-release")."""
    rest, sep, release = pkg_name.rpartition("-")
    if not sep:
        return "", ""
    name, sep, version = rest.rpartition("-")
    if not sep:
        return "", ""
    return name, f"{version}-{release}"


def severity_from_threat(sev: str) -> Severity:
    return _THREAT_SEVERITY.get(sev, Severity.UNKNOWN)


class SuseCvrfSource:
    """Loads SUSE or openSUSE CVRF advisories into a store and reads them back."""

    def __init__(self, dist: Distribution, store: Store | None = None) -> None:
        self.dist = dist
        self.store = store if store is not None else Store()

    def name(self) -> str:
        if self.dist == Distribution.OPENSUSE:
            return OPENSUSE_SOURCE_NAME
        return SourceID.SUSE_CVRF

    def update(self, directory: str | os.PathLike[str]) -> None:
        """Read every CVRF document of this distribution and save it."""
        logger.info("Saving SUSE CVRF")
        root = Path(directory) / "vuln-list" / SUSE_DIR
        if self.dist == Distribution.SUSE_ENTERPRISE_LINUX:
            root = root / "suse"
        elif self.dist == Distribution.OPENSUSE:
            root = root / "opensuse"
        else:
            raise ValueError("unknown distribution")

        cvrfs = [_decode(text) for _, text in walk_json(root)]
        with self.store.batch_update():
            for cvrf in cvrfs:
                self._commit(cvrf)

    def _commit(self, cvrf: SuseCvrf) -> None:
        affected = get_affected_packages(cvrf.relationships)
        if not affected:
            return
        for pkg in affected:
            self.store.put_data_source(pkg.os_ver, SOURCE)
            self.store.put_advisory_detail(
                cvrf.tracking_id,
                pkg.name,
                [pkg.os_ver],
                Advisory(fixed_version=pkg.fixed_version),
            )

        severity = max(
            (severity_from_threat(s) for s in cvrf.threat_severities),
            default=Severity.UNKNOWN,
        )
        detail = VulnerabilityDetail(
            references=list(cvrf.references),
            title=cvrf.title,
            description=cvrf.description,
            severity=severity,
        )
        self.store.put_vulnerability_detail(cvrf.tracking_id, SourceID.SUSE_CVRF, detail)
        self.store.put_vulnerability_id(cvrf.tracking_id)

    def get(self, version: str, pkg_name: str) -> list[Advisory]:
        """Advisories for a package on one release of this distribution."""
        if self.dist == Distribution.SUSE_ENTERPRISE_LINUX:
            bucket = PLATFORM_SUSE_LINUX_FORMAT.format(version)
        elif self.dist == Distribution.OPENSUSE:
            bucket = PLATFORM_OPENSUSE_FORMAT.format(version)
        else:
            raise ValueError("unknown distribution")
        try:
            return self.store.get_advisories(bucket, pkg_name)
        except ValueError as exc:
            raise ValueError(f"failed to get SUSE advisories: {exc}") from exc