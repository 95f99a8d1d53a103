"""Rocky Linux updateinfo errata."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .store import Advisories, Advisory, DataSource, Store, walk_json
from .vulnerability import Severity, SourceID, VulnerabilityDetail

logger = logging.getLogger(__name__)

ROCKY_DIR = "rocky"
PLATFORM_FORMAT = "rocky {}"

TARGET_REPOS = ("BaseOS", "AppStream", "extras")
TARGET_ARCHES = ("x86_64", "aarch64")

SOURCE = DataSource(
    id=SourceID.ROCKY,
    name="Rocky Linux updateinfo",
    url="https://download.rockylinux.org/pub/rocky/",
)

_SEVERITY = {
    "low": Severity.LOW,
    "moderate": Severity.MEDIUM,
    "important": Severity.HIGH,
    "critical": Severity.CRITICAL,
}


def _string(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key!r} must be a string")
    return value


def _objects(data: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, Mapping) for v in value):
        raise ValueError(f"{key!r} must be a list of JSON objects")
    return value


@dataclass
class Package:
    """A package build fixed by an erratum."""

    name: str = ""
    epoch: str = ""
    version: str = ""
    release: str = ""
    arch: str = ""
    filename: str = ""


@dataclass
class Reference:
    """A reference attached to an erratum."""

    href: str = ""
    id: str = ""
    title: str = ""
    type: str = ""


@dataclass
class RLSA:
    """A Rocky Linux security advisory."""

    id: str = ""
    title: str = ""
    severity: str = ""
    description: str = ""
    packages: list[Package] = field(default_factory=list)
    references: list[Reference] = field(default_factory=list)
    cve_ids: list[str] = field(default_factory=list)
    issued_date: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> RLSA:
        """Build from the JSON form; raises ValueError on a malformed document."""
        if not isinstance(data, Mapping):
            raise ValueError("erratum must be a JSON object")
        cve_ids = data.get("cveids") or []
        if not isinstance(cve_ids, list) or not all(isinstance(c, str) for c in cve_ids):
            raise ValueError("'cveids' must be a list of strings")
        issued = data.get("issued") or {}
        if not isinstance(issued, Mapping):
            raise ValueError("'issued' must be a JSON object")
        return cls(
            id=_string(data, "id"),
            title=_string(data, "title"),
            severity=_string(data, "severity"),
            description=_string(data, "description"),
            packages=[
                Package(
                    name=_string(pkg, "name"),
                    epoch=_string(pkg, "epoch"),
                    version=_string(pkg, "version"),
                    release=_string(pkg, "release"),
                    arch=_string(pkg, "arch"),
                    filename=_string(pkg, "filename"),
                )
                for pkg in _objects(data, "packages")
            ],
            references=[
                Reference(
                    href=_string(ref, "href"),
                    id=_string(ref, "id"),
                    title=_string(ref, "title"),
                    type=_string(ref, "type"),
                )
                for ref in _objects(data, "references")
            ],
            cve_ids=list(cve_ids),
            issued_date=_string(issued, "date"),
        )


@dataclass
class PutInput:
    """Everything saved for one CVE on one platform."""

    platform_name: str = ""
    cve_id: str = ""
    vuln: VulnerabilityDetail = field(default_factory=VulnerabilityDetail)
    advisories: dict[str, Advisories] = field(default_factory=dict)
    erratum: RLSA = field(default_factory=RLSA)


def _decode(text: str) -> RLSA:
    try:
        return RLSA.from_dict(json.loads(text))
    except ValueError as exc:
        raise ValueError(f"failed to decode Rocky erratum: {exc}") from exc


def _construct_version(epoch: str, version: str, release: str) -> str:
    text = f"{epoch}:" if epoch not in ("", "0") else ""
    text += version
    if release:
        text += f"-{release}"
    return text


def generalize_severity(severity: str) -> Severity:
    """Map an erratum severity onto a severity."""
    return _SEVERITY.get(severity.lower(), Severity.UNKNOWN)


def fixed_version(prev_version: str, new_version: str, arch: str) -> str:
    """Package-level fixed version: only x86_64 and noarch builds replace it."""
    if arch in ("x86_64", "noarch"):
        return new_version
    return prev_version


def _merge(advisories: dict[str, Advisories], pkg: Package, vendor_id: str) -> None:
    version = _construct_version(pkg.epoch, pkg.version, pkg.release)
    current = advisories.get(pkg.name)
    if current is None:
        # Non-x86_64 arches keep "0.0.0" so older readers see no fix.
        advisories[pkg.name] = Advisories(
            fixed_version=fixed_version("0.0.0", version, pkg.arch),
            entries=[Advisory(fixed_version=version, arches=[pkg.arch], vendor_ids=[vendor_id])],
        )
        return

    current.fixed_version = fixed_version(current.fixed_version, version, pkg.arch)
    match = next((e for e in current.entries if e.fixed_version == version), None)
    if match is None:
        current.entries.append(
            Advisory(fixed_version=version, arches=[pkg.arch], vendor_ids=[vendor_id])
        )
        return
    if pkg.arch not in match.arches:
        match.arches.append(pkg.arch)
    if vendor_id not in match.vendor_ids:
        match.vendor_ids.append(vendor_id)


class RockySource:
    """Loads Rocky Linux errata into a store and reads them back."""

    def __init__(self, store: Store | None = None) -> None:
        self.store = store if store is not None else Store()

    def name(self) -> SourceID:
        return SourceID.ROCKY

    def update(self, directory: str | os.PathLike[str]) -> None:
        """Read every erratum under <directory>/vuln-list/rocky and save it."""
        root = Path(directory) / "vuln-list" / ROCKY_DIR
        errata = self._parse(root)
        with self.store.batch_update():
            for major_ver, items in errata.items():
                platform_name = PLATFORM_FORMAT.format(major_ver)
                self.store.put_data_source(platform_name, SOURCE)
                self._commit(platform_name, items)

    def _parse(self, root: Path) -> dict[str, list[RLSA]]:
        errata: dict[str, list[RLSA]] = {}
        for path, text in walk_json(root):
            erratum = _decode(text)
            dirs = path.relative_to(root).parts
            if len(dirs) != 5:
                logger.info("Invalid path: %s", path)
                continue
            # Errata may sit under a minor version such as 8.5.
            major_ver = dirs[0].split(".", 1)[0]
            repo, arch = dirs[1], dirs[2]
            if repo not in TARGET_REPOS:
                logger.info("Unsupported Rocky repo: %s", repo)
                continue
            if arch not in TARGET_ARCHES:
                logger.info("Unsupported Rocky arch: %s", arch)
                continue
            errata.setdefault(major_ver, []).append(erratum)
        return errata

    def _commit(self, platform_name: str, errata: list[RLSA]) -> None:
        saved: dict[str, PutInput] = {}
        for erratum in errata:
            for cve_id in erratum.cve_ids:
                existing = saved.get(cve_id)
                advisories = existing.advisories if existing else {}
                for pkg in erratum.packages:
                    # Modular packages are left out.
                    if ".module+el" in pkg.release:
                        continue
                    _merge(advisories, pkg, erratum.id)
                if not advisories:
                    continue
                vuln = VulnerabilityDetail(
                    severity=generalize_severity(erratum.severity),
                    references=[ref.href for ref in erratum.references],
                    title=erratum.title,
                    description=erratum.description,
                )
                saved[cve_id] = PutInput(
                    platform_name=platform_name,
                    cve_id=cve_id,
                    vuln=vuln,
                    advisories=advisories,
                    erratum=erratum,
                )
        for put_input in saved.values():
            self.put(put_input)

    def put(self, put_input: PutInput) -> None:
        """Save the detail, the ID and the advisories of one CVE."""
        self.store.put_vulnerability_detail(put_input.cve_id, SourceID.ROCKY, put_input.vuln)
        self.store.put_vulnerability_id(put_input.cve_id)
        for pkg_name, advisory in put_input.advisories.items():
            for entry in advisory.entries:
                entry.arches.sort()
                entry.vendor_ids.sort()
            self.store.put_advisory_detail(
                put_input.cve_id, pkg_name, [put_input.platform_name], advisory
            )

    def get(self, release: str, pkg_name: str, arch: str) -> list[Advisory]:
        """Advisories for a package on one release and architecture."""
        bucket = PLATFORM_FORMAT.format(release)
        try:
            records = self.store.for_each_advisory([bucket], pkg_name)
        except ValueError as exc:
            raise ValueError(f"unable to iterate advisories: {exc}") from exc

        result: list[Advisory] = []
        for vuln_id, record in records.items():
            try:
                adv = Advisories.from_dict(record.content)
            except (ValueError, TypeError) as exc:
                raise ValueError(f"failed to unmarshal advisory JSON: {exc}") from exc

            # Older data has no entries, only a fixed version and custom fields.
            if not adv.entries:
                result.append(
                    Advisory(
                        vulnerability_id=vuln_id,
                        fixed_version=adv.fixed_version,
                        data_source=record.source,
                        custom=adv.custom,
                    )
                )
                continue

            for entry in adv.entries:
                if arch not in entry.arches:
                    continue
                entry.vulnerability_id = vuln_id
                entry.data_source = record.source
                result.append(entry)
        return result