"""Ubuntu CVE Tracker advisories."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, NamedTuple

from .store import Advisory, DataSource, Store, walk_json
from .vulnerability import Severity, SourceID, VulnerabilityDetail

logger = logging.getLogger(__name__)

UBUNTU_DIR = "ubuntu"
PLATFORM_FORMAT = "ubuntu {}"

TARGET_STATUSES = frozenset({"needed", "deferred", "released"})

UBUNTU_RELEASES_MAPPING: dict[str, str] = {
    "precise": "12.04",
    "quantal": "12.10",
    "raring": "13.04",
    "saucy": "13.10",
    "trusty": "14.04",
    "utopic": "14.10",
    "vivid": "15.04",
    "wily": "15.10",
    "xenial": "16.04",
    "yakkety": "16.10",
    "zesty": "17.04",
    "artful": "17.10",
    "bionic": "18.04",
    "cosmic": "18.10",
    "disco": "19.04",
    "eoan": "19.10",
    "focal": "20.04",
    "groovy": "20.10",
    "hirsute": "21.04",
    "impish": "21.10",
    "jammy": "22.04",
    "kinetic": "22.10",
    "lunar": "23.04",
    "mantic": "23.10",
    # ESM versions
    "precise/esm": "12.04-ESM",
    "trusty/esm": "14.04-ESM",
    "esm-infra/xenial": "16.04-ESM",
}

SOURCE = DataSource(
    id=SourceID.UBUNTU,
    name="Ubuntu CVE Tracker",
    url="https://git.launchpad.net/ubuntu-cve-tracker",
)

_PRIORITY_SEVERITY = {
    "untriaged": Severity.UNKNOWN,
    "negligible": Severity.LOW,
    "low": Severity.LOW,
    "medium": Severity.MEDIUM,
    "high": Severity.HIGH,
    "critical": Severity.CRITICAL,
}


class _Status(NamedTuple):
    status: str
    note: str


def _field(data: Mapping[str, Any], name: str) -> Any:
    """Value of a key, matched without regard to case."""
    if name in data:
        return data[name]
    lowered = name.lower()
    for key, value in data.items():
        if isinstance(key, str) and key.lower() == lowered:
            return value
    return None


def _string(data: Mapping[str, Any], name: str) -> str:
    value = _field(data, name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{name!r} must be a string")
    return value


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{what} must be a JSON object")
    return value


@dataclass
class UbuntuCVE:
    """One entry of the Ubuntu CVE tracker."""

    description: str = ""
    candidate: str = ""
    priority: str = ""
    patches: dict[str, dict[str, _Status]] = field(default_factory=dict)
    references: list[str] = field(default_factory=list)
    public_date: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> UbuntuCVE:
        """Build from the JSON form; raises ValueError on a malformed document."""
        data = _mapping(data, "Ubuntu CVE")
        patches: dict[str, dict[str, _Status]] = {}
        for pkg_name, patch in _mapping(_field(data, "Patches"), "'Patches'").items():
            releases: dict[str, _Status] = {}
            for release, status in _mapping(patch, f"patch of {pkg_name!r}").items():
                status = _mapping(status, f"status of {pkg_name!r} in {release!r}")
                releases[release] = _Status(_string(status, "Status"), _string(status, "Note"))
            patches[pkg_name] = releases
        references = _field(data, "References") or []
        if not isinstance(references, list) or not all(isinstance(r, str) for r in references):
            raise ValueError("'References' must be a list of strings")
        return cls(
            description=_string(data, "description"),
            candidate=_string(data, "Candidate"),
            priority=_string(data, "Priority"),
            patches=patches,
            references=list(references),
            public_date=_string(data, "PublicDate"),
        )


def _decode(text: str) -> UbuntuCVE:
    try:
        return UbuntuCVE.from_dict(json.loads(text))
    except ValueError as exc:
        raise ValueError(f"failed to decode Ubuntu JSON: {exc}") from exc


PutFunc = Callable[[Store, UbuntuCVE], None]


def default_put(store: Store, cve: UbuntuCVE) -> None:
    """Save one tracker entry for every release it is tracked on."""
    if not isinstance(cve, UbuntuCVE):
        raise TypeError("unknown type")

    for pkg_name, patch in cve.patches.items():
        for release, status in patch.items():
            if status.status not in TARGET_STATUSES:
                continue
            os_version = UBUNTU_RELEASES_MAPPING.get(release)
            if os_version is None:
                continue
            platform_name = PLATFORM_FORMAT.format(os_version)
            store.put_data_source(platform_name, SOURCE)

            advisory = Advisory()
            if status.status == "released":
                advisory.fixed_version = status.note
            store.put_advisory_detail(cve.candidate, pkg_name, [platform_name], advisory)

            detail = VulnerabilityDetail(
                severity=severity_from_priority(cve.priority),
                references=list(cve.references),
                description=cve.description,
            )
            store.put_vulnerability_detail(cve.candidate, SourceID.UBUNTU, detail)
            store.put_vulnerability_id(cve.candidate)


def severity_from_priority(priority: str) -> Severity:
    """Convert an Ubuntu priority into a severity."""
    return _PRIORITY_SEVERITY.get(priority, Severity.UNKNOWN)


class UbuntuSource:
    """Loads Ubuntu CVE tracker entries into a store and reads them back."""

    def __init__(self, store: Store | None = None, put: PutFunc | None = None) -> None:
        self.store = store if store is not None else Store()
        self._put = put if put is not None else default_put

    def name(self) -> SourceID:
        return SourceID.UBUNTU

    def update(self, directory: str | os.PathLike[str]) -> None:
        """Read every entry under <directory>/vuln-list/ubuntu and save it."""
        root = Path(directory) / "vuln-list" / UBUNTU_DIR
        cves = [_decode(text) for _, text in walk_json(root)]
        logger.info("Saving Ubuntu DB")
        with self.store.batch_update():
            for cve in cves:
                self._put(self.store, cve)

    def get(self, release: str, pkg_name: str) -> list[Advisory]:
        """Advisories for a package on one Ubuntu release."""
        bucket = PLATFORM_FORMAT.format(release)
        try:
            return self.store.get_advisories(bucket, pkg_name)
        except ValueError as exc:
            raise ValueError(f"failed to get Ubuntu advisories: {exc}") from exc