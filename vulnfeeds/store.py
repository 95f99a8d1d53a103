"""In-memory bucket store for data sources, advisories and vulnerability details."""

from __future__ import annotations

import copy
import errno
import json
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Mapping, NamedTuple, Sequence

from .vulnerability import Severity, VulnerabilityDetail

DATA_SOURCE_BUCKET = "data-source"
ADVISORY_DETAIL_BUCKET = "advisory-detail"
VULNERABILITY_DETAIL_BUCKET = "vulnerability-detail"
VULNERABILITY_ID_BUCKET = "vulnerability-id"


def _text(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def _require_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{what} must be a JSON object")
    return data


@dataclass
class DataSource:
    """Where a set of advisories comes from."""

    id: str = ""
    name: str = ""
    url: str = ""

    def to_dict(self) -> dict[str, Any]:
        pairs = {"ID": _text(self.id), "Name": self.name, "URL": self.url}
        return {key: value for key, value in pairs.items() if value}

    @classmethod
    def from_dict(cls, data: Any) -> DataSource:
        data = _require_mapping(data, "data source")
        return cls(
            id=str(data.get("ID", "")),
            name=str(data.get("Name", "")),
            url=str(data.get("URL", "")),
        )


@dataclass
class Advisory:
    """One fix statement for a package."""

    vulnerability_id: str = ""
    vendor_ids: list[str] = field(default_factory=list)
    arches: list[str] = field(default_factory=list)
    severity: Severity = Severity.UNKNOWN
    fixed_version: str = ""
    affected_version: str = ""
    patched_versions: list[str] = field(default_factory=list)
    unaffected_versions: list[str] = field(default_factory=list)
    custom: Any = None
    data_source: DataSource | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON form; empty fields and the data source are left out."""
        pairs = {
            "VulnerabilityID": self.vulnerability_id,
            "VendorIDs": list(self.vendor_ids),
            "Arches": list(self.arches),
            "Severity": int(self.severity),
            "FixedVersion": self.fixed_version,
            "AffectedVersion": self.affected_version,
            "PatchedVersions": list(self.patched_versions),
            "UnaffectedVersions": list(self.unaffected_versions),
            "Custom": self.custom,
        }
        return {key: value for key, value in pairs.items() if value}

    @classmethod
    def from_dict(cls, data: Any) -> Advisory:
        data = _require_mapping(data, "advisory")
        return cls(
            vulnerability_id=str(data.get("VulnerabilityID", "")),
            vendor_ids=list(data.get("VendorIDs") or []),
            arches=list(data.get("Arches") or []),
            severity=Severity(int(data.get("Severity", 0))),
            fixed_version=str(data.get("FixedVersion", "")),
            affected_version=str(data.get("AffectedVersion", "")),
            patched_versions=list(data.get("PatchedVersions") or []),
            unaffected_versions=list(data.get("UnaffectedVersions") or []),
            custom=data.get("Custom"),
        )


@dataclass
class Advisories:
    """Advisories for one package, grouped by fixed version."""

    fixed_version: str = ""
    entries: list[Advisory] = field(default_factory=list)
    custom: Any = None

    def to_dict(self) -> dict[str, Any]:
        pairs = {
            "FixedVersion": self.fixed_version,
            "Entries": [entry.to_dict() for entry in self.entries],
            "Custom": self.custom,
        }
        return {key: value for key, value in pairs.items() if value}

    @classmethod
    def from_dict(cls, data: Any) -> Advisories:
        data = _require_mapping(data, "advisories")
        return cls(
            fixed_version=str(data.get("FixedVersion", "")),
            entries=[Advisory.from_dict(entry) for entry in data.get("Entries") or []],
            custom=data.get("Custom"),
        )


class AdvisoryRecord(NamedTuple):
    """Raw advisory content together with the data source of its bucket."""

    source: DataSource | None
    content: Any


def _encode(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    if isinstance(value, Mapping):
        return {_text(key): _encode(item) for key, item in value.items()}
    return value


class Store:
    """Nested buckets of JSON values, in the layout the sources write."""

    def __init__(self) -> None:
        self._root: dict[str, Any] = {}

    @contextmanager
    def batch_update(self) -> Iterator[Store]:
        """Group writes; everything written inside is undone if an error escapes."""
        snapshot = copy.deepcopy(self._root)
        try:
            yield self
        except BaseException:
            self._root = snapshot
            raise

    def _node(self, keys: Sequence[Any]) -> Any:
        node: Any = self._root
        for key in keys:
            if not isinstance(node, dict):
                return None
            node = node.get(_text(key))
            if node is None:
                return None
        return node

    def _put(self, keys: Sequence[Any], value: Any) -> None:
        names = [_text(key) for key in keys]
        node = self._root
        for name in names[:-1]:
            child = node.setdefault(name, {})
            if not isinstance(child, dict):
                raise ValueError(f"{name!r} holds a value, not a bucket")
            node = child
        if isinstance(node.get(names[-1]), dict):
            raise ValueError(f"{names[-1]!r} is a bucket, not a value")
        node[names[-1]] = json.dumps(_encode(value), sort_keys=True)

    def put_data_source(self, bucket: str, source: DataSource) -> None:
        self._put([DATA_SOURCE_BUCKET, bucket], source)

    def put_advisory_detail(
        self, vuln_id: str, pkg_name: str, nested_buckets: Sequence[str], advisory: Any
    ) -> None:
        self._put([ADVISORY_DETAIL_BUCKET, vuln_id, *nested_buckets, pkg_name], advisory)

    def put_vulnerability_detail(self, vuln_id: str, source_id: str, detail: Any) -> None:
        self._put([VULNERABILITY_DETAIL_BUCKET, vuln_id, source_id], detail)

    def put_vulnerability_id(self, vuln_id: str) -> None:
        self._put([VULNERABILITY_ID_BUCKET, vuln_id], {})

    def get(self, keys: Sequence[Any]) -> Any:
        """Decoded value at a key path, or None if there is no value there."""
        node = self._node(keys)
        if not isinstance(node, str):
            return None
        return json.loads(node)

    def has_bucket(self, keys: Sequence[Any]) -> bool:
        return bool(keys) and isinstance(self._node(keys), dict)

    def get_vulnerability_detail(self, vuln_id: str) -> dict[str, VulnerabilityDetail]:
        """Details of a vulnerability keyed by source; raises ValueError on bad data."""
        bucket = self._node([VULNERABILITY_DETAIL_BUCKET, vuln_id])
        if not isinstance(bucket, dict):
            return {}
        details = {}
        for source_id, raw in bucket.items():
            if not isinstance(raw, str):
                continue
            try:
                details[source_id] = VulnerabilityDetail.from_dict(json.loads(raw))
            except (ValueError, TypeError) as exc:
                raise ValueError(f"failed to unmarshal vulnerability detail JSON: {exc}") from exc
        return details

    def _data_source(self, bucket: str) -> DataSource | None:
        raw = self.get([DATA_SOURCE_BUCKET, bucket])
        if raw is None:
            return None
        source = DataSource.from_dict(raw)
        return source if source != DataSource() else None

    def for_each_advisory(
        self, buckets: Sequence[str], pkg_name: str
    ) -> dict[str, AdvisoryRecord]:
        """Advisory contents for a package under the given buckets, keyed by vulnerability ID."""
        if not buckets:
            raise ValueError("at least one bucket is required")
        source = self._data_source(buckets[0])
        root = self._node([ADVISORY_DETAIL_BUCKET])
        records: dict[str, AdvisoryRecord] = {}
        if not isinstance(root, dict):
            return records
        for vuln_id in sorted(root):
            raw = self._node([ADVISORY_DETAIL_BUCKET, vuln_id, *buckets, pkg_name])
            if isinstance(raw, str):
                records[vuln_id] = AdvisoryRecord(source, json.loads(raw))
        return records

    def get_advisories(self, bucket: str, pkg_name: str) -> list[Advisory]:
        """Advisories for a package in one bucket; raises ValueError on bad data."""
        advisories = []
        for vuln_id, record in self.for_each_advisory([bucket], pkg_name).items():
            try:
                advisory = Advisory.from_dict(record.content)
            except (ValueError, TypeError) as exc:
                raise ValueError(f"failed to unmarshal advisory JSON: {exc}") from exc
            advisory.vulnerability_id = vuln_id
            advisory.data_source = record.source
            advisories.append(advisory)
        return advisories


def walk_json(root: str | os.PathLike[str]) -> Iterator[tuple[Path, str]]:
    """Yield (path, text) for every non-empty file under root, in lexical order."""
    root_path = Path(root)
    if not root_path.exists():
        raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(root_path))
    yield from _walk(root_path)


def _walk(path: Path) -> Iterator[tuple[Path, str]]:
    if path.is_dir():
        for child in sorted(path.iterdir(), key=lambda p: p.name):
            yield from _walk(child)
    elif path.stat().st_size > 0:
        yield path, path.read_text(encoding="utf-8")