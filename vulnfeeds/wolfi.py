"""Wolfi security database: package fixes keyed by fixed version."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .store import Advisory, DataSource, Store, walk_json
from .vulnerability import SourceID

WOLFI_DIR = "wolfi"
DISTRO_NAME = "wolfi"

SOURCE = DataSource(
    id=SourceID.WOLFI,
    name="Wolfi Secdb",
    url="https://packages.wolfi.dev/os/security.json",
)


@dataclass
class _SecDbEntry:
    pkg_name: str = ""
    secfixes: dict[str, list[str]] = field(default_factory=dict)


def _decode(text: str) -> _SecDbEntry:
    try:
        data = json.loads(text)
        if not isinstance(data, Mapping):
            raise ValueError("advisory must be a JSON object")
        name = data.get("name") or ""
        if not isinstance(name, str):
            raise ValueError("'name' must be a string")
        raw_fixes = data.get("secfixes") or {}
        if not isinstance(raw_fixes, Mapping):
            raise ValueError("'secfixes' must be a JSON object")
        secfixes: dict[str, list[str]] = {}
        for version, ids in raw_fixes.items():
            ids = ids or []
            if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
                raise ValueError(f"secfixes for {version!r} must be a list of strings")
            secfixes[version] = list(ids)
    except ValueError as exc:
        raise ValueError(f"failed to decode Wolfi advisory: {exc}") from exc
    return _SecDbEntry(pkg_name=name, secfixes=secfixes)


def _cve_ids(entry: str) -> list[str]:
    # Entries may carry remarks, e.g. "CVE-2017-2616 (+ regression fix)".
    ids = (word.replace("CVE_", "CVE-") for word in entry.split())
    return [cve_id for cve_id in ids if cve_id.startswith("CVE-")]


class WolfiSource:
    """Loads Wolfi advisories into a store and reads them back."""

    def __init__(self, store: Store | None = None) -> None:
        self.store = store if store is not None else Store()

    def name(self) -> SourceID:
        return SourceID.WOLFI

    def update(self, directory: str | os.PathLike[str]) -> None:
        """Read every advisory under <directory>/vuln-list/wolfi and save it."""
        root = Path(directory) / "vuln-list" / WOLFI_DIR
        entries = [_decode(text) for _, text in walk_json(root)]
        with self.store.batch_update():
            for entry in entries:
                self.store.put_data_source(DISTRO_NAME, SOURCE)
                self._save_secfixes(entry)

    def _save_secfixes(self, entry: _SecDbEntry) -> None:
        for fixed, vuln_ids in entry.secfixes.items():
            advisory = Advisory(fixed_version=fixed)
            for vuln_id in vuln_ids:
                for cve_id in _cve_ids(vuln_id):
                    self.store.put_advisory_detail(
                        cve_id, entry.pkg_name, [DISTRO_NAME], advisory
                    )
                    self.store.put_vulnerability_id(cve_id)

    def get(self, release: str, pkg_name: str) -> list[Advisory]:
        """Advisories for a package; the release is ignored."""
        try:
            return self.store.get_advisories(DISTRO_NAME, pkg_name)
        except ValueError as exc:
            raise ValueError(f"failed to get Wolfi advisories: {exc}") from exc