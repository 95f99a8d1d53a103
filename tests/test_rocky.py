import json

import pytest

from vulnfeeds.rocky import (
    RLSA,
    Package,
    PutInput,
    RockySource,
    fixed_version,
    generalize_severity,
)
from vulnfeeds.store import Advisories, Advisory, DataSource, Store
from vulnfeeds.vulnerability import Severity, SourceID, VulnerabilityDetail

ROCKY_SOURCE = {
    "ID": "rocky",
    "Name": "Rocky Linux updateinfo",
    "URL": "https://download.rockylinux.org/pub/rocky/",
}
BIND_REF = "https://access.redhat.com/hydra/rest/securitydata/cve/CVE-2021-25215.json"
BIND_TITLE = "Important: bind security update"
BIND_DESC = "For more information visit https://errata.rockylinux.org/RLSA-2021:1989"


def _pkg(name, version, release, arch, epoch="32"):
    return {
        "name": name,
        "epoch": epoch,
        "version": version,
        "release": release,
        "arch": arch,
        "filename": f"{name}-{version}-{release}.{arch}.rpm",
    }


def _erratum(rlsa_id, packages, cve_ids, title=BIND_TITLE, description=BIND_DESC,
             severity="Important", refs=(BIND_REF,)):
    return {
        "id": rlsa_id,
        "title": title,
        "severity": severity,
        "description": description,
        "packages": packages,
        "references": [{"href": ref, "id": "", "title": "", "type": "cve"} for ref in refs],
        "cveids": cve_ids,
        "issued": {"date": "2021-06-09"},
    }


def _write(tmp_path, rel, content):
    path = tmp_path / "vuln-list" / "rocky" / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content if isinstance(content, str) else json.dumps(content), encoding="utf-8")


def _update(tmp_path):
    source = RockySource(Store())
    source.update(tmp_path)
    return source


def test_update_happy(tmp_path):
    _write(tmp_path, "8/BaseOS/aarch64/2021/RLSA-2021-1989.json", _erratum(
        "RLSA-2021:1989",
        [
            _pkg("bind-export-libs", "9.11.26", "4.el8_4", "aarch64"),
            _pkg("bind-export-devel", "9.11.26", "4.el8_4", "aarch64"),
        ],
        ["CVE-2021-25215"],
    ))
    _write(tmp_path, "8/BaseOS/x86_64/2021/RLSA-2021-1989.json", _erratum(
        "RLSA-2021:1989",
        [
            _pkg("bind-export-libs", "9.11.26", "4.el8_4", "x86_64"),
            _pkg("bind-export-libs", "9.11.26", "4.el8_4", "i686"),
            _pkg("bind-export-devel", "9.11.26", "4.el8_4", "i686"),
            _pkg("bind-export-devel", "9.11.26", "4.el8_4", "x86_64"),
        ],
        ["CVE-2021-25215"],
    ))
    store = _update(tmp_path).store

    assert store.get(["data-source", "rocky 8"]) == ROCKY_SOURCE
    expected = {
        "FixedVersion": "32:9.11.26-4.el8_4",
        "Entries": [
            {
                "FixedVersion": "32:9.11.26-4.el8_4",
                "Arches": ["aarch64", "i686", "x86_64"],
                "VendorIDs": ["RLSA-2021:1989"],
            }
        ],
    }
    for name in ("bind-export-libs", "bind-export-devel"):
        assert store.get(["advisory-detail", "CVE-2021-25215", "rocky 8", name]) == expected
    assert store.get(["vulnerability-detail", "CVE-2021-25215", "rocky"]) == {
        "Severity": 3,
        "References": [BIND_REF],
        "Title": BIND_TITLE,
        "Description": BIND_DESC,
    }
    assert store.get(["vulnerability-id", "CVE-2021-25215"]) == {}


def test_update_different_versions(tmp_path):
    _write(tmp_path, "8/BaseOS/aarch64/2021/RLSA-2021-000.json", _erratum(
        "RLSA-2021:000",
        [_pkg("bind-export-devel", "9.11.26", "4.el8_4", "aarch64")],
        ["CVE-2021-25215"],
    ))
    _write(tmp_path, "8/BaseOS/x86_64/2021/RLSA-2021-0000.json", _erratum(
        "RLSA-2021:0000",
        [
            _pkg("bind-export-devel", "7.11.26", "4.el8_4", "x86_64"),
            _pkg("bind-export-devel", "8.11.26", "4.el8_4", "i686"),
        ],
        ["CVE-2021-25215"],
    ))
    store = _update(tmp_path).store

    assert store.get(["data-source", "rocky 8"]) == ROCKY_SOURCE
    assert store.get(["advisory-detail", "CVE-2021-25215", "rocky 8", "bind-export-devel"]) == {
        "FixedVersion": "32:7.11.26-4.el8_4",
        "Entries": [
            {"FixedVersion": "32:9.11.26-4.el8_4", "Arches": ["aarch64"], "VendorIDs": ["RLSA-2021:000"]},
            {"FixedVersion": "32:7.11.26-4.el8_4", "Arches": ["x86_64"], "VendorIDs": ["RLSA-2021:0000"]},
            {"FixedVersion": "32:8.11.26-4.el8_4", "Arches": ["i686"], "VendorIDs": ["RLSA-2021:0000"]},
        ],
    }
    assert store.get(["vulnerability-detail", "CVE-2021-25215", "rocky"]) == {
        "Severity": 3,
        "References": [BIND_REF],
        "Title": BIND_TITLE,
        "Description": BIND_DESC,
    }
    assert store.get(["vulnerability-id", "CVE-2021-25215"]) == {}


def test_update_noarch(tmp_path):
    refs = (
        "https://cve.mitre.org/cgi-bin/cvename.cgi?name=CVE-2022-42010",
        "https://errata.rockylinux.org/RLSA-2023:0335",
    )
    _write(tmp_path, "9/BaseOS/x86_64/2023/RLSA-2023-0335.json", _erratum(
        "RLSA-2023:0335",
        [_pkg("dbus-common", "1.12.20", "7.el9_1", "noarch", epoch="1")],
        ["CVE-2022-42010"],
        title="Moderate: dbus security update",
        description="D-Bus is a system for sending messages between applications...",
        severity="Moderate",
        refs=refs,
    ))
    store = _update(tmp_path).store

    assert store.get(["data-source", "rocky 9"]) == ROCKY_SOURCE
    assert store.get(["advisory-detail", "CVE-2022-42010", "rocky 9", "dbus-common"]) == {
        "FixedVersion": "1:1.12.20-7.el9_1",
        "Entries": [
            {"FixedVersion": "1:1.12.20-7.el9_1", "Arches": ["noarch"], "VendorIDs": ["RLSA-2023:0335"]}
        ],
    }
    assert store.get(["vulnerability-detail", "CVE-2022-42010", "rocky"]) == {
        "Severity": 2,
        "References": list(refs),
        "Title": "Moderate: dbus security update",
        "Description": "D-Bus is a system for sending messages between applications...",
    }
    assert store.get(["vulnerability-id", "CVE-2022-42010"]) == {}


def test_update_aarch64_only(tmp_path):
    _write(tmp_path, "8/BaseOS/aarch64/2021/RLSA-2021-1989.json", _erratum(
        "RLSA-2021:1989",
        [_pkg("bind-export-devel", "9.11.26", "4.el8_4", "aarch64")],
        ["CVE-2021-25215"],
    ))
    store = _update(tmp_path).store

    assert store.get(["data-source", "rocky 8"]) == ROCKY_SOURCE
    assert store.get(["advisory-detail", "CVE-2021-25215", "rocky 8", "bind-export-devel"]) == {
        "FixedVersion": "0.0.0",
        "Entries": [
            {"FixedVersion": "32:9.11.26-4.el8_4", "Arches": ["aarch64"], "VendorIDs": ["RLSA-2021:1989"]}
        ],
    }
    assert store.get(["vulnerability-id", "CVE-2021-25215"]) == {}


def test_update_duplicates(tmp_path):
    ref = "https://access.redhat.com/hydra/rest/securitydata/cve/CVE-2022-29117.json"
    title = "Important: .NET 5.0 security, bug fix, and enhancement update"
    _write(tmp_path, "8/AppStream/aarch64/2022/RLSA-2022-0000.json", _erratum(
        "RLSA-2022:0000",
        [_pkg("aspnetcore-runtime-6.0", "6.0.5", "1.el8_6", "aarch64", epoch="0")],
        ["CVE-2022-29117"],
        title=title,
        description="For more information visit https://errata.rockylinux.org/RLSA-2022:0000",
        refs=(ref,),
    ))
    _write(tmp_path, "8/AppStream/x86_64/2022/RLSA-2022-2200.json", _erratum(
        "RLSA-2022:2200",
        [_pkg("aspnetcore-runtime-6.0", "6.0.5", "1.el8_6", "x86_64", epoch="0")],
        ["CVE-2022-29117"],
        title=title,
        description="For more information visit https://errata.rockylinux.org/RLSA-2022:2200",
        refs=(ref,),
    ))
    store = _update(tmp_path).store

    assert store.get(["data-source", "rocky 8"]) == ROCKY_SOURCE
    assert store.get(
        ["advisory-detail", "CVE-2022-29117", "rocky 8", "aspnetcore-runtime-6.0"]
    ) == {
        "FixedVersion": "6.0.5-1.el8_6",
        "Entries": [
            {
                "FixedVersion": "6.0.5-1.el8_6",
                "Arches": ["aarch64", "x86_64"],
                "VendorIDs": ["RLSA-2022:0000", "RLSA-2022:2200"],
            }
        ],
    }
    assert store.get(["vulnerability-detail", "CVE-2022-29117", "rocky"]) == {
        "Severity": 3,
        "References": [ref],
        "Title": title,
        "Description": "For more information visit https://errata.rockylinux.org/RLSA-2022:2200",
    }
    assert store.get(["vulnerability-id", "CVE-2022-29117"]) == {}


def test_update_skips_modular_packages(tmp_path):
    _write(tmp_path, "8/AppStream/x86_64/2021/RLSA-2021-1111.json", _erratum(
        "RLSA-2021:1111",
        [_pkg("nodejs", "14.17.0", "1.module+el8.4.0+593+7a0f0f47", "x86_64", epoch="1")],
        ["CVE-2021-22918"],
    ))
    store = _update(tmp_path).store
    assert store.has_bucket(["advisory-detail"]) is False
    assert store.get(["vulnerability-detail", "CVE-2021-22918", "rocky"]) is None
    assert store.get(["vulnerability-id", "CVE-2021-22918"]) is None


def test_update_skips_unsupported_paths(tmp_path):
    doc = _erratum("RLSA-2021:1989", [_pkg("bind", "9.11.26", "4.el8_4", "x86_64")], ["CVE-2021-25215"])
    _write(tmp_path, "8/Devel/x86_64/2021/RLSA-2021-1989.json", doc)
    _write(tmp_path, "8/BaseOS/ppc64le/2021/RLSA-2021-1989.json", doc)
    _write(tmp_path, "8/BaseOS/RLSA-2021-1989.json", doc)
    store = _update(tmp_path).store
    assert store.has_bucket(["advisory-detail"]) is False
    assert store.get(["data-source", "rocky 8"]) is None


def test_update_minor_version_directory(tmp_path):
    _write(tmp_path, "8.5/BaseOS/x86_64/2021/RLSA-2021-1989.json", _erratum(
        "RLSA-2021:1989", [_pkg("bind", "9.11.26", "4.el8_4", "x86_64")], ["CVE-2021-25215"]
    ))
    store = _update(tmp_path).store
    assert store.get(["data-source", "rocky 8"]) == ROCKY_SOURCE
    assert store.get(["advisory-detail", "CVE-2021-25215", "rocky 8", "bind"])["FixedVersion"] == (
        "32:9.11.26-4.el8_4"
    )


def test_update_sad(tmp_path):
    _write(tmp_path, "8/BaseOS/x86_64/2021/broken.json", "[")
    with pytest.raises(ValueError, match="failed to decode Rocky erratum"):
        RockySource().update(tmp_path)


def _get_store():
    store = Store()
    store.put_data_source("rocky 9", DataSource(**{
        "id": "rocky",
        "name": "Rocky Linux updateinfo",
        "url": "https://download.rockylinux.org/pub/rocky/",
    }))
    store.put_advisory_detail("CVE-2022-0396", "bind", ["rocky 9"], Advisories(
        fixed_version="32:9.16.23-0.9.el8.1",
        entries=[Advisory(
            fixed_version="32:9.16.23-0.9.el8.1",
            arches=["aarch64", "x86_64"],
            vendor_ids=["RLSA-2022:7643"],
        )],
    ))
    store.put_advisory_detail("CVE-2022-24903", "rsyslog", ["rocky 9"], Advisories(
        fixed_version="8.2102.0-7.el8_6.1",
        entries=[
            Advisory(fixed_version="8.2102.0-7.el8_6.1", arches=["x86_64"], vendor_ids=["RLSA-2022:4803"]),
            Advisory(fixed_version="8.2102.0-7.el8_6.2", arches=["aarch64"], vendor_ids=["RLSA-2022:4799"]),
        ],
    ))
    return store


EXPECTED_SOURCE = DataSource(
    id="rocky",
    name="Rocky Linux updateinfo",
    url="https://download.rockylinux.org/pub/rocky/",
)


def test_get_same_fixed_version():
    got = RockySource(_get_store()).get("9", "bind", "x86_64")
    assert got == [Advisory(
        vulnerability_id="CVE-2022-0396",
        fixed_version="32:9.16.23-0.9.el8.1",
        arches=["aarch64", "x86_64"],
        vendor_ids=["RLSA-2022:7643"],
        data_source=EXPECTED_SOURCE,
    )]


def test_get_different_fixed_versions_for_arches():
    got = RockySource(_get_store()).get("9", "rsyslog", "aarch64")
    assert got == [Advisory(
        vulnerability_id="CVE-2022-24903",
        fixed_version="8.2102.0-7.el8_6.2",
        arches=["aarch64"],
        vendor_ids=["RLSA-2022:4799"],
        data_source=EXPECTED_SOURCE,
    )]


def test_get_old_schema_without_entries():
    store = Store()
    store.put_data_source("rocky 9", EXPECTED_SOURCE)
    store.put_advisory_detail(
        "CVE-2022-0396", "bind", ["rocky 9"], Advisory(fixed_version="32:9.16.23-0.9.el8.1")
    )
    got = RockySource(store).get("9", "bind", "aarch64")
    assert got == [Advisory(
        vulnerability_id="CVE-2022-0396",
        fixed_version="32:9.16.23-0.9.el8.1",
        data_source=EXPECTED_SOURCE,
    )]


def test_get_broken_json():
    store = Store()
    store.put_advisory_detail("CVE-2022-0396", "bind", ["rocky 9"], "broken")
    with pytest.raises(ValueError, match="failed to unmarshal advisory JSON"):
        RockySource(store).get("9", "bind", "aarch64")


def test_get_missing_package_is_empty():
    assert RockySource(_get_store()).get("9", "openssl", "x86_64") == []


def test_put_sorts_arches_and_vendor_ids():
    source = RockySource()
    source.put(PutInput(
        platform_name="rocky 8",
        cve_id="CVE-2021-25215",
        vuln=VulnerabilityDetail(severity=Severity.HIGH, title=BIND_TITLE),
        advisories={"bind": Advisories(
            fixed_version="1.0-1",
            entries=[Advisory(fixed_version="1.0-1", arches=["x86_64", "aarch64"],
                              vendor_ids=["RLSA-2", "RLSA-1"])],
        )},
    ))
    assert source.store.get(["advisory-detail", "CVE-2021-25215", "rocky 8", "bind"]) == {
        "FixedVersion": "1.0-1",
        "Entries": [{"FixedVersion": "1.0-1", "Arches": ["aarch64", "x86_64"],
                     "VendorIDs": ["RLSA-1", "RLSA-2"]}],
    }
    assert source.store.get(["vulnerability-detail", "CVE-2021-25215", "rocky"]) == {
        "Severity": 3,
        "Title": BIND_TITLE,
    }


def test_rlsa_from_dict():
    erratum = RLSA.from_dict(_erratum(
        "RLSA-2021:1989", [_pkg("bind", "9.11.26", "4.el8_4", "x86_64")], ["CVE-2021-25215"]
    ))
    assert erratum.id == "RLSA-2021:1989"
    assert erratum.cve_ids == ["CVE-2021-25215"]
    assert erratum.packages == [Package(
        name="bind", epoch="32", version="9.11.26", release="4.el8_4",
        arch="x86_64", filename="bind-9.11.26-4.el8_4.x86_64.rpm",
    )]
    assert erratum.references[0].href == BIND_REF
    assert erratum.issued_date == "2021-06-09"


def test_rlsa_from_dict_rejects_bad_types():
    with pytest.raises(ValueError):
        RLSA.from_dict({"cveids": "CVE-2021-25215"})


@pytest.mark.parametrize(
    "severity, expected",
    [
        ("Low", Severity.LOW),
        ("moderate", Severity.MEDIUM),
        ("Important", Severity.HIGH),
        ("CRITICAL", Severity.CRITICAL),
        ("", Severity.UNKNOWN),
        ("other", Severity.UNKNOWN),
    ],
)
def test_generalize_severity(severity, expected):
    assert generalize_severity(severity) == expected


@pytest.mark.parametrize(
    "arch, expected",
    [("x86_64", "2.0"), ("noarch", "2.0"), ("aarch64", "1.0"), ("i686", "1.0")],
)
def test_fixed_version(arch, expected):
    assert fixed_version("1.0", "2.0", arch) == expected


def test_name():
    assert RockySource().name() == SourceID.ROCKY