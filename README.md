# vulnfeeds

`vulnfeeds` reads security advisory feeds published by Linux distributions
from JSON files on disk, stores them in an in-memory vulnerability store and
answers the question "which advisories affect package *X* on release *Y*?".

Supported feeds:

| Module                | Feed                   | Platform buckets                                   |
|-----------------------|------------------------|----------------------------------------------------|
| `vulnfeeds.ubuntu`    | Ubuntu CVE Tracker     | `ubuntu 18.04`, `ubuntu 22.04`, ...                |
| `vulnfeeds.suse_cvrf` | SUSE / openSUSE CVRF   | `SUSE Linux Enterprise 15.1`, `openSUSE Leap 15.1` |
| `vulnfeeds.rocky`     | Rocky Linux updateinfo | `rocky 8`, `rocky 9`                               |
| `vulnfeeds.wolfi`     | Wolfi secdb            | `wolfi`                                            |

The package has no runtime dependencies beyond the standard library.

## Installation

```
pip install .
```

## Layout of the input data

Each source reads every non-empty file, in lexical order, from a directory
tree below `<directory>/vuln-list/`:

* Ubuntu: `vuln-list/ubuntu/...`
* SUSE: `vuln-list/cvrf/suse/suse/...`; openSUSE: `vuln-list/cvrf/suse/opensuse/...`
* Rocky: `vuln-list/rocky/<version>/<repo>/<arch>/<dir>/<file>`
  (only repos `BaseOS`, `AppStream`, `extras` and arches `x86_64`, `aarch64`;
  a minor version such as `8.5` is filed under its major version `8`;
  other paths are logged and skipped)
* Wolfi: `vuln-list/wolfi/...`

A missing directory makes `update` raise `FileNotFoundError`. A file that
cannot be decoded makes it raise `ValueError` whose message names the feed,
for example `failed to decode Wolfi advisory`. Writes made by one `update`
call are undone when it fails.

## Usage

```python
from vulnfeeds.store import Store
from vulnfeeds.ubuntu import UbuntuSource
from vulnfeeds.rocky import RockySource
from vulnfeeds.suse_cvrf import Distribution, SuseCvrfSource
from vulnfeeds.wolfi import WolfiSource

store = Store()

UbuntuSource(store).update("/data")
RockySource(store).update("/data")
SuseCvrfSource(Distribution.OPENSUSE, store).update("/data")
WolfiSource(store).update("/data")

for advisory in UbuntuSource(store).get("18.04", "xen"):
    print(advisory.vulnerability_id, advisory.fixed_version)

# Rocky advisories are filtered by architecture.
for advisory in RockySource(store).get("8", "bind-export-libs", "x86_64"):
    print(advisory.vulnerability_id, advisory.fixed_version, advisory.vendor_ids)
```

Each source class takes an optional `Store`; without one it creates its own,
available as `.store`. `name()` returns the source identifier (for openSUSE
it is `"opensuse-cvrf"`). `UbuntuSource` also accepts a `put` callable
`(store, cve)` that replaces `default_put` for saving each `UbuntuCVE`.

### The store

`vulnfeeds.store.Store` keeps nested buckets of JSON values:

* `data-source/<platform>` – a `DataSource`
* `advisory-detail/<vuln id>/<platform>/<package>` – an `Advisory` or `Advisories`
* `vulnerability-detail/<vuln id>/<source id>` – a `VulnerabilityDetail`
* `vulnerability-id/<vuln id>` – an empty object

`Store.get(keys)` returns the decoded value at a key path (or `None`),
`Store.has_bucket(keys)` tells whether a bucket exists, and
`Store.get_advisories(bucket, pkg_name)` returns the `Advisory` objects for a
package, each carrying its vulnerability ID and data source.
`Store.batch_update()` is a context manager that rolls back every write made
inside it if an exception escapes.

### Combining vendor data

`vulnfeeds.vulnerability.Vulnerabilities` merges the per-vendor
`VulnerabilityDetail` objects of one vulnerability into a `Vulnerability`:
title, description, CWE IDs and overall severity are chosen by a fixed vendor
priority (NVD first), vendor severities and CVSS scores are collected per
vendor, and references are split, de-duplicated and sorted:

```python
from vulnfeeds.vulnerability import Vulnerabilities

vulns = Vulnerabilities(store)
details = vulns.get_details("CVE-2021-25215")
if details and not vulns.is_rejected(details):
    merged = vulns.normalize(details)
    print(merged.severity, merged.vendor_severity)
```

`get_details` returns `None` when the store has no detail or the stored
detail cannot be decoded. `is_rejected` is true when a description carries
`** REJECT **`.

### Helpers

* `vulnfeeds.vulnerability.score_to_severity(score)` maps a CVSS score to a `Severity`.
* `vulnfeeds.vulnerability.normalize_pkg_name(ecosystem, name)` applies the
  per-ecosystem package name rules (lower case with `_` as `-` for pip,
  scheme and `.git` trimming for Swift, unchanged for NuGet, Go and
  CocoaPods, lower case otherwise).
* `vulnfeeds.suse_cvrf.get_os_version(platform_name)` turns a SUSE product
  name such as `SUSE Linux Enterprise Server 12 SP5` into
  `SUSE Linux Enterprise 12.5`, or `""` for products that are not tracked.
* `vulnfeeds.suse_cvrf.split_pkg_name("name-version-release")` returns
  `("name", "version-release")`.
* `vulnfeeds.ubuntu.severity_from_priority`, `vulnfeeds.suse_cvrf.severity_from_threat`
  and `vulnfeeds.rocky.generalize_severity` map each feed's ratings onto `Severity`.

## What it does not do

* The store lives in memory only; nothing is written to or loaded from a
  database file.
* Feeds are not downloaded; the JSON trees must already be on disk.
* There is no command-line tool; the package is used as a library.

## Running the tests

```
pip install .[test]
pytest
```