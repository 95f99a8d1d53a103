[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vulnfeeds"
version = "0.1.0"
description = "Load Linux distribution security advisories into an in-memory vulnerability store and query them"
requires-python = ">=3.10"
dependencies = []
keywords = ["vulnerability", "security", "advisory", "cve", "ubuntu", "suse", "rocky", "wolfi"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["vulnfeeds"]

[tool.pytest.ini_options]
addopts = "-ra"
