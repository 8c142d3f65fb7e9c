[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "blockydns"
version = "0.1.0"
description = "Configuration, block lists, caches, REST endpoints and a command-line client for a blocking DNS proxy"
requires-python = ">=3.10"
keywords = ["dns", "proxy", "ad-blocker", "blocklist", "cache"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
]
dependencies = [
    "pyyaml",
    "dnspython",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
blockydns = "blockydns.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["blockydns"]

[tool.pytest.ini_options]
addopts = "-ra"
