[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gwtools"
version = "1.0.0"
description = "Gateway helper tools: DHCP client control, parental-control block lists and multipart webconfig documents"
requires-python = ">=3.10"
dependencies = [
    "msgpack",
]
keywords = [
    "dhcp",
    "udhcpc",
    "dibbler",
    "gateway",
    "webconfig",
    "msgpack",
    "multipart",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
parcon = "gwtools.parcon:main"
multipart-root = "gwtools.multipart:main"

[tool.hatch.build.targets.wheel]
packages = ["gwtools"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
