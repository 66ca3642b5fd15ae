[build-system]
requires = ["setuptools>=61.0"]
build-backend = "setuptools.build_meta"

[project]
name = "svinit"
version = "0.1.0"
description = "A small init system with service supervision: init, runsvdir, runsv, logon and utmpset"
requires-python = ">=3.10"
dependencies = []
keywords = ["init", "supervision", "runsv", "runsvdir", "getty", "utmp", "daemon"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Boot :: Init",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
svinit = "svinit.init:main"
runsvdir = "svinit.runsvdir:main"
runsv = "svinit.runsv:main"
utmpset = "svinit.utmpset:main"
logon = "svinit.logon:main"

[tool.setuptools.packages.find]
include = ["svinit*"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
