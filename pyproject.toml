[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "netfusion"
version = "0.1.0"
description = "Building blocks for a network aggregation daemon: configuration schema, health scoring, events, IPC protocol, SQLite state store, config reloading and UI state"
requires-python = ">=3.11"
dependencies = [
    "watchdog",
]
keywords = [
    "networking",
    "bonding",
    "failover",
    "link-aggregation",
    "routing",
    "health-monitoring",
    "ipc",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["netfusion"]

[tool.hatch.build.targets.sdist]
include = [
    "netfusion",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
