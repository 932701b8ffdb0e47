[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bankes"
version = "0.1.0"
description = "Infrastructure building blocks for an event-sourced banking service: pipeline metrics, monitoring, request rate limiting and validation, resilient async Redis clients, instance scaling and shard management."
requires-python = ">=3.10"
dependencies = [
    "redis",
]
keywords = [
    "banking",
    "event-sourcing",
    "rate-limiting",
    "circuit-breaker",
    "load-shedding",
    "sharding",
    "redis",
    "monitoring",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: Office/Business :: Financial",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["bankes"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
