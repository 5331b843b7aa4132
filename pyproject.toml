[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ttseries"
version = "0.1.0"
description = "Time-series helpers for SQLite: time buckets, series identity, columnar segments and SQL planning for a small hypertable catalog"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "time-series",
    "sqlite",
    "hypertable",
    "rollup",
    "downsampling",
    "retention",
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
    "Topic :: Database",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ttseries"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
