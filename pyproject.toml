[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "emitter"
version = "0.1.0"
description = "Replicated broker state: last-write-wins CRDT sets, cluster events, configuration and helpers."
requires-python = ">=3.10"
dependencies = []
keywords = ["crdt", "lww", "pubsub", "broker", "cluster", "gossip", "sqlite"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
emitter-version = "emitter.version:main"

[tool.hatch.build.targets.wheel]
packages = ["emitter"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
