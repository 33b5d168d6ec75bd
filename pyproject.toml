[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "shardstore"
version = "0.1.0"
description = "State machines for a sharded key/value service and a shard controller that balances shards across replica groups"
requires-python = ">=3.10"
dependencies = []
keywords = ["sharding", "key-value", "replication", "state-machine", "configuration"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["shardstore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
