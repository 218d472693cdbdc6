[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bitswap"
version = "0.1.0"
description = "Bitswap block-exchange messages, wantlists, CIDs, a host-backed network adapter and a virtual test network"
requires-python = ">=3.10"
dependencies = []
keywords = ["bitswap", "ipfs", "cid", "content-addressing", "p2p", "block-exchange", "protobuf"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Typing :: Typed",
    "Topic :: System :: Distributed Computing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["bitswap"]

[tool.pytest.ini_options]
addopts = "-ra"
