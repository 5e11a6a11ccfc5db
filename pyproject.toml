[build-system]
requires = ["setuptools>=61"]
build-backend = "setuptools.build_meta"

[project]
name = "hubwire"
version = "0.1.0"
description = "Building blocks for the SignalR hub protocol: JSON framing, hub connections, invocation bookkeeping, hub helpers and HTTP transports"
requires-python = ">=3.10"
dependencies = []
keywords = ["signalr", "rpc", "hub", "websocket", "server-sent-events", "json"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: Internet :: WWW/HTTP",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.setuptools.packages.find]
include = ["hubwire*"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
