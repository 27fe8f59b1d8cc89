[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "syslogforwarder"
version = "0.1.0"
description = "Building blocks for forwarding platform log streams: envelope decoding, gateway streaming, source discovery, cloud controller clients and configuration"
requires-python = ">=3.10"
keywords = ["syslog", "logging", "drain", "log-stream", "cloud-controller", "sse"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Logging",
]
dependencies = [
    "requests",
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["syslogforwarder"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
