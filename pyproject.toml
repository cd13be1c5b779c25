[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dronecollector"
version = "0.1.0"
description = "Collect traces, logs and metrics from Drone CI builds via webhooks and database scraping"
requires-python = ">=3.10"
dependencies = []
keywords = ["drone", "ci", "telemetry", "tracing", "metrics", "webhook", "observability"]
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
    "Topic :: System :: Monitoring",
    "Topic :: Software Development :: Build Tools",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["dronecollector"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
