[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cloudop"
version = "0.1.0"
description = "Phase-driven reconciliation of cloud resources such as VPCs and subnets"
requires-python = ">=3.10"
dependencies = []
keywords = ["reconciler", "operator", "cloud", "vpc", "subnet", "state-machine"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["cloudop"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
