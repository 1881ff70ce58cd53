[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "evsecore"
version = "0.1.0"
description = "Charge point building blocks: transactions, metering, heartbeat and charging profile limits"
requires-python = ">=3.11"
dependencies = []
keywords = ["ocpp", "ev", "charging", "charge-point", "metering", "smart-charging"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["evsecore"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"
