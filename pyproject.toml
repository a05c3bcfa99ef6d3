[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "trionic"
version = "0.1.0"
description = "Diagnostics, dumping and flashing of Saab Trionic 5 and 7 engine control units over CAN, with Trionic 8 helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["can", "canbus", "ecu", "trionic", "saab", "flashing", "diagnostics", "dtc"]
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
    "Topic :: Software Development :: Embedded Systems :: Controller Area Network (CAN)",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["trionic"]

[tool.hatch.build.targets.sdist]
include = ["trionic", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"
