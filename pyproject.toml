[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "modbuskit"
version = "0.1.0"
description = "Modbus RTU poller and configuration database tools for pump station telemetry"
requires-python = ">=3.10"
keywords = ["modbus", "rtu", "scada", "poller", "sqlite"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Manufacturing",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Interface Engine/Protocol Translator",
]
dependencies = [
    "pyserial>=3.5",
    "prompt-toolkit>=3.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
modbus-db-init = "modbuskit.dbinit:main"
modbus-poller = "modbuskit.pollercli:main"

[tool.hatch.build.targets.wheel]
packages = ["modbuskit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
