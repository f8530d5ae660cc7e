[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "aiesolver"
version = "0.1.0"
description = "Column-partition resource solver for AI Engine arrays with QoS-driven power level selection"
requires-python = ">=3.10"
dependencies = []
keywords = ["aie", "npu", "resource-allocation", "partition", "qos", "dpm"]
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
    "Topic :: System :: Hardware",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["aiesolver"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
strict = true
