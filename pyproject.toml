[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "retailops"
version = "0.1.0"
description = "In-memory retail operations core: scoped users, roles, teams, participants, returns, register closings and KPI reports."
requires-python = ">=3.10"
dependencies = []
keywords = ["retail", "point-of-sale", "rbac", "returns", "register", "reports"]
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
    "Topic :: Office/Business :: Financial :: Point-Of-Sale",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["retailops"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
