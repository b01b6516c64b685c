[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "crankshaft"
version = "0.3.0"
description = "Execution backend configuration and an async Docker engine client for running tasks in containers and swarm services"
requires-python = ">=3.11"
keywords = ["docker", "containers", "tasks", "execution", "swarm", "tes", "configuration"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "aiohttp>=3.9",
    "pyyaml>=6.0",
    "platformdirs>=3.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
docker-driver = "crankshaft.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["crankshaft"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
