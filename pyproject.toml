[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "agonyl"
version = "0.1.0"
description = "Login server, login broker and gate server for the A3 online role-playing game"
requires-python = ">=3.10"
keywords = ["mmorpg", "game-server", "login-server", "gate-server", "a3"]
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
    "Topic :: Games/Entertainment :: Role-Playing",
    "Topic :: Internet",
]
dependencies = [
    "redis",
    "sqlalchemy",
    "bcrypt",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["agonyl"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
