[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tcpreactor"
version = "0.1.0"
description = "A reactor-style, non-blocking TCP networking library with event loops, timers, servers and clients"
requires-python = ">=3.10"
dependencies = []
keywords = ["tcp", "reactor", "event-loop", "networking", "epoll", "poll", "non-blocking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tcpreactor"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
