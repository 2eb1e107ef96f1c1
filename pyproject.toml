[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "coroflow"
version = "0.1.0"
description = "Coroutine executors, an I/O scheduler with timers and fd polling, and awaitable synchronisation primitives"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "coroutine",
    "scheduler",
    "thread-pool",
    "event-loop",
    "mutex",
    "semaphore",
    "rwlock",
    "udp",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["coroflow"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
