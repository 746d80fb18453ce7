[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tunnelsrv"
version = "0.1.0"
description = "Server-side building blocks for a reverse tunnel: port allocation, visitor listeners, client controls, metrics hooks and dashboard data."
requires-python = ">=3.10"
dependencies = []
keywords = ["tunnel", "reverse-proxy", "nat", "port-forwarding", "port-allocation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tunnelsrv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
