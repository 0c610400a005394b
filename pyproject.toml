[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lbproxy"
version = "0.1.0"
description = "Building blocks for a layer 4 TCP/UDP load-balancing proxy: backend scheduling, access rules, bandwidth stats, metrics and config validation"
requires-python = ">=3.11"
dependencies = [
    "tomli-w",
]
keywords = [
    "load-balancer",
    "proxy",
    "tcp",
    "udp",
    "tls",
    "sni",
    "proxy-protocol",
    "metrics",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["lbproxy"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
