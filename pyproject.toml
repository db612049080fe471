[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "leakprobe"
version = "0.1.0"
description = "Interactive leak tests for VPN split tunnelling, with in-memory process and image registries"
requires-python = ">=3.10"
keywords = ["vpn", "split-tunnel", "leak-test", "networking", "sockets"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Testing",
]
dependencies = [
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
leakprobe = "leakprobe.runner:main"

[tool.hatch.build.targets.wheel]
packages = ["leakprobe"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
