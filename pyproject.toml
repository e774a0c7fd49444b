[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rudpxfer"
version = "0.1.0"
description = "Reliable file transfer over UDP with handshaking, reordering and TCP-style congestion control"
requires-python = ">=3.10"
dependencies = []
keywords = ["udp", "reliable", "file-transfer", "congestion-control", "networking"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
rudp-send = "rudpxfer.sender:main"
rudp-recv = "rudpxfer.receiver:main"

[tool.hatch.build.targets.wheel]
packages = ["rudpxfer"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
