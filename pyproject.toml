[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rvemu"
version = "0.1.0"
description = "A RISC-V 32 reference interpreter, memory-mapped device models and differential testing harness"
requires-python = ">=3.10"
dependencies = []
keywords = ["riscv", "emulator", "interpreter", "difftest", "mmio", "simulator"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
rvemu-fixdep = "rvemu.fixdep:main"

[tool.hatch.build.targets.wheel]
packages = ["rvemu"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
