"""RISC-V 32 interpreter, guest memory, MMIO device models, differential testing and a dependency-file rewriter."""

__version__ = "0.1.0"