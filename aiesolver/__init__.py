"""Column-partition resource solver for AI Engine arrays; see aiesolver.solver."""

__version__ = "0.1.0"
__all__ = ["__version__"]