"""pgrok - Expose local ports to the internet through an SSH relay."""

__version__ = "0.1.0"

__all__ = ["__version__"]
