"""plm - deploy AI assistant plugins across host environments."""

__version__ = "0.3.0"

__all__ = ["__version__"]
