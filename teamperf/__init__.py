"""Team and commission performance subsystem."""

__version__ = "1.0.0"
