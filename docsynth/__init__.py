"""Template-driven document generation."""

__version__ = "0.1.0"
