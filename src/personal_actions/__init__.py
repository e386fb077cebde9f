"""Personal action lifecycle and financial line engine."""

__version__ = "0.1.0"
