"""ProcureFlow approval routing engine."""

__version__ = "0.1.0"
