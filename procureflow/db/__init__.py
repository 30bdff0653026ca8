"""Database layer for ProcureFlow."""
