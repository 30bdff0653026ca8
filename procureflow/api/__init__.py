"""HTTP API for ProcureFlow."""
