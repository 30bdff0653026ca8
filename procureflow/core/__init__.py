"""Core routing, delegation and configuration for ProcureFlow."""
