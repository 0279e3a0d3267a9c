"""Policy signup workflow engine."""
