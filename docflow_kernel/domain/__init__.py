"""Pure domain types for the docflow kernel (no I/O)."""
