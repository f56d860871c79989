"""Per-epoch aggregate statistics."""
