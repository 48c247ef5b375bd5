"""Pack definition models (the local, declarative side of a sync)."""
