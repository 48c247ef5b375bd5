"""Pack files — YAML loading, search-path discovery and collision checks."""
