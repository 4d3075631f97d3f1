"""Building the unified conversation list."""
