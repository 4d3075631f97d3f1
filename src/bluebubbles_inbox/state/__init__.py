"""Local conversation store."""
