"""Policy loading."""
