"""Pipeline data models."""
