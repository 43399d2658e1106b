"""Core configuration and database access."""
