"""Core engine, domain model and configuration for deploydag."""
